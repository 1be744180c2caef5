#!/usr/bin/env python3
"""
Fstab entry parsing and management for nas-mount

Every mutation follows the same sequence: read the whole table, compute
the complete new content, back up the live file, then replace it in one
rename. Line numbers handed out by read_entries() are only valid until
the next rewrite.

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import os
import re
import fcntl
import shutil
import logging
import tempfile
import datetime
from contextlib import contextmanager
from typing import List, Dict, Any, Tuple, Optional, Iterable, Callable

from ..errors import TableWriteFailed
from ..protocols import ProtocolAdapter, adapter_for_source
from .config import MountConfig, DEFAULT_FSTAB
from .runner import CommandRunner
from .systemd import daemon_reload

logger = logging.getLogger(__name__)

AUTOMOUNT_DIRECTIVES = ('x-systemd.automount', 'comment=systemd.automount', 'automount')

EDITABLE_FIELDS = {
    'source': 'source',
    'device': 'source',
    'mount_point': 'mount_point',
    'mountpoint': 'mount_point',
    'fstype': 'fstype',
    'type': 'fstype',
    'options': 'options',
    'dump': 'dump',
    'pass': 'passno',
    'passno': 'passno',
}

_ESCAPED = re.compile(r'\\([0-7]{3})')


def unescape_field(value: str) -> str:
    """Decode fstab octal escapes such as ``\\040`` for a space"""
    return _ESCAPED.sub(lambda m: chr(int(m.group(1), 8)), value)


def escape_field(value: str) -> str:
    return ''.join(f"\\{ord(ch):03o}" if ch in ' \t\n\\' else ch for ch in value)


def is_under(path: str, base: str) -> bool:
    path = os.path.normpath(path)
    base = os.path.normpath(base)
    return path == base or path.startswith(base.rstrip('/') + '/')


class FstabEntry:
    """Represents a single fstab entry"""

    def __init__(self, line: str, line_number: int = 0):
        """Initialize from a line in fstab"""
        self.raw_line = line.rstrip('\n')
        self.line_number = line_number
        stripped = line.strip()
        self.is_comment = stripped.startswith('#')
        self.is_empty = len(stripped) == 0

        # Default values
        self.source = ""
        self.mount_point = ""
        self.fstype = ""
        self.options: List[str] = []
        self.dump = "0"
        self.passno = "0"

        self.is_valid = False
        if not (self.is_comment or self.is_empty):
            self._parse_entry()

    @classmethod
    def create(cls, source: str, mount_point: str, fstype: str, options: Iterable[str],
               dump: str = "0", passno: str = "0") -> 'FstabEntry':
        entry = cls("")
        entry.source = source
        entry.mount_point = mount_point
        entry.fstype = fstype
        entry.options = list(options)
        entry.dump = dump
        entry.passno = passno
        entry.is_empty = False
        entry.is_valid = True
        entry.raw_line = entry.to_line()
        return entry

    def _parse_entry(self) -> None:
        """Parse the entry components"""
        fields = self.raw_line.split()

        # Must have at least source, mount point and type
        if len(fields) < 3:
            logger.debug(f"Ignoring malformed fstab line {self.line_number}: {self.raw_line}")
            return

        self.source = unescape_field(fields[0])
        self.mount_point = unescape_field(fields[1])
        self.fstype = fields[2]
        if len(fields) >= 4:
            self.options = [token for token in fields[3].split(',') if token]
        if len(fields) >= 5:
            self.dump = fields[4]
        if len(fields) >= 6:
            self.passno = fields[5]
        self.is_valid = True

    @property
    def options_string(self) -> str:
        return ','.join(self.options) or 'defaults'

    def has_option(self, name: str) -> bool:
        """True if a token equals ``name`` or is ``name=<value>``"""
        return any(token == name or token.startswith(name + '=') for token in self.options)

    def option_value(self, name: str) -> Optional[str]:
        for token in self.options:
            if token.startswith(name + '='):
                return token.split('=', 1)[1]
        return None

    @property
    def has_automount(self) -> bool:
        return any(token in AUTOMOUNT_DIRECTIVES for token in self.options)

    @property
    def is_on_demand(self) -> bool:
        """noauto together with an automount directive"""
        return 'noauto' in self.options and self.has_automount

    @property
    def mode(self) -> str:
        """Display mode, decided by the automount directive alone"""
        return "on-demand" if self.has_automount else "auto-mount"

    def with_field(self, field: str, value: str) -> 'FstabEntry':
        """Copy of this entry with one field replaced"""
        try:
            attribute = EDITABLE_FIELDS[field.lower()]
        except KeyError:
            raise ValueError(f"Unknown fstab field '{field}' "
                             f"(expected one of: source, mount_point, fstype, options, dump, pass)") from None
        if not value or any(ch in value for ch in '\n'):
            raise ValueError(f"Invalid value for {field}: {value!r}")

        entry = FstabEntry.create(self.source, self.mount_point, self.fstype, self.options,
                                  self.dump, self.passno)
        entry.line_number = self.line_number
        if attribute == 'options':
            entry.options = [token.strip() for token in value.split(',') if token.strip()]
        elif attribute in ('dump', 'passno'):
            if not value.isdigit():
                raise ValueError(f"{field} must be a number, got {value!r}")
            setattr(entry, attribute, value)
        else:
            setattr(entry, attribute, value)
        entry.raw_line = entry.to_line()
        return entry

    def to_line(self) -> str:
        """Convert back to a fstab line"""
        if not self.is_valid:
            return self.raw_line
        return (f"{escape_field(self.source)}  {escape_field(self.mount_point)}  {self.fstype}  "
                f"{self.options_string}  {self.dump}  {self.passno}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'line_number': self.line_number,
            'source': self.source,
            'mount_point': self.mount_point,
            'fstype': self.fstype,
            'options': list(self.options),
            'dump': self.dump,
            'pass': self.passno,
            'mode': self.mode,
        }

    def __str__(self) -> str:
        if not self.is_valid:
            return f"Comment/Empty: {self.raw_line}"
        return f"FstabEntry: {self.source} -> {self.mount_point} ({self.fstype}, {self.mode})"


def persistent_options(config: MountConfig, adapter: ProtocolAdapter,
                       credentials_file: Optional[str], uid: int, gid: int,
                       on_demand: bool = True) -> List[str]:
    """Mount options for an fstab entry, including the systemd directives"""
    options = adapter.mount_options(config, credentials_file, uid, gid)
    for token in ('_netdev', 'nofail'):
        if token not in options:
            options.append(token)
    if on_demand:
        options.extend([
            'noauto',
            'x-systemd.automount',
            f'x-systemd.idle-timeout={config.idle_timeout}',
            f'x-systemd.mount-timeout={config.mount_timeout}',
        ])
    return options


def build_entry(config: MountConfig, adapter: ProtocolAdapter, share: str, mount_point: str,
                credentials_file: Optional[str] = None, uid: int = 0, gid: int = 0,
                on_demand: bool = True) -> FstabEntry:
    """Create the fstab entry for one share"""
    return FstabEntry.create(
        source=adapter.source(config.host, share),
        mount_point=mount_point,
        fstype=adapter.fstype,
        options=persistent_options(config, adapter, credentials_file, uid, gid, on_demand),
    )


class FstabStore:
    """Reads and rewrites the persistent mount table"""

    def __init__(self, fstab_path: str = DEFAULT_FSTAB, runner: Optional[CommandRunner] = None,
                 lock_file: Optional[str] = None):
        self.fstab_path = fstab_path
        self.runner = runner or CommandRunner()
        self.lock_file = lock_file
        self.last_backup: Optional[str] = None

    # -- reading -------------------------------------------------------------

    def _read_lines(self) -> List[str]:
        try:
            with open(self.fstab_path, 'r') as f:
                return f.read().splitlines(keepends=True)
        except FileNotFoundError:
            logger.warning(f"{self.fstab_path} does not exist, treating it as empty")
            return []
        except OSError as e:
            raise TableWriteFailed(f"Cannot read {self.fstab_path}: {e}") from e

    @staticmethod
    def _parse(lines: List[str]) -> List[FstabEntry]:
        entries = []
        for number, line in enumerate(lines, start=1):
            entry = FstabEntry(line, number)
            if entry.is_valid:
                entries.append(entry)
        return entries

    def read_entries(self) -> List[FstabEntry]:
        """Every uncommented entry, in file order"""
        entries = self._parse(self._read_lines())
        logger.debug(f"Loaded {len(entries)} entries from {self.fstab_path}")
        return entries

    def entries_for_host(self, host: str) -> List[FstabEntry]:
        """Entries whose source belongs to ``host``, for either protocol"""
        matching = []
        for entry in self.read_entries():
            adapter = adapter_for_source(entry.source)
            if adapter and adapter.share_from_source(host, entry.source) is not None:
                matching.append(entry)
        return matching

    def find(self, host: str, share: str, adapter: ProtocolAdapter) -> Optional[FstabEntry]:
        """The entry for exactly this share, if any"""
        for entry in self.read_entries():
            if adapter.matches(host, share, entry.source):
                return entry
        return None

    def entries_under(self, base: str) -> List[FstabEntry]:
        return [entry for entry in self.read_entries() if is_under(entry.mount_point, base)]

    # -- writing -------------------------------------------------------------

    @contextmanager
    def _locked(self):
        """Exclusive advisory lock against a second nas-mount instance"""
        handle = None
        if self.lock_file:
            try:
                handle = open(self.lock_file, 'a')
            except OSError as e:
                logger.debug(f"Cannot open lock file {self.lock_file}: {e}")

        if handle is None:
            yield
            return

        try:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise TableWriteFailed(
                    f"Another nas-mount instance is modifying {self.fstab_path}") from None
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)
            handle.close()

    def _backup_path(self) -> str:
        stamp = datetime.datetime.now().strftime('%Y%m%d%H%M%S')
        candidate = f"{self.fstab_path}.bak.{stamp}"
        counter = 1
        while os.path.exists(candidate):
            candidate = f"{self.fstab_path}.bak.{stamp}.{counter}"
            counter += 1
        return candidate

    def _directory_writable(self) -> bool:
        directory = os.path.dirname(os.path.abspath(self.fstab_path))
        return os.access(directory, os.W_OK) and (
            not os.path.exists(self.fstab_path) or os.access(self.fstab_path, os.W_OK))

    def backup(self) -> str:
        """Copy the live table to a timestamped backup file"""
        backup_path = self._backup_path()
        if not os.path.exists(self.fstab_path):
            open(backup_path, 'w').close()
        elif self._directory_writable():
            try:
                shutil.copy2(self.fstab_path, backup_path)
            except OSError as e:
                raise TableWriteFailed(f"Could not back up {self.fstab_path}: {e}") from e
        else:
            result = self.runner.run(['cp', '-p', self.fstab_path, backup_path], privileged=True)
            if not result.ok:
                raise TableWriteFailed(f"Could not back up {self.fstab_path}: {result.first_line()}")

        logger.info(f"Backed up {self.fstab_path} to {backup_path}")
        self.last_backup = backup_path
        return backup_path

    def _write(self, content: str) -> None:
        """Replace the table atomically; the original survives any failure"""
        directory = os.path.dirname(os.path.abspath(self.fstab_path))
        mode = 0o644
        if os.path.exists(self.fstab_path):
            mode = os.stat(self.fstab_path).st_mode & 0o777

        if self._directory_writable():
            fd, staged = tempfile.mkstemp(prefix='.fstab.', dir=directory)
            try:
                with os.fdopen(fd, 'w') as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(staged, mode)
                os.replace(staged, self.fstab_path)
            except OSError as e:
                if os.path.exists(staged):
                    os.unlink(staged)
                raise TableWriteFailed(f"Could not write {self.fstab_path}: {e}") from e
            return

        # Not writable by us: stage privately, then install + rename as root
        fd, staged = tempfile.mkstemp(prefix='nas-mount-fstab.')
        target = f"{self.fstab_path}.nas-mount.new"
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(content)
            result = self.runner.run(['install', '-m', f"{mode:o}", staged, target], privileged=True)
            if not result.ok:
                raise TableWriteFailed(f"Could not stage {target}: {result.first_line()}")
            result = self.runner.run(['mv', '-f', target, self.fstab_path], privileged=True)
            if not result.ok:
                self.runner.run(['rm', '-f', target], privileged=True)
                raise TableWriteFailed(f"Could not replace {self.fstab_path}: {result.first_line()}")
        finally:
            if os.path.exists(staged):
                os.unlink(staged)

    def _rewrite(self, transform: Callable[[List[str]], List[str]]) -> None:
        """Read, transform, back up and write the table in one locked pass"""
        with self._locked():
            lines = self._read_lines()
            new_lines = transform(list(lines))
            if new_lines == lines:
                logger.debug("Table unchanged, nothing to write")
                return
            self.backup()
            self._write(''.join(new_lines))
            logger.info(f"Updated {self.fstab_path}")
        daemon_reload(self.runner)

    def add_entry(self, entry: FstabEntry) -> bool:
        """Append an entry unless its share or mount point is already present

        Returns:
            True if the entry was added, False if it was skipped
        """
        adapter = adapter_for_source(entry.source)
        host = _source_host(entry.source)
        share = adapter.share_from_source(host, entry.source) if adapter else None
        added = []

        def append(lines: List[str]) -> List[str]:
            # Checked against the locked content so a concurrent writer cannot slip in a duplicate
            for existing in self._parse(lines):
                if share is not None:
                    same_source = adapter.matches(host, share, existing.source)
                else:
                    same_source = existing.source == entry.source
                if same_source:
                    logger.info(f"{entry.source} already in {self.fstab_path} (line {existing.line_number}), skipped")
                    return lines
                if os.path.normpath(existing.mount_point) == os.path.normpath(entry.mount_point):
                    logger.warning(f"Mount point {entry.mount_point} already used by {existing.source}, skipped")
                    return lines

            new_lines = list(lines)
            if new_lines and not new_lines[-1].endswith('\n'):
                new_lines[-1] += '\n'
            new_lines.append(entry.to_line() + '\n')
            added.append(entry)
            return new_lines

        self._rewrite(append)
        if not added:
            return False
        logger.info(f"Added {entry.source} -> {entry.mount_point} to {self.fstab_path}")
        return True

    def remove_entries(self, line_numbers: Iterable[int]) -> List[FstabEntry]:
        """Delete entries by line number in a single descending pass"""
        targets = sorted(set(line_numbers), reverse=True)
        removed: List[FstabEntry] = []

        def delete(lines: List[str]) -> List[str]:
            by_line = {entry.line_number: entry for entry in self._parse(lines)}
            invalid = [number for number in targets if number not in by_line]
            if invalid:
                raise ValueError(f"No fstab entry on line(s): {', '.join(str(n) for n in sorted(invalid))}")
            for number in targets:
                removed.append(by_line[number])
                del lines[number - 1]
            return lines

        if not targets:
            return []
        self._rewrite(delete)
        for entry in removed:
            logger.info(f"Removed line {entry.line_number}: {entry.source} -> {entry.mount_point}")
        removed.reverse()
        return removed

    def edit_entry(self, line_number: int, field: str, value: str) -> Tuple[FstabEntry, FstabEntry]:
        """Rewrite one field of the entry on ``line_number``

        Returns:
            (old entry, new entry)
        """
        changed: List[FstabEntry] = []

        def edit(lines: List[str]) -> List[str]:
            by_line = {entry.line_number: entry for entry in self._parse(lines)}
            if line_number not in by_line:
                raise ValueError(f"No fstab entry on line {line_number}")
            old = by_line[line_number]
            new = old.with_field(field, value)
            changed.extend([old, new])
            ending = '\n' if lines[line_number - 1].endswith('\n') else ''
            lines[line_number - 1] = new.to_line() + ending
            return lines

        self._rewrite(edit)
        old, new = changed
        logger.info(f"Edited line {line_number}: {field} = {value}")
        return old, new

    def replace_mount_prefix(self, old_base: str, new_base: str) -> List[Tuple[str, str]]:
        """Move every mount point under ``old_base`` to ``new_base``

        Returns:
            List of (old mount point, new mount point)
        """
        old_base = os.path.normpath(old_base)
        new_base = os.path.normpath(new_base)
        moved: List[Tuple[str, str]] = []

        def substitute(lines: List[str]) -> List[str]:
            for entry in self._parse(lines):
                if not is_under(entry.mount_point, old_base):
                    continue
                relative = os.path.relpath(os.path.normpath(entry.mount_point), old_base)
                target = new_base if relative == '.' else os.path.join(new_base, relative)
                new = entry.with_field('mount_point', target)
                ending = '\n' if lines[entry.line_number - 1].endswith('\n') else ''
                lines[entry.line_number - 1] = new.to_line() + ending
                moved.append((entry.mount_point, target))
            return lines

        self._rewrite(substitute)
        logger.info(f"Moved {len(moved)} mount point(s) from {old_base} to {new_base}")
        return moved


def _source_host(source: str) -> str:
    if source.startswith('//'):
        return source[2:].split('/', 1)[0]
    return source.split(':', 1)[0]
