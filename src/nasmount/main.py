#!/usr/bin/env python3
"""
Main application module for nas-mount

MountOrchestrator ties the components together: it checks prerequisites,
resolves credentials and the share list, mounts each share in isolation
and aggregates the outcomes. It also owns the fstab-facing operations
(generate, install, list, remove, edit) and the status report.

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
import logging
from typing import List, Optional, Tuple

from .discovery import ShareDiscovery, DiscoveredShare
from .errors import NasMountError, HostUnreachable, MissingDependency, DiscoveryFailed, TableWriteFailed
from .migration import MigrationEngine
from .models import (
    MountOutcome, ShareRecord, ShareResult, MountSummary, UnmountSummary,
    MigrationReport, InstallReport, MountStatus, StatusReport, resolve_mount_points,
)
from .mounter import ShareMounter
from .protocols import get_adapter
from .repair import RepairEngine
from .utils.config import MountConfig, split_list
from .utils.credentials import Credential, CredentialResolver, SecretStore, GUEST
from .utils.distro import get_distro_info
from .utils.filesystem import MountTable, ensure_directory, remove_empty_directory, invoking_user_ids
from .utils.fstab import FstabEntry, FstabStore, build_entry, is_under
from .utils.progress import ProgressTracker, OperationType
from .utils.prompt import Prompter, ConsolePrompter
from .utils.runner import CommandRunner, find_executable
from .utils.systemd import AutomountController

logger = logging.getLogger(__name__)

DF_TIMEOUT = 5


class MountOrchestrator:
    """Main application class for nas-mount"""

    def __init__(self, config: MountConfig,
                 runner: Optional[CommandRunner] = None,
                 prompter: Optional[Prompter] = None,
                 fstab: Optional[FstabStore] = None,
                 controller: Optional[AutomountController] = None,
                 mount_table: Optional[MountTable] = None,
                 discovery: Optional[ShareDiscovery] = None,
                 resolver: Optional[CredentialResolver] = None):
        """Initialize the application

        Every collaborator can be injected; the defaults talk to the real
        system.
        """
        self.config = config
        self.adapter = get_adapter(config.protocol)
        self.runner = runner or CommandRunner(default_timeout=config.timeout)
        self.prompter = prompter or ConsolePrompter(assume_yes=config.assume_yes)
        self.fstab = fstab or FstabStore(config.fstab_path, self.runner, config.lock_file)
        self.controller = controller or AutomountController(self.runner, self.fstab, config.timeout)
        self.mount_table = mount_table or MountTable()
        self.discovery = discovery or ShareDiscovery(self.runner, self.fstab, config.timeout)
        self.resolver = resolver or CredentialResolver(SecretStore(self.runner), self.prompter)
        self._credential: Optional[Credential] = None

        logger.debug(f"Using {self.adapter.name} on {config.host}, mount base {config.mount_base}")

    # -- preconditions -------------------------------------------------------

    def check_prerequisites(self) -> None:
        """Make sure the mount tools for the protocol are installed

        Raises:
            MissingDependency: With a distribution-specific install command
        """
        tools = ['mount', 'umount', self.adapter.mount_helper]
        missing = [tool for tool in tools if not find_executable(tool)]
        if missing:
            raise MissingDependency(missing, get_distro_info().install_hint(missing))

    def check_host(self) -> None:
        if not self.runner.ping(self.config.host):
            raise HostUnreachable(self.config.host)
        logger.info(f"NAS at {self.config.host} is reachable")

    def credential(self) -> Optional[Credential]:
        """Credentials for this run; None for protocols without them"""
        if not self.adapter.requires_credentials:
            return None
        if self._credential is None:
            self._credential = self.resolver.resolve(self.config.host, self.config.username,
                                                     self.config.password)
        return self._credential

    def share_list(self, credential: Optional[Credential] = None) -> List[str]:
        """Configured shares, else discovered shares, else asked for"""
        if self.config.shares:
            logger.info(f"Using configured shares: {', '.join(self.config.shares)}")
            return list(self.config.shares)

        try:
            return self.discovery.names(self.config.host, self.adapter.name, credential)
        except DiscoveryFailed as e:
            logger.warning(f"Share discovery failed: {e}")

        try:
            answer = self.prompter.ask("Enter share names manually (comma-separated)")
        except EOFError:
            return []
        return list(split_list(answer))

    # -- mounting ------------------------------------------------------------

    def mount_all(self) -> MountSummary:
        """Mount every share of the NAS under the mount base

        Raises:
            MissingDependency: Required tools are not installed
            HostUnreachable: The NAS did not answer
            NasMountError: There is nothing to mount
        """
        self.check_prerequisites()
        self.check_host()

        credential = self.credential()
        shares = self.share_list(credential)
        if not shares:
            raise NasMountError("No shares to mount")

        base = self.config.mount_base
        if not self.config.dry_run and not ensure_directory(base, self.runner, invoking_user_ids()):
            raise NasMountError(f"Could not create mount base {base}")

        records = resolve_mount_points(shares, self.config.host, base, self.adapter)
        mounter = ShareMounter(self.config, self.adapter, self.runner, credential)
        excluded = {self.adapter.normalize_share(name) for name in self.config.exclude}
        version = self.adapter.default_version(self.config)
        summary = MountSummary()

        with ProgressTracker(OperationType.MOUNT, total=len(records),
                             desc=f"Mounting {self.config.host}") as progress:
            for record in records:
                result, learned = self._mount_one(record, mounter, excluded, version)
                if learned and self.adapter.name == 'nfs':
                    version = learned
                    summary.nfs_version = learned
                summary.results.append(result)
                progress.update(1, f"{record.share}: {result.outcome.value}")

        logger.info(f"Mounted {summary.mounted}, failed {summary.failed}, denied {summary.denied}, "
                    f"skipped {summary.skipped}, excluded {summary.excluded}, planned {summary.planned}")
        return summary

    def _mount_one(self, record: ShareRecord, mounter: ShareMounter, excluded: set,
                   version: str) -> Tuple[ShareResult, Optional[str]]:
        share = record.share
        if share in excluded:
            logger.info(f"Excluded {share}")
            return ShareResult(share, MountOutcome.EXCLUDED, record.mount_point, "excluded"), None

        entry = self.fstab.find(self.config.host, share, self.adapter)
        if entry is not None:
            needs_migration = not is_under(entry.mount_point, self.config.mount_base)
            reason = (f"managed by {self.fstab.fstab_path} line {entry.line_number} "
                      f"({entry.mode}) at {entry.mount_point}")
            logger.info(f"Skipping {share}: {reason}")
            return ShareResult(share, MountOutcome.SKIPPED, entry.mount_point, reason,
                               needs_migration=needs_migration), None

        if self.mount_table.is_mounted(record.mount_point):
            return ShareResult(share, MountOutcome.ALREADY_MOUNTED, record.mount_point), None

        if self.config.dry_run:
            source = self.adapter.source(self.config.host, share)
            logger.info(f"[dry-run] Would mount {source} at {record.mount_point}")
            return ShareResult(share, MountOutcome.SKIPPED, record.mount_point, "dry run",
                               dry_run=True), None

        if not ensure_directory(record.mount_point, self.runner, (mounter.uid, mounter.gid)):
            return ShareResult(share, MountOutcome.FAILED, record.mount_point,
                               f"could not create {record.mount_point}"), None

        return mounter.mount_with_fallback(share, record.mount_point, version)

    def offer_migration(self, summary: MountSummary) -> List[MigrationReport]:
        """Offer to move fstab entries that live outside the mount base"""
        reports = []
        for old_base in summary.migration_candidates:
            question = f"fstab mounts for {self.config.host} live under {old_base}. Move them to {self.config.mount_base}?"
            try:
                if not self.prompter.confirm(question):
                    continue
            except EOFError:
                continue
            reports.append(self.migration_engine().migrate(old_base, self.config.mount_base,
                                                           assume_yes=True))
        return reports

    def migration_engine(self) -> MigrationEngine:
        return MigrationEngine(self.fstab, self.controller, self.runner, self.prompter,
                               self.mount_table, self.config.timeout)

    def repair_engine(self) -> RepairEngine:
        return RepairEngine(self.config, self.fstab, self.controller, self.runner, self.mount_table)

    def unmount_all(self) -> UnmountSummary:
        """Unmount everything directly under the mount base

        Only empty directories are removed, and never one that an fstab
        entry points at.
        """
        summary = UnmountSummary()
        base = self.config.mount_base
        if not os.path.isdir(base):
            logger.info(f"{base} does not exist, nothing to unmount")
            return summary

        fstab_points = {os.path.normpath(entry.mount_point) for entry in self.fstab.read_entries()}

        for name in sorted(os.listdir(base)):
            path = os.path.join(base, name)
            # Checked against the mount table first; isdir() on a stale mount hangs
            if self.mount_table.is_mounted(path):
                result = self.runner.run(['umount', '-l', path], timeout=self.config.timeout,
                                         privileged=True)
                if result.ok:
                    logger.info(f"Unmounted {path}")
                    summary.unmounted.append(path)
                else:
                    logger.error(f"Could not unmount {path}: {result.first_line() or 'timed out'}")
                    summary.failed.append(path)
                    continue
            elif not os.path.isdir(path) or os.path.islink(path):
                continue

            if os.path.normpath(path) in fstab_points:
                continue
            if remove_empty_directory(path, self.runner):
                summary.removed.append(path)

        if os.path.normpath(base) not in fstab_points and remove_empty_directory(base, self.runner):
            summary.removed.append(base)
        return summary

    def remount_all(self) -> MountSummary:
        self.unmount_all()
        return self.mount_all()

    # -- reporting -----------------------------------------------------------

    def _usage(self, mount_point: str) -> str:
        result = self.runner.run(['df', '-hP', mount_point], timeout=DF_TIMEOUT)
        if not result.ok:
            return "not responding" if result.timed_out else ""
        lines = result.stdout.strip().splitlines()
        fields = lines[-1].split() if lines else []
        if len(fields) < 5:
            return ""
        return f"{fields[2]}/{fields[1]} ({fields[4]} used)"

    def status(self) -> StatusReport:
        base = self.config.mount_base
        report = StatusReport(self.config.host, base, self.runner.ping(self.config.host))

        for entry in self.fstab.entries_for_host(self.config.host):
            state = self.controller.state(entry.mount_point, 'automount' if entry.has_automount else 'mount')
            report.entries.append((entry, state))

        if os.path.isdir(base):
            for name in sorted(os.listdir(base)):
                path = os.path.join(base, name)
                if self.mount_table.is_mounted(path):
                    report.mounts.append(MountStatus(path, True, self._usage(path)))
                elif os.path.isdir(path):
                    report.mounts.append(MountStatus(path, False))
        return report

    def discover(self) -> List[DiscoveredShare]:
        return self.discovery.discover(self.config.host, self.adapter.name, self.credential())

    # -- fstab ---------------------------------------------------------------

    def generate_fstab(self, on_demand: bool = True) -> List[FstabEntry]:
        """Build fstab entries for the NAS's shares without writing anything"""
        credential = self.credential()
        shares = self.share_list(credential)
        records = resolve_mount_points(shares, self.config.host, self.config.mount_base, self.adapter)

        credentials_file = None
        if self.adapter.requires_credentials and credential is not None and not credential.is_guest:
            credentials_file = self.config.system_credentials_file
        uid, gid = invoking_user_ids()

        return [build_entry(self.config, self.adapter, record.share, record.mount_point,
                            credentials_file, uid, gid, on_demand)
                for record in records]

    def write_system_credentials(self, credential: Credential) -> None:
        """Write the root-owned 0600 credentials file fstab entries refer to

        The file is created empty with its final mode before the secret
        is written into it.
        """
        path = self.config.system_credentials_file
        result = self.runner.run(['install', '-m', '600', '-o', 'root', '-g', 'root', '/dev/null', path],
                                 privileged=True)
        if not result.ok:
            raise TableWriteFailed(f"Could not create {path}: {result.first_line()}")
        result = self.runner.run(['tee', path], input_text=credential.file_content(), privileged=True)
        if not result.ok:
            raise TableWriteFailed(f"Could not write {path}: {result.first_line()}")
        logger.info(f"Wrote credentials file {path}")

    def install_fstab(self, entries: List[FstabEntry],
                      credential: Optional[Credential] = None) -> InstallReport:
        """Add entries to fstab and arm their automount units

        Raises:
            TableWriteFailed: fstab or the credentials file could not be written
        """
        report = InstallReport()
        if credential is None:
            credential = self._credential or GUEST
        if any(entry.has_option('credentials') for entry in entries) and not credential.is_guest:
            self.write_system_credentials(credential)

        owner = invoking_user_ids()
        for entry in entries:
            ensure_directory(entry.mount_point, self.runner, owner)
            if self.fstab.add_entry(entry):
                report.added.append(entry.mount_point)
            else:
                report.skipped.append(entry.mount_point)

        if report.added:
            self.controller.reload()
            report.activated = self.controller.activate_all_under(self.config.mount_base)
        return report

    def fstab_list(self) -> List[FstabEntry]:
        return self.fstab.entries_for_host(self.config.host)

    def _entries_by_line(self, line_numbers: List[int]) -> List[FstabEntry]:
        by_line = {entry.line_number: entry for entry in self.fstab.read_entries()}
        invalid = [number for number in line_numbers if number not in by_line]
        if invalid:
            raise ValueError(f"No fstab entry on line(s): {', '.join(str(n) for n in sorted(invalid))}")
        return [by_line[number] for number in line_numbers]

    def fstab_remove(self, line_numbers: List[int]) -> List[FstabEntry]:
        """Stop the units of the given lines, then delete the lines"""
        for entry in self._entries_by_line(line_numbers):
            self.controller.stop_and_reset(entry.mount_point)
        return self.fstab.remove_entries(line_numbers)

    def fstab_edit(self, line_number: int, field: str, value: str) -> Tuple[FstabEntry, FstabEntry]:
        """Change one field of an entry, restarting its automount unit"""
        entry, = self._entries_by_line([line_number])
        self.controller.stop_and_reset(entry.mount_point)
        old, new = self.fstab.edit_entry(line_number, field, value)
        if new.mount_point != old.mount_point:
            ensure_directory(new.mount_point, self.runner, invoking_user_ids())
        if new.has_automount:
            self.controller.start(new.mount_point)
        return old, new
