#!/usr/bin/env python3
"""
Moving fstab-managed mount points to a new base directory

Used when the configured mount base changes (for example from /mnt/nas
to ~/nas) while fstab still points at the old location.

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
from typing import Optional

from .models import MigrationReport
from .utils.filesystem import MountTable, ensure_directory, remove_empty_directory, invoking_user_ids
from .utils.fstab import FstabStore
from .utils.prompt import Prompter, ConsolePrompter
from .utils.runner import CommandRunner
from .utils.systemd import AutomountController

logger = logging.getLogger(__name__)


class MigrationEngine:
    """Rewrites fstab mount points from one base directory to another"""

    def __init__(self, fstab: FstabStore, controller: AutomountController,
                 runner: Optional[CommandRunner] = None, prompter: Optional[Prompter] = None,
                 mount_table: Optional[MountTable] = None, timeout: int = 30):
        self.fstab = fstab
        self.controller = controller
        self.runner = runner or CommandRunner(default_timeout=timeout)
        self.prompter = prompter or ConsolePrompter()
        self.mount_table = mount_table or MountTable()
        self.timeout = timeout

    def migrate(self, old_base: str, new_base: str, assume_yes: bool = False) -> MigrationReport:
        """Move every entry under ``old_base`` to ``new_base``

        Args:
            old_base: Directory the fstab entries currently live under
            new_base: Directory they should move to
            assume_yes: Skip the confirmation prompt

        Returns:
            MigrationReport; ``aborted`` is set when the user declined
        """
        old_base = os.path.normpath(os.path.expanduser(old_base))
        new_base = os.path.normpath(os.path.expanduser(new_base))
        if old_base == new_base:
            raise ValueError(f"Old and new base are the same: {old_base}")

        report = MigrationReport(old_base, new_base)
        entries = self.fstab.entries_under(old_base)
        if not entries:
            logger.info(f"No fstab entries under {old_base}, nothing to migrate")
            return report

        if not assume_yes:
            question = f"Move {len(entries)} fstab mount point(s) from {old_base} to {new_base}?"
            try:
                confirmed = self.prompter.confirm(question)
            except EOFError:
                confirmed = False
            if not confirmed:
                logger.info("Migration declined, nothing changed")
                report.aborted = True
                return report

        for entry in entries:
            self.controller.stop_and_reset(entry.mount_point)

        report.moved = self.fstab.replace_mount_prefix(old_base, new_base)

        owner = invoking_user_ids()
        for _, target in report.moved:
            ensure_directory(target, self.runner, owner)

        # Deepest first so nested mount points empty their parents
        for source, _ in sorted(report.moved, key=lambda pair: len(pair[0]), reverse=True):
            if self.mount_table.is_mounted(source):
                self.runner.run(['umount', '-l', source], timeout=self.timeout, privileged=True)
            if os.path.isdir(source) and not os.path.islink(source):
                remove_empty_directory(source, self.runner)

        if os.path.isdir(old_base) and not os.path.islink(old_base):
            if remove_empty_directory(old_base, self.runner):
                logger.info(f"Removed empty {old_base}")

        self.controller.reload()
        report.activated = self.controller.activate_all_under(new_base)

        if not os.path.lexists(old_base):
            report.symlinked = self._symlink(new_base, old_base)

        logger.info(f"Migrated {len(report.moved)} mount point(s) from {old_base} to {new_base}")
        return report

    def _symlink(self, target: str, link: str) -> bool:
        """Leave ``link`` pointing at ``target`` so old paths keep working"""
        try:
            os.symlink(target, link)
        except PermissionError:
            result = self.runner.run(['ln', '-s', target, link], timeout=self.timeout, privileged=True)
            if not result.ok:
                logger.warning(f"Could not create symlink {link} -> {target}: {result.first_line()}")
                return False
        except OSError as e:
            logger.warning(f"Could not create symlink {link} -> {target}: {e}")
            return False
        logger.info(f"Linked {link} -> {target}")
        return True
