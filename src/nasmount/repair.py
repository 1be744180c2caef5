#!/usr/bin/env python3
"""
Health check and repair of fstab-managed shares

A share whose server went away (suspend, network change) stays in the
kernel mount table but hangs every access. Repair lazy-unmounts it,
resets its systemd units and triggers a fresh mount.

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

import logging
from typing import Optional

from .errors import HostUnreachable, MountFailed, ProtocolVersionUnsupported
from .mounter import check_mount_result
from .models import RepairOutcome, RepairResult, RepairSummary
from .utils.config import MountConfig
from .utils.filesystem import MountTable
from .utils.fstab import FstabEntry, FstabStore
from .utils.progress import ProgressTracker, OperationType
from .utils.runner import CommandRunner
from .utils.systemd import AutomountController

logger = logging.getLogger(__name__)

# stat on a healthy mount answers at once; a stale one never does
HEALTH_PROBE_TIMEOUT = 5


class RepairEngine:
    """Finds unresponsive fstab mounts for the NAS and brings them back"""

    def __init__(self, config: MountConfig, fstab: FstabStore, controller: AutomountController,
                 runner: Optional[CommandRunner] = None, mount_table: Optional[MountTable] = None):
        self.config = config
        self.fstab = fstab
        self.controller = controller
        self.runner = runner or CommandRunner(default_timeout=config.timeout)
        self.mount_table = mount_table or MountTable()

    def is_healthy(self, mount_point: str) -> bool:
        if not self.mount_table.is_mounted(mount_point):
            return False
        return self.runner.run(['stat', '-t', mount_point], timeout=HEALTH_PROBE_TIMEOUT).ok

    def repair(self) -> RepairSummary:
        """Check every fstab entry for the configured host

        Raises:
            HostUnreachable: Nothing is touched when the NAS is down
        """
        host = self.config.host
        if not self.runner.ping(host):
            raise HostUnreachable(host)

        entries = self.fstab.entries_for_host(host)
        summary = RepairSummary()
        if not entries:
            logger.info(f"No fstab entries for {host}")
            return summary

        with ProgressTracker(OperationType.REPAIR, total=len(entries), desc=f"Checking {host}") as progress:
            for entry in entries:
                result = self.repair_entry(entry)
                summary.results.append(result)
                progress.update(1, f"{entry.mount_point}: {result.outcome.value}")

        logger.info(f"Repair finished: {summary.total} total, {summary.healthy} healthy, "
                    f"{summary.repaired} repaired, {summary.failed} failed")
        return summary

    def repair_entry(self, entry: FstabEntry) -> RepairResult:
        mount_point = entry.mount_point
        if self.is_healthy(mount_point):
            logger.debug(f"{mount_point} is healthy")
            return RepairResult(mount_point, entry.source, RepairOutcome.HEALTHY)

        logger.info(f"{mount_point} is stale or not mounted, repairing")
        self.runner.run(['umount', '-l', mount_point], timeout=self.config.timeout, privileged=True)

        if entry.has_automount:
            return self._retrigger_automount(entry)
        return self._remount(entry)

    def _retrigger_automount(self, entry: FstabEntry) -> RepairResult:
        mount_point = entry.mount_point
        self.controller.stop_and_reset(mount_point)
        if not self.controller.start(mount_point):
            return RepairResult(mount_point, entry.source, RepairOutcome.FAILED,
                                "automount unit failed to start")

        # Listing the directory fires the automount trigger
        listing = self.runner.run(['ls', mount_point], timeout=self.config.timeout)
        if listing.ok:
            logger.info(f"Repaired {mount_point}")
            return RepairResult(mount_point, entry.source, RepairOutcome.REPAIRED)

        if listing.timed_out:
            reason = f"still not accessible after {self.config.timeout}s"
        else:
            reason = listing.first_line() or "not accessible after restart"
        logger.error(f"Repair of {mount_point} failed: {reason}")
        return RepairResult(mount_point, entry.source, RepairOutcome.FAILED, reason)

    def _remount(self, entry: FstabEntry) -> RepairResult:
        mount_point = entry.mount_point
        result = self.runner.run(['mount', mount_point], timeout=self.config.timeout, privileged=True)
        try:
            check_mount_result(result, entry.option_value('vers'), self.config.timeout)
        except (MountFailed, ProtocolVersionUnsupported) as e:
            logger.error(f"Remount of {mount_point} failed: {e}")
            return RepairResult(mount_point, entry.source, RepairOutcome.FAILED, str(e))

        logger.info(f"Remounted {mount_point}")
        return RepairResult(mount_point, entry.source, RepairOutcome.REPAIRED)
