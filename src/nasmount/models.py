#!/usr/bin/env python3
"""
Share records, outcomes and run summaries

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
from enum import Enum
from typing import List, Dict, Any, Optional, Sequence

from .protocols.base import ProtocolAdapter


class MountOutcome(Enum):
    """Terminal state of one share in a mount run"""
    MOUNTED = "mounted"
    ALREADY_MOUNTED = "already mounted"
    SKIPPED = "skipped"
    EXCLUDED = "excluded"
    DENIED = "permission denied"
    TIMED_OUT = "timed out"
    FAILED = "failed"


class RepairOutcome(Enum):
    HEALTHY = "healthy"
    REPAIRED = "repaired"
    FAILED = "failed"


class UnitState(Enum):
    UNKNOWN = "unknown"
    INACTIVE = "inactive"
    ACTIVE = "active"
    FAILED = "failed"


class ShareRecord:
    """Logical identity of a remote share and where it is mounted locally"""

    def __init__(self, protocol: str, host: str, share: str, mount_point: str):
        self.protocol = protocol
        self.host = host
        self.share = share
        self.mount_point = mount_point

    @property
    def key(self):
        return (self.host, self.protocol, self.share)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'protocol': self.protocol,
            'host': self.host,
            'share': self.share,
            'mount_point': self.mount_point,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShareRecord):
            return False
        return self.key == other.key and self.mount_point == other.mount_point

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"ShareRecord({self.protocol}://{self.host}/{self.share} -> {self.mount_point})"


def resolve_mount_points(shares: Sequence[str], host: str, base: str,
                         adapter: ProtocolAdapter) -> List[ShareRecord]:
    """Assign a distinct mount point under ``base`` to every share

    The first share with a given leaf name gets ``base/<leaf>``; later
    shares that would collide get a name built from their whole path.
    Duplicate share names are dropped.
    """
    records = []
    seen_shares = set()
    used_points = set()

    for share in shares:
        share = adapter.normalize_share(share)
        if not share or share in seen_shares:
            continue
        seen_shares.add(share)

        mount_point = os.path.join(base, adapter.leaf_name(share))
        if mount_point in used_points:
            mount_point = os.path.join(base, adapter.flat_name(share))
            suffix = 2
            candidate = mount_point
            while candidate in used_points:
                candidate = f"{mount_point}_{suffix}"
                suffix += 1
            mount_point = candidate

        used_points.add(mount_point)
        records.append(ShareRecord(adapter.name, host, share, mount_point))

    return records


class ShareResult:
    """What happened to one share during mount_all"""

    def __init__(self, share: str, outcome: MountOutcome, mount_point: str = "",
                 reason: str = "", needs_migration: bool = False,
                 dry_run: bool = False):
        self.share = share
        self.outcome = outcome
        self.mount_point = mount_point
        self.reason = reason
        self.needs_migration = needs_migration
        # Would have been mounted; nothing was executed
        self.dry_run = dry_run

    def __repr__(self) -> str:
        return f"ShareResult({self.share!r}, {self.outcome.name}, {self.reason!r})"


class MountSummary:
    """Aggregate result of a mount run"""

    def __init__(self, results: Optional[List[ShareResult]] = None,
                 nfs_version: Optional[str] = None):
        self.results = results or []
        self.nfs_version = nfs_version

    def count(self, outcome: MountOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def mounted(self) -> int:
        return self.count(MountOutcome.MOUNTED) + self.count(MountOutcome.ALREADY_MOUNTED)

    @property
    def failed(self) -> int:
        return self.count(MountOutcome.FAILED) + self.count(MountOutcome.TIMED_OUT)

    @property
    def denied(self) -> int:
        return self.count(MountOutcome.DENIED)

    @property
    def skipped(self) -> int:
        """Shares left alone, not counting dry-run entries"""
        return sum(1 for result in self.results
                   if result.outcome == MountOutcome.SKIPPED and not result.dry_run)

    @property
    def planned(self) -> int:
        return sum(1 for result in self.results if result.dry_run)

    @property
    def excluded(self) -> int:
        return self.count(MountOutcome.EXCLUDED)

    @property
    def migration_candidates(self) -> List[str]:
        """Old base directories of fstab entries living outside the current base"""
        bases = []
        for result in self.results:
            if result.needs_migration and result.mount_point:
                base = os.path.dirname(result.mount_point.rstrip('/'))
                if base not in bases:
                    bases.append(base)
        return bases

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.denied == 0


class UnmountSummary:
    def __init__(self):
        self.unmounted: List[str] = []
        self.failed: List[str] = []
        self.removed: List[str] = []

    @property
    def success(self) -> bool:
        return not self.failed


class RepairResult:
    def __init__(self, mount_point: str, source: str, outcome: RepairOutcome, reason: str = ""):
        self.mount_point = mount_point
        self.source = source
        self.outcome = outcome
        self.reason = reason

    def __repr__(self) -> str:
        return f"RepairResult({self.mount_point!r}, {self.outcome.name}, {self.reason!r})"


class RepairSummary:
    def __init__(self, results: Optional[List[RepairResult]] = None):
        self.results = results or []

    @property
    def total(self) -> int:
        return len(self.results)

    def _count(self, outcome: RepairOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def healthy(self) -> int:
        return self._count(RepairOutcome.HEALTHY)

    @property
    def repaired(self) -> int:
        return self._count(RepairOutcome.REPAIRED)

    @property
    def failed(self) -> int:
        return self._count(RepairOutcome.FAILED)


class MigrationReport:
    def __init__(self, old_base: str, new_base: str):
        self.old_base = old_base
        self.new_base = new_base
        self.moved: List[tuple] = []
        self.aborted = False
        self.activated = 0
        self.symlinked = False


class InstallReport:
    def __init__(self):
        self.added: List[str] = []
        self.skipped: List[str] = []
        self.activated = 0


class MountStatus:
    """One directory under the mount base as seen by ``status``"""

    def __init__(self, mount_point: str, mounted: bool, usage: str = ""):
        self.mount_point = mount_point
        self.mounted = mounted
        self.usage = usage

    @property
    def name(self) -> str:
        return os.path.basename(self.mount_point.rstrip('/'))


class StatusReport:
    """Snapshot of the NAS, its fstab entries and the active mounts"""

    def __init__(self, host: str, mount_base: str, reachable: bool):
        self.host = host
        self.mount_base = mount_base
        self.reachable = reachable
        # (FstabEntry, UnitState) pairs
        self.entries: List[tuple] = []
        self.mounts: List[MountStatus] = []

    @property
    def mounted_count(self) -> int:
        return sum(1 for mount in self.mounts if mount.mounted)
