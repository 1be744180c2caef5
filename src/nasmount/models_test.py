#!/usr/bin/env python3
"""
Tests for share records and run summaries
"""

import unittest

from nasmount.models import (
    MountOutcome, ShareResult, MountSummary, RepairOutcome, RepairResult, RepairSummary,
    resolve_mount_points,
)
from nasmount.protocols import SmbAdapter, NfsAdapter


class TestResolveMountPoints(unittest.TestCase):
    """Test mount point assignment"""

    def test_smb_shares(self):
        records = resolve_mount_points(['media', 'backups', 'media'], '10.0.0.5', '/home/u/nas', SmbAdapter())
        self.assertEqual([record.mount_point for record in records],
                         ['/home/u/nas/media', '/home/u/nas/backups'])
        self.assertEqual(records[0].key, ('10.0.0.5', 'smb', 'media'))

    def test_nfs_leaf_collision(self):
        shares = ['/volume1/media', '/volume2/media', '/volume1/photos']
        records = resolve_mount_points(shares, 'nas', '/mnt/nas', NfsAdapter())
        self.assertEqual([record.mount_point for record in records],
                         ['/mnt/nas/media', '/mnt/nas/volume2_media', '/mnt/nas/photos'])
        self.assertEqual(len({record.mount_point for record in records}), 3)


class TestMountSummary(unittest.TestCase):
    """Test aggregation of mount results"""

    def test_counts(self):
        summary = MountSummary([
            ShareResult('a', MountOutcome.MOUNTED, '/nas/a'),
            ShareResult('b', MountOutcome.ALREADY_MOUNTED, '/nas/b'),
            ShareResult('c', MountOutcome.TIMED_OUT, '/nas/c', 'timed out after 30s'),
            ShareResult('d', MountOutcome.DENIED, '/nas/d', 'permission denied'),
            ShareResult('e', MountOutcome.EXCLUDED),
        ])
        self.assertEqual(summary.mounted, 2)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.denied, 1)
        self.assertEqual(summary.excluded, 1)
        self.assertFalse(summary.success)

    def test_migration_candidates(self):
        summary = MountSummary([
            ShareResult('a', MountOutcome.SKIPPED, '/mnt/nas/a', 'fstab', needs_migration=True),
            ShareResult('b', MountOutcome.SKIPPED, '/mnt/nas/b', 'fstab', needs_migration=True),
            ShareResult('c', MountOutcome.SKIPPED, '/home/u/nas/c', 'fstab'),
        ])
        self.assertEqual(summary.migration_candidates, ['/mnt/nas'])
        self.assertTrue(summary.success)

    def test_dry_run_is_counted_apart_from_skipped(self):
        summary = MountSummary([
            ShareResult('a', MountOutcome.SKIPPED, '/mnt/nas/a', 'managed by /etc/fstab line 4'),
            ShareResult('b', MountOutcome.SKIPPED, '/nas/b', 'dry run', dry_run=True),
            ShareResult('c', MountOutcome.SKIPPED, '/nas/c', 'dry run', dry_run=True),
        ])
        self.assertEqual(summary.skipped, 1)
        self.assertEqual(summary.planned, 2)


class TestRepairSummary(unittest.TestCase):

    def test_counts(self):
        summary = RepairSummary([
            RepairResult('/nas/a', '//nas/a', RepairOutcome.HEALTHY),
            RepairResult('/nas/b', '//nas/b', RepairOutcome.REPAIRED),
            RepairResult('/nas/c', '//nas/c', RepairOutcome.FAILED, 'automount unit failed to start'),
        ])
        self.assertEqual((summary.total, summary.healthy, summary.repaired, summary.failed), (3, 1, 1, 1))


if __name__ == '__main__':
    unittest.main()
