#!/usr/bin/env python3
"""
Tests for fstab parsing and rewriting
"""

import os
import fcntl
import shutil
import unittest
import tempfile
from unittest import mock

from nasmount.errors import TableWriteFailed
from nasmount.protocols import SmbAdapter, NfsAdapter
from nasmount.utils.config import MountConfig
from nasmount.utils.fstab import FstabEntry, FstabStore, build_entry, persistent_options, is_under
from nasmount.utils.runner import CommandResult

FSTAB = (
    "# /etc/fstab: static file system information.\n"
    "UUID=1234-abcd  /  ext4  errors=remount-ro  0  1\n"
    "//10.0.0.5/media /mnt/nas/media cifs uid=1000,gid=1000,noauto,automount 0 0\n"
    "#//10.0.0.5/old /mnt/nas/old cifs guest 0 0\n"
    "//10.0.0.50/media   /mnt/other/media   cifs   guest   0   0\n"
    "10.0.0.6:/volume1/media /mnt/nfs/media nfs vers=4.2,x-systemd.automount 0 0\n"
)


def make_runner():
    runner = mock.Mock()
    runner.run.return_value = CommandResult(['true'], 0)
    return runner


class TestFstabEntry(unittest.TestCase):
    """Test FstabEntry parsing"""

    def test_parse(self):
        entry = FstabEntry("//10.0.0.5/media /mnt/nas/media cifs uid=1000,gid=1000,noauto,automount 0 0", 3)
        self.assertTrue(entry.is_valid)
        self.assertEqual(entry.source, "//10.0.0.5/media")
        self.assertEqual(entry.mount_point, "/mnt/nas/media")
        self.assertEqual(entry.fstype, "cifs")
        self.assertEqual(entry.options, ["uid=1000", "gid=1000", "noauto", "automount"])
        self.assertEqual(entry.option_value("uid"), "1000")
        self.assertTrue(entry.is_on_demand)
        self.assertEqual(entry.mode, "on-demand")

    def test_comment_and_empty(self):
        self.assertFalse(FstabEntry("# comment").is_valid)
        self.assertFalse(FstabEntry("   ").is_valid)
        self.assertFalse(FstabEntry("only-two fields").is_valid)

    def test_octal_escapes(self):
        entry = FstabEntry(r"//nas/my\040share /mnt/my\040share cifs guest 0 0")
        self.assertEqual(entry.source, "//nas/my share")
        self.assertEqual(entry.mount_point, "/mnt/my share")
        self.assertTrue(entry.to_line().startswith(r"//nas/my\040share  /mnt/my\040share  cifs"))

    def test_mode(self):
        self.assertEqual(FstabEntry("//nas/a /mnt/a cifs guest,_netdev 0 0").mode, "auto-mount")
        entry = FstabEntry("//nas/a /mnt/a cifs x-systemd.automount 0 0")
        self.assertEqual(entry.mode, "on-demand")
        # Without noauto it still mounts at boot
        self.assertFalse(entry.is_on_demand)

    def test_with_field(self):
        entry = FstabEntry("//nas/a /mnt/a cifs guest 0 0", 4)
        changed = entry.with_field("options", "guest,ro")
        self.assertEqual(changed.options, ["guest", "ro"])
        self.assertEqual(changed.line_number, 4)
        self.assertEqual(entry.options, ["guest"])
        self.assertEqual(entry.with_field("pass", "2").passno, "2")

        with self.assertRaises(ValueError):
            entry.with_field("colour", "blue")
        with self.assertRaises(ValueError):
            entry.with_field("dump", "x")

    def test_is_under(self):
        self.assertTrue(is_under("/mnt/nas/media", "/mnt/nas"))
        self.assertTrue(is_under("/mnt/nas/", "/mnt/nas"))
        self.assertFalse(is_under("/mnt/nas2/media", "/mnt/nas"))


class TestBuildEntry(unittest.TestCase):
    """Test generated entries"""

    def test_on_demand_options(self):
        config = MountConfig(host="10.0.0.5", mount_base="/home/u/nas")
        options = persistent_options(config, SmbAdapter(), "/etc/nas-credentials", 1000, 1000)
        self.assertEqual(options[0], "credentials=/etc/nas-credentials")
        for token in ("_netdev", "nofail", "noauto", "x-systemd.automount",
                      "x-systemd.idle-timeout=60", "x-systemd.mount-timeout=30"):
            self.assertIn(token, options)
        self.assertEqual(options.count("nofail"), 1)

    def test_auto_mount_options(self):
        config = MountConfig(host="nas", protocol="nfs")
        entry = build_entry(config, NfsAdapter(), "/volume1/media", "/home/u/nas/media", on_demand=False)
        self.assertEqual(entry.source, "nas:/volume1/media")
        self.assertEqual(entry.fstype, "nfs")
        self.assertNotIn("noauto", entry.options)
        self.assertEqual(entry.mode, "auto-mount")


class TestFstabStore(unittest.TestCase):
    """Test FstabStore reading and rewriting"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.fstab_path = os.path.join(self.temp_dir, "fstab")
        self.write(FSTAB)
        self.runner = make_runner()
        self.store = FstabStore(self.fstab_path, self.runner)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def write(self, content):
        with open(self.fstab_path, "w") as f:
            f.write(content)

    def read(self):
        with open(self.fstab_path) as f:
            return f.read()

    def backups(self):
        return sorted(name for name in os.listdir(self.temp_dir) if ".bak." in name)

    def test_read_entries(self):
        entries = self.store.read_entries()
        self.assertEqual([entry.line_number for entry in entries], [2, 3, 5, 6])

    def test_list_for_host(self):
        entries = self.store.entries_for_host("10.0.0.5")
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].mode, "on-demand")
        self.assertEqual(entries[0].mount_point, "/mnt/nas/media")

    def test_list_for_nfs_host(self):
        entries = self.store.entries_for_host("10.0.0.6")
        self.assertEqual([entry.source for entry in entries], ["10.0.0.6:/volume1/media"])

    def test_find_is_word_bounded(self):
        self.write("//nas/homes /mnt/homes cifs guest 0 0\n"
                   "nas:/volume1/homes /mnt/nfs-homes nfs vers=3 0 0\n")
        self.assertIsNone(self.store.find("nas", "home", SmbAdapter()))
        self.assertIsNotNone(self.store.find("nas", "homes", SmbAdapter()))
        self.assertIsNone(self.store.find("nas", "/volume1/home", NfsAdapter()))
        self.assertIsNotNone(self.store.find("nas", "/volume1/homes", NfsAdapter()))

    def test_add_entry_round_trip(self):
        config = MountConfig(host="10.0.0.5", mount_base="/home/u/nas")
        entry = build_entry(config, SmbAdapter(), "photos", "/home/u/nas/photos", "/etc/nas-credentials", 1000, 1000)

        self.assertTrue(self.store.add_entry(entry))

        content = self.read()
        self.assertTrue(content.startswith(FSTAB))
        found = self.store.find("10.0.0.5", "photos", SmbAdapter())
        self.assertEqual((found.source, found.mount_point, found.fstype),
                         ("//10.0.0.5/photos", "/home/u/nas/photos", "cifs"))
        self.runner.run.assert_any_call(['systemctl', 'daemon-reload'], timeout=30, privileged=True)

    def test_add_entry_skips_existing_share(self):
        entry = FstabEntry.create("//10.0.0.5/media", "/home/u/nas/media", "cifs", ["guest"])
        self.assertFalse(self.store.add_entry(entry))
        self.assertEqual(self.read(), FSTAB)
        self.assertEqual(self.backups(), [])

    def test_add_entry_skips_used_mount_point(self):
        entry = FstabEntry.create("//10.0.0.5/other", "/mnt/nas/media", "cifs", ["guest"])
        self.assertFalse(self.store.add_entry(entry))

    def test_add_entry_similar_name_is_not_duplicate(self):
        entry = FstabEntry.create("//10.0.0.5/med", "/home/u/nas/med", "cifs", ["guest"])
        self.assertTrue(self.store.add_entry(entry))

    def test_add_entry_checks_table_under_lock(self):
        # Another writer added the share after our last read
        entry = FstabEntry.create("//10.0.0.5/media", "/home/u/nas/media", "cifs", ["guest"])
        with mock.patch.object(FstabStore, 'read_entries', return_value=[]):
            self.assertFalse(self.store.add_entry(entry))
        self.assertEqual(self.read(), FSTAB)
        self.assertEqual(self.backups(), [])
        self.runner.run.assert_not_called()

    def test_backup_equals_previous_content(self):
        entry = FstabEntry.create("//10.0.0.5/photos", "/home/u/nas/photos", "cifs", ["guest"])
        self.store.add_entry(entry)

        self.assertIsNotNone(self.store.last_backup)
        self.assertNotEqual(self.store.last_backup, self.fstab_path)
        with open(self.store.last_backup) as f:
            self.assertEqual(f.read(), FSTAB)

    def test_remove_entries(self):
        self.write("".join(f"//nas/s{i} /mnt/s{i} cifs guest 0 0\n" for i in range(1, 9)))

        removed = self.store.remove_entries([7, 2, 5])

        self.assertEqual([entry.line_number for entry in removed], [2, 5, 7])
        self.assertEqual([entry.source for entry in removed], ["//nas/s2", "//nas/s5", "//nas/s7"])
        remaining = [entry.source for entry in self.store.read_entries()]
        self.assertEqual(remaining, ["//nas/s1", "//nas/s3", "//nas/s4", "//nas/s6", "//nas/s8"])

    def test_remove_invalid_line(self):
        with self.assertRaises(ValueError):
            self.store.remove_entries([3, 4])
        self.assertEqual(self.read(), FSTAB)
        self.assertEqual(self.backups(), [])

    def test_edit_entry(self):
        old, new = self.store.edit_entry(3, "options", "guest,noauto,x-systemd.automount")
        self.assertEqual(old.options, ["uid=1000", "gid=1000", "noauto", "automount"])
        self.assertEqual(new.options, ["guest", "noauto", "x-systemd.automount"])

        lines = self.read().splitlines()
        self.assertEqual(lines[2], "//10.0.0.5/media  /mnt/nas/media  cifs  guest,noauto,x-systemd.automount  0  0")
        # Other lines are untouched
        self.assertEqual(lines[4], "//10.0.0.50/media   /mnt/other/media   cifs   guest   0   0")

    def test_replace_mount_prefix(self):
        moved = self.store.replace_mount_prefix("/mnt/nas", "/home/u/nas")
        self.assertEqual(moved, [("/mnt/nas/media", "/home/u/nas/media")])
        self.assertEqual(self.store.entries_for_host("10.0.0.5")[0].mount_point, "/home/u/nas/media")
        # The commented-out line under /mnt/nas stays as it was
        self.assertIn("#//10.0.0.5/old /mnt/nas/old cifs guest 0 0\n", self.read())

    def test_failed_write_leaves_table_intact(self):
        entry = FstabEntry.create("//10.0.0.5/photos", "/home/u/nas/photos", "cifs", ["guest"])
        with mock.patch("nasmount.utils.fstab.os.replace", side_effect=OSError("No space left on device")):
            with self.assertRaises(TableWriteFailed):
                self.store.add_entry(entry)

        self.assertEqual(self.read(), FSTAB)
        leftovers = [name for name in os.listdir(self.temp_dir) if name.startswith(".fstab.")]
        self.assertEqual(leftovers, [])

    def test_lock_contention(self):
        lock_path = os.path.join(self.temp_dir, "nas-mount.lock")
        store = FstabStore(self.fstab_path, self.runner, lock_path)
        entry = FstabEntry.create("//10.0.0.5/photos", "/home/u/nas/photos", "cifs", ["guest"])

        with open(lock_path, "a") as holder:
            fcntl.flock(holder, fcntl.LOCK_EX | fcntl.LOCK_NB)
            try:
                with self.assertRaises(TableWriteFailed):
                    store.add_entry(entry)
            finally:
                fcntl.flock(holder, fcntl.LOCK_UN)

        self.assertEqual(self.read(), FSTAB)
        self.assertTrue(store.add_entry(entry))


if __name__ == '__main__':
    unittest.main()
