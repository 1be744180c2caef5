#!/usr/bin/env python3
"""
Tests for share discovery
"""

import os
import shutil
import unittest
import tempfile
from unittest import mock

from nasmount.discovery import ShareDiscovery, parse_smb_listing, parse_showmount
from nasmount.errors import HostUnreachable, DiscoveryFailed, NoExportsFound
from nasmount.utils.credentials import Credential
from nasmount.utils.fstab import FstabEntry
from nasmount.utils.runner import CommandResult

SMB_LISTING = (
    "\n"
    "\tSharename       Type      Comment\n"
    "\t---------       ----      -------\n"
    "\tmedia           Disk      Media files\n"
    "\thomes           Disk      \n"
    "\tIPC$            IPC       IPC Service (NAS)\n"
    "\tadmin$          Disk      Admin share\n"
    "SMB1 disabled -- no workgroup available\n"
)


def make_runner(handler, reachable=True):
    runner = mock.Mock()
    runner.ping.return_value = reachable
    runner.run.side_effect = lambda args, **kwargs: handler(list(args))
    return runner


class TestParsers(unittest.TestCase):

    def test_parse_smb_listing(self):
        shares = parse_smb_listing(SMB_LISTING)
        self.assertEqual([(share.name, share.comment) for share in shares],
                         [("media", "Media files"), ("homes", "")])

    def test_parse_showmount(self):
        output = "/volume1/media *\n/volume1/backups 10.0.0.0/24\n\n"
        self.assertEqual(parse_showmount(output), ["/volume1/media", "/volume1/backups"])


@mock.patch('nasmount.discovery.find_executable', return_value='/usr/bin/tool')
class TestSmbDiscovery(unittest.TestCase):
    """Test smbclient-based discovery"""

    def setUp(self):
        self.runtime_dir = tempfile.mkdtemp()
        self.env = mock.patch.dict(os.environ, {'XDG_RUNTIME_DIR': self.runtime_dir})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.runtime_dir)

    def test_guest_listing(self, _find):
        runner = make_runner(lambda args: CommandResult(args, 0, stdout=SMB_LISTING))
        fstab = mock.Mock()
        fstab.entries_for_host.return_value = [FstabEntry("//nas/media /mnt/nas/media cifs guest 0 0", 1)]

        shares = ShareDiscovery(runner, fstab).discover("nas", "smb")

        self.assertEqual([share.name for share in shares], ["media", "homes"])
        self.assertEqual([share.in_fstab for share in shares], [True, False])
        args = runner.run.call_args[0][0]
        self.assertEqual(args[:4], ['smbclient', '-L', '//nas', '-N'])
        self.assertIn('--option=client min protocol=SMB2', args)

    def test_authenticated_listing_uses_auth_file(self, _find):
        seen = {}

        def handler(args):
            auth_file = args[args.index('-A') + 1]
            with open(auth_file) as f:
                seen['content'] = f.read()
            seen['path'] = auth_file
            return CommandResult(args, 0, stdout=SMB_LISTING)

        names = ShareDiscovery(make_runner(handler)).names("nas", "smb", Credential("admin", "secret"))

        self.assertEqual(names, ["media", "homes"])
        self.assertEqual(seen['content'], "username=admin\npassword=secret\n")
        self.assertFalse(os.path.exists(seen['path']))

    def test_no_shares(self, _find):
        runner = make_runner(lambda args: CommandResult(
            args, 1, stderr="session setup failed: NT_STATUS_LOGON_FAILURE"))
        with self.assertRaises(DiscoveryFailed) as context:
            ShareDiscovery(runner).discover("nas", "smb")
        self.assertIn("NT_STATUS_LOGON_FAILURE", str(context.exception))

    def test_timeout(self, _find):
        runner = make_runner(lambda args: CommandResult(args, 124, timed_out=True))
        with self.assertRaises(DiscoveryFailed):
            ShareDiscovery(runner, timeout=3).discover("nas", "smb")

    def test_unreachable(self, _find):
        runner = make_runner(lambda args: CommandResult(args, 0), reachable=False)
        with self.assertRaises(HostUnreachable):
            ShareDiscovery(runner).discover("nas", "smb")
        runner.run.assert_not_called()

    def test_smbclient_missing(self, find):
        find.return_value = None
        runner = make_runner(lambda args: CommandResult(args, 0))
        with mock.patch('nasmount.discovery.get_distro_info') as distro_info:
            distro_info.return_value.install_hint.return_value = "sudo apt install smbclient"
            with self.assertRaises(DiscoveryFailed) as context:
                ShareDiscovery(runner).discover("nas", "smb")
        self.assertIn("sudo apt install smbclient", str(context.exception))


@mock.patch('nasmount.discovery.find_executable', return_value='/usr/sbin/showmount')
class TestNfsDiscovery(unittest.TestCase):
    """Test showmount and the pseudo-root probe"""

    def test_showmount(self, _find):
        runner = make_runner(lambda args: CommandResult(args, 0, stdout="/volume1/media *\n/volume1/backups *\n"))
        names = ShareDiscovery(runner).names("nas", "nfs")
        self.assertEqual(names, ["/volume1/media", "/volume1/backups"])

    def test_pseudo_root_fallback(self, _find):
        commands = []
        probe = {}

        def handler(args):
            commands.append(args)
            if args[0] == 'showmount':
                return CommandResult(args, 1, stderr="clnt_create: RPC: Program not registered")
            if args[0] == 'mount':
                probe['dir'] = args[4]
                return CommandResult(args, 0)
            if args[0] == 'ls':
                return CommandResult(args, 0, stdout="media\nphotos\n")
            return CommandResult(args, 0)

        names = ShareDiscovery(make_runner(handler)).names("nas", "nfs")

        self.assertEqual(names, ["/media", "/photos"])
        self.assertEqual(commands[1][:4], ['mount', '-t', 'nfs', 'nas:/'])
        self.assertEqual(commands[1][-1], "ro,soft,vers=4,timeo=50,retrans=1")
        self.assertEqual(commands[-1], ['umount', '-l', probe['dir']])
        self.assertFalse(os.path.exists(probe['dir']))

    def test_no_exports(self, _find):
        def handler(args):
            if args[0] == 'showmount':
                return CommandResult(args, 0, stdout="")
            if args[0] == 'mount':
                return CommandResult(args, 32, stderr="mount.nfs: access denied by server")
            return CommandResult(args, 0)

        with self.assertRaises(NoExportsFound):
            ShareDiscovery(make_runner(handler)).discover("nas", "nfs")


if __name__ == '__main__':
    unittest.main()
