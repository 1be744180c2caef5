#!/usr/bin/env python3
"""
Tests for the command-line interface
"""

import io
import os
import unittest
from contextlib import redirect_stdout, redirect_stderr
from unittest import mock

from nasmount.__main__ import setup_argparse, build_config, main, COMMAND_ALIASES
from nasmount.errors import HostUnreachable
from nasmount.models import MountSummary, ShareResult, MountOutcome

CLEAN_ENVIRONMENT = {'NAS_CONFIG': '/nonexistent/nas-mount.json'}


class TestArgumentParsing(unittest.TestCase):
    """Test flag placement, aliases and config merging"""

    def setUp(self):
        self.parser = setup_argparse()

    def test_flags_before_and_after_command(self):
        args = self.parser.parse_args(['-i', '10.0.0.5', 'mount', '-s', 'media,backups', '--dry-run'])
        self.assertEqual(args.command, 'mount')
        self.assertEqual(args.ip, '10.0.0.5')
        self.assertEqual(args.shares, 'media,backups')
        self.assertTrue(args.dry_run)

    def test_flag_after_command_keeps_earlier_value(self):
        args = self.parser.parse_args(['-u', 'admin', 'status'])
        self.assertEqual(args.user, 'admin')
        self.assertFalse(args.verbose)

    def test_aliases(self):
        args = self.parser.parse_args(['umount'])
        self.assertEqual(COMMAND_ALIASES.get(args.command, args.command), 'unmount')
        args = self.parser.parse_args(['f', '--auto'])
        self.assertEqual(COMMAND_ALIASES.get(args.command, args.command), 'fstab')
        self.assertTrue(args.auto)

    def test_positional_arguments(self):
        args = self.parser.parse_args(['fstab-remove', '12', '14'])
        self.assertEqual(args.lines, [12, 14])
        args = self.parser.parse_args(['fstab-edit', '3', 'options', 'guest,noauto'])
        self.assertEqual((args.line, args.field, args.value), (3, 'options', 'guest,noauto'))
        args = self.parser.parse_args(['migrate', '/mnt/nas', '/home/u/nas'])
        self.assertEqual((args.old_base, args.new_base), ('/mnt/nas', '/home/u/nas'))

    @mock.patch.dict(os.environ, CLEAN_ENVIRONMENT, clear=True)
    def test_build_config(self):
        args = self.parser.parse_args(['-P', 'nfs', '-s', '/volume1/media', 'mount', '--soft', '-t', '10'])
        config = build_config(args)
        self.assertEqual(config.protocol, 'nfs')
        self.assertEqual(config.shares, ('/volume1/media',))
        self.assertEqual(config.timeout, 10)
        self.assertTrue(config.nfs_soft)
        self.assertFalse(config.dry_run)

    @mock.patch.dict(os.environ, dict(CLEAN_ENVIRONMENT, NAS_IP='10.0.0.9', NAS_USER='env-user'), clear=True)
    def test_flags_override_environment(self):
        config = build_config(self.parser.parse_args(['-i', '10.0.0.5', 'status']))
        self.assertEqual(config.host, '10.0.0.5')
        self.assertEqual(config.username, 'env-user')


@mock.patch.dict(os.environ, CLEAN_ENVIRONMENT, clear=True)
@mock.patch('nasmount.__main__.install_signal_handlers')
@mock.patch('nasmount.__main__.configure_logging')
@mock.patch('nasmount.__main__.MountOrchestrator')
class TestMain(unittest.TestCase):
    """Test dispatch and exit codes"""

    def test_no_command_prints_help(self, orchestrator, _logging, _signals):
        output = io.StringIO()
        with redirect_stdout(output):
            self.assertEqual(main([]), 0)
        self.assertIn("usage: nas-mount", output.getvalue())
        orchestrator.assert_not_called()

    def test_mount_exit_codes(self, orchestrator, _logging, _signals):
        app = orchestrator.return_value
        app.config.dry_run = False
        app.mount_all.return_value = MountSummary([ShareResult('media', MountOutcome.MOUNTED, '/nas/media')])
        with redirect_stdout(io.StringIO()) as output:
            self.assertEqual(main(['m']), 0)
        self.assertIn("✓ media -> /nas/media", output.getvalue())

        app.mount_all.return_value = MountSummary([ShareResult('media', MountOutcome.DENIED, '/nas/media',
                                                               "permission denied")])
        with redirect_stdout(io.StringIO()):
            self.assertEqual(main(['mount']), 1)

    def test_errors_are_reported(self, orchestrator, _logging, _signals):
        orchestrator.return_value.status.side_effect = HostUnreachable('10.0.0.5')
        errors = io.StringIO()
        with redirect_stderr(errors), redirect_stdout(io.StringIO()):
            self.assertEqual(main(['status']), 1)
        self.assertIn("Error: NAS at 10.0.0.5 is not reachable", errors.getvalue())

    def test_fstab_remove_needs_confirmation(self, orchestrator, _logging, _signals):
        app = orchestrator.return_value
        app.prompter.confirm.return_value = False
        with redirect_stdout(io.StringIO()) as output:
            self.assertEqual(main(['fstab-remove', '7']), 0)
        app.fstab_remove.assert_not_called()
        self.assertIn("Nothing removed", output.getvalue())


if __name__ == '__main__':
    unittest.main()
