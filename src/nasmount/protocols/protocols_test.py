#!/usr/bin/env python3
"""
Tests for the SMB and NFS protocol adapters
"""

import unittest

from nasmount.protocols import (
    SmbAdapter, NfsAdapter, NFS_VERSION_CHAIN, fallback_versions, get_adapter, adapter_for_source,
)
from nasmount.utils.config import MountConfig


class TestFactory(unittest.TestCase):
    """Test adapter lookup"""

    def test_get_adapter(self):
        self.assertIsInstance(get_adapter('smb'), SmbAdapter)
        self.assertIsInstance(get_adapter('CIFS'), SmbAdapter)
        self.assertIsInstance(get_adapter('nfs'), NfsAdapter)

    def test_unknown_protocol(self):
        with self.assertRaises(ValueError):
            get_adapter('afp')

    def test_adapter_for_source(self):
        self.assertIsInstance(adapter_for_source('//nas/media'), SmbAdapter)
        self.assertIsInstance(adapter_for_source('nas:/volume1/media'), NfsAdapter)
        self.assertIsNone(adapter_for_source('/dev/sda1'))
        self.assertIsNone(adapter_for_source('UUID=1234'))


class TestSmbAdapter(unittest.TestCase):
    """Test SMB locators and options"""

    def setUp(self):
        self.adapter = SmbAdapter()
        self.config = MountConfig(host='10.0.0.5')

    def test_source_is_pure(self):
        first = (self.adapter.source('10.0.0.5', 'media'), self.adapter.fstype)
        second = (self.adapter.source('10.0.0.5', 'media'), self.adapter.fstype)
        self.assertEqual(first, second)
        self.assertEqual(first, ('//10.0.0.5/media', 'cifs'))

    def test_share_from_source_is_word_bounded(self):
        self.assertEqual(self.adapter.share_from_source('10.0.0.5', '//10.0.0.5/homes'), 'homes')
        self.assertFalse(self.adapter.matches('10.0.0.5', 'home', '//10.0.0.5/homes'))
        self.assertFalse(self.adapter.matches('10.0.0.5', 'homes', '//10.0.0.5/home'))
        self.assertTrue(self.adapter.matches('10.0.0.5', 'home', '//10.0.0.5/home/'))

    def test_share_from_other_host(self):
        self.assertIsNone(self.adapter.share_from_source('10.0.0.5', '//10.0.0.50/media'))
        # Dots in the host are literal
        self.assertIsNone(self.adapter.share_from_source('10.0.0.5', '//10x0x0x5/media'))

    def test_mount_options_with_credentials(self):
        options = self.adapter.mount_options(self.config, '/run/user/1000/nas-mount/.creds', 1000, 1000)
        self.assertEqual(options[:4], ['credentials=/run/user/1000/nas-mount/.creds',
                                       'uid=1000', 'gid=1000', 'vers=3.0'])
        self.assertIn('rsize=1048576', options)
        self.assertIn('actimeo=30', options)
        self.assertEqual(options[-4:], ['iocharset=utf8', 'file_mode=0775', 'dir_mode=0775', 'nofail'])

    def test_guest_and_overrides(self):
        config = self.config.with_overrides(smb_max_credits=128, extra_options='ro')
        options = self.adapter.mount_options(config, None, 0, 0, version='2.1')
        self.assertEqual(options[0], 'guest')
        self.assertIn('vers=2.1', options)
        self.assertIn('max_credits=128', options)
        self.assertEqual(options[-1], 'ro')
        self.assertNotIn('iocharset=utf8', options)


class TestNfsAdapter(unittest.TestCase):
    """Test NFS locators and options"""

    def setUp(self):
        self.adapter = NfsAdapter()
        self.config = MountConfig(host='nas', protocol='nfs')

    def test_source(self):
        self.assertEqual(self.adapter.source('nas', 'volume1/media'), 'nas:/volume1/media')
        self.assertEqual(self.adapter.source('nas', '//volume1//media/'), 'nas:/volume1/media')
        self.assertEqual(self.adapter.fstype, 'nfs')
        self.assertFalse(self.adapter.requires_credentials)

    def test_share_from_source_is_word_bounded(self):
        self.assertEqual(self.adapter.share_from_source('nas', 'nas:/volume1/homes'), '/volume1/homes')
        self.assertFalse(self.adapter.matches('nas', '/volume1/home', 'nas:/volume1/homes'))
        self.assertFalse(self.adapter.matches('nas', '/volume1/homes', 'nas:/volume1/home'))
        self.assertIsNone(self.adapter.share_from_source('nas', 'nas2:/volume1/home'))

    def test_mount_options(self):
        config = self.config.with_overrides(nfs_soft=True, nfs_nconnect=4)
        options = self.adapter.mount_options(config, version='4.1')
        self.assertEqual(options, ['vers=4.1', 'rsize=1048576', 'wsize=1048576', 'actimeo=30',
                                   'soft', 'timeo=600', 'retrans=2', 'nconnect=4', 'nofail'])

    def test_hard_by_default(self):
        options = self.adapter.mount_options(self.config)
        self.assertIn('hard', options)
        self.assertIn('vers=4.2', options)

    def test_leaf_and_flat_names(self):
        self.assertEqual(self.adapter.leaf_name('/volume1/media'), 'media')
        self.assertEqual(self.adapter.flat_name('/volume1/media'), 'volume1_media')

    def test_fallback_versions(self):
        self.assertEqual(NFS_VERSION_CHAIN, ('4.2', '4.1', '4.0', '3'))
        self.assertEqual(fallback_versions('4.2'), ['4.2', '4.1', '4.0', '3'])
        self.assertEqual(fallback_versions('4.0'), ['4.0', '3'])
        self.assertEqual(fallback_versions('4'), ['4'])


if __name__ == '__main__':
    unittest.main()
