"""
Protocol adapters for nas-mount.

This module provides the SMB and NFS translations from a logical share
to mount sources, filesystem types and option strings.
"""

from .base import ProtocolAdapter
from .smb import SmbAdapter
from .nfs import NfsAdapter, NFS_VERSION_CHAIN, fallback_versions
from .factory import get_adapter, adapter_for_source

__all__ = [
    'ProtocolAdapter',
    'SmbAdapter',
    'NfsAdapter',
    'NFS_VERSION_CHAIN',
    'fallback_versions',
    'get_adapter',
    'adapter_for_source',
]
