#!/usr/bin/env python3
"""
NFS protocol adapter
"""

import re
from typing import List, Optional, Tuple

from .base import ProtocolAdapter
from ..utils.config import MountConfig

# Tried in order when the server rejects a version
NFS_VERSION_CHAIN: Tuple[str, ...] = ("4.2", "4.1", "4.0", "3")


class NfsAdapter(ProtocolAdapter):
    """Adapter for NFS exports mounted through mount.nfs

    NFS share names are absolute export paths such as ``/volume1/media``.
    Authentication is host-based, so no credentials are involved.
    """

    name = "nfs"
    fstype = "nfs"
    mount_helper = "mount.nfs"
    discovery_tool = "showmount"
    requires_credentials = False
    default_extra_options = "nofail"

    def normalize_share(self, share: str) -> str:
        path = share.strip()
        path = '/' + path.strip('/')
        return re.sub(r'/{2,}', '/', path)

    def source(self, host: str, share: str) -> str:
        return f"{host}:{self.normalize_share(share)}"

    def source_pattern(self, host: str) -> str:
        return r'^' + re.escape(host) + r':(/.*?)/?$'

    def default_version(self, config: MountConfig) -> str:
        return config.nfs_version

    def protocol_options(self, config: MountConfig, credentials_file: Optional[str],
                         uid: int, gid: int, version: Optional[str] = None) -> List[str]:
        options = [f"vers={version or config.nfs_version}"]
        if config.rsize:
            options.append(f"rsize={config.rsize}")
        if config.wsize:
            options.append(f"wsize={config.wsize}")
        if config.actimeo is not None:
            options.append(f"actimeo={config.actimeo}")
        options.append("soft" if config.nfs_soft else "hard")
        options.append(f"timeo={config.nfs_timeo}")
        options.append(f"retrans={config.nfs_retrans}")
        if config.nfs_nconnect:
            options.append(f"nconnect={config.nfs_nconnect}")
        return options


def fallback_versions(start: str) -> List[str]:
    """Versions to try, beginning with ``start``

    A version outside the known chain is tried on its own.
    """
    if start in NFS_VERSION_CHAIN:
        return list(NFS_VERSION_CHAIN[NFS_VERSION_CHAIN.index(start):])
    return [start]
