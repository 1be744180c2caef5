#!/usr/bin/env python3
"""
SMB/CIFS protocol adapter
"""

import re
from typing import List, Optional

from .base import ProtocolAdapter
from ..utils.config import MountConfig


class SmbAdapter(ProtocolAdapter):
    """Adapter for SMB shares mounted through mount.cifs"""

    name = "smb"
    fstype = "cifs"
    mount_helper = "mount.cifs"
    discovery_tool = "smbclient"
    requires_credentials = True
    default_extra_options = "iocharset=utf8,file_mode=0775,dir_mode=0775,nofail"

    def normalize_share(self, share: str) -> str:
        return share.strip().strip('/')

    def source(self, host: str, share: str) -> str:
        return f"//{host}/{self.normalize_share(share)}"

    def source_pattern(self, host: str) -> str:
        return r'^//' + re.escape(host) + r'/([^/]+)/?$'

    def default_version(self, config: MountConfig) -> str:
        return config.smb_version

    def protocol_options(self, config: MountConfig, credentials_file: Optional[str],
                         uid: int, gid: int, version: Optional[str] = None) -> List[str]:
        options = [f"credentials={credentials_file}" if credentials_file else "guest"]
        options.append(f"uid={uid}")
        options.append(f"gid={gid}")
        options.append(f"vers={version or config.smb_version}")
        if config.rsize:
            options.append(f"rsize={config.rsize}")
        if config.wsize:
            options.append(f"wsize={config.wsize}")
        if config.actimeo is not None:
            options.append(f"actimeo={config.actimeo}")
        if config.smb_max_credits:
            options.append(f"max_credits={config.smb_max_credits}")
        return options
