#!/usr/bin/env python3
"""
Base protocol adapter abstract class

An adapter is the only place where SMB and NFS differ. It turns a
logical (host, share) pair into the strings the mount helpers and the
fstab expect. Adapters perform no I/O.
"""

import os
import re
from abc import ABC, abstractmethod
from typing import List, Optional

from ..utils.config import MountConfig


class ProtocolAdapter(ABC):
    """Base class for all protocol adapters"""

    name = ""
    fstype = ""
    mount_helper = ""
    discovery_tool = ""
    requires_credentials = False
    default_extra_options = ""

    @abstractmethod
    def normalize_share(self, share: str) -> str:
        """Canonical spelling of a share name"""
        pass

    @abstractmethod
    def source(self, host: str, share: str) -> str:
        """The source locator passed to mount and written to fstab"""
        pass

    @abstractmethod
    def source_pattern(self, host: str) -> str:
        """Regex matching any source on ``host``; group 1 is the share"""
        pass

    @abstractmethod
    def protocol_options(self, config: MountConfig, credentials_file: Optional[str],
                         uid: int, gid: int, version: Optional[str] = None) -> List[str]:
        """Protocol-specific mount options, without the extra options"""
        pass

    @abstractmethod
    def default_version(self, config: MountConfig) -> str:
        pass

    def mount_options(self, config: MountConfig, credentials_file: Optional[str] = None,
                      uid: int = 0, gid: int = 0, version: Optional[str] = None) -> List[str]:
        """Full option list for a mount of this protocol

        Args:
            config: Current configuration (tuning knobs)
            credentials_file: Path of a credentials file, or None for guest
            uid: Owner to map files to (SMB only)
            gid: Group to map files to (SMB only)
            version: Protocol version override, e.g. during NFS fallback

        Returns:
            Ordered list of option tokens
        """
        options = self.protocol_options(config, credentials_file, uid, gid, version)
        extra = config.extra_options if config.extra_options is not None else self.default_extra_options
        for token in extra.split(','):
            token = token.strip()
            if token and token not in options:
                options.append(token)
        return options

    def share_from_source(self, host: str, source: str) -> Optional[str]:
        """Extract the share name if ``source`` belongs to ``host``

        The match is anchored on both ends so a share named ``home``
        never matches a line for ``homes``.
        """
        match = re.match(self.source_pattern(host), source)
        if not match:
            return None
        return self.normalize_share(match.group(1))

    def matches(self, host: str, share: str, source: str) -> bool:
        return self.share_from_source(host, source) == self.normalize_share(share)

    def leaf_name(self, share: str) -> str:
        """Directory name used for the share's local mount point"""
        return os.path.basename(self.normalize_share(share).rstrip('/')) or share.strip('/')

    def flat_name(self, share: str) -> str:
        """Collision-free directory name built from the whole share path"""
        return self.normalize_share(share).strip('/').replace('/', '_')

    def __str__(self) -> str:
        return self.name
