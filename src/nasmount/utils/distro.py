#!/usr/bin/env python3
"""
Distribution detection utilities for nas-mount

Used to tell the user which package provides a missing tool and how to
install it on their distribution.
"""

import logging
from typing import Dict, List, Optional

import distro

logger = logging.getLogger(__name__)

# Package providing each external tool, per distribution family
TOOL_PACKAGES: Dict[str, Dict[str, str]] = {
    'debian': {
        'mount.cifs': 'cifs-utils',
        'smbclient': 'smbclient',
        'mount.nfs': 'nfs-common',
        'showmount': 'nfs-common',
        'secret-tool': 'libsecret-tools',
        'mount': 'mount',
        'umount': 'mount',
        'ping': 'iputils-ping',
    },
    'fedora': {
        'mount.cifs': 'cifs-utils',
        'smbclient': 'samba-client',
        'mount.nfs': 'nfs-utils',
        'showmount': 'nfs-utils',
        'secret-tool': 'libsecret',
        'mount': 'util-linux',
        'umount': 'util-linux',
        'ping': 'iputils',
    },
    'arch': {
        'mount.cifs': 'cifs-utils',
        'smbclient': 'smbclient',
        'mount.nfs': 'nfs-utils',
        'showmount': 'nfs-utils',
        'secret-tool': 'libsecret',
        'mount': 'util-linux',
        'umount': 'util-linux',
        'ping': 'iputils',
    },
    'suse': {
        'mount.cifs': 'cifs-utils',
        'smbclient': 'samba-client',
        'mount.nfs': 'nfs-client',
        'showmount': 'nfs-client',
        'secret-tool': 'libsecret-tools',
        'mount': 'util-linux',
        'umount': 'util-linux',
        'ping': 'iputils',
    },
}

INSTALL_COMMANDS = {
    'debian': 'sudo apt install',
    'fedora': 'sudo dnf install',
    'arch': 'sudo pacman -S',
    'suse': 'sudo zypper install',
}


class DistroInfo:
    """Information about the current Linux distribution"""

    def __init__(self, id: str = "", name: str = "", version: str = "",
                 id_like: Optional[List[str]] = None):
        self.id = id
        self.name = name
        self.version = version
        self.id_like = id_like or []

    def detect(self) -> 'DistroInfo':
        """Detect the current Linux distribution from os-release"""
        self.id = distro.id()
        self.name = distro.name()
        self.version = distro.version()
        self.id_like = distro.like().split()
        logger.debug(f"Detected distribution: {self.name} {self.version} ({self.id})")
        return self

    @property
    def family(self) -> Optional[str]:
        candidates = [self.id] + self.id_like
        for candidate in candidates:
            if candidate in ('debian', 'ubuntu', 'linuxmint', 'pop', 'raspbian', 'elementary'):
                return 'debian'
            if candidate in ('fedora', 'rhel', 'centos', 'rocky', 'almalinux'):
                return 'fedora'
            if candidate in ('arch', 'manjaro', 'endeavouros'):
                return 'arch'
            if candidate.startswith('opensuse') or candidate in ('suse', 'sles'):
                return 'suse'
        return None

    def packages_for(self, tools: List[str]) -> List[str]:
        """Distinct package names providing ``tools``, in order"""
        mapping = TOOL_PACKAGES.get(self.family or 'debian', TOOL_PACKAGES['debian'])
        packages: List[str] = []
        for tool in tools:
            package = mapping.get(tool, tool)
            if package not in packages:
                packages.append(package)
        return packages

    def install_hint(self, tools: List[str]) -> str:
        """Shell command installing whatever provides ``tools``"""
        command = INSTALL_COMMANDS.get(self.family or '', 'sudo apt install')
        return f"{command} {' '.join(self.packages_for(tools))}"

    def __str__(self) -> str:
        return f"{self.name} {self.version} ({self.id})"


def get_distro_info() -> DistroInfo:
    """Get information about the current distribution"""
    return DistroInfo().detect()
