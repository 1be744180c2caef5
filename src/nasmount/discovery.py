#!/usr/bin/env python3
"""
Share discovery for nas-mount

Lists what a NAS offers: SMB shares through ``smbclient -L`` and NFS
exports through ``showmount -e``. When the NFS server does not answer
the mount protocol (common with NFSv4-only servers) the pseudo-root
``host:/`` is mounted read-only into a throwaway directory and its top
level is listed instead.

Every failure here is recoverable; callers fall back to asking the user
for share names.

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import os
import re
import logging
import tempfile
from typing import List, Dict, Any, Optional

from .errors import HostUnreachable, DiscoveryFailed, NoExportsFound
from .protocols import get_adapter, ProtocolAdapter
from .utils.credentials import Credential, CredentialsFile
from .utils.distro import get_distro_info
from .utils.fstab import FstabStore
from .utils.runner import CommandRunner, CommandResult, find_executable

logger = logging.getLogger(__name__)

SMB_SHARE_ROW = re.compile(r'^\s+(\S+)\s+Disk\s*(.*)$', re.IGNORECASE)

# Negotiation chatter smbclient prints before the real result
SMB_NOISE = (
    'smbXcli_negprot',
    'Reconnecting with SMB1',
    'Protocol negotiation',
    'Unable to connect with SMB1',
)

NFS_PROBE_OPTIONS = "ro,soft,vers=4,timeo=50,retrans=1"


class DiscoveredShare:
    """A share offered by the NAS"""

    def __init__(self, name: str, comment: str = "", in_fstab: bool = False):
        self.name = name
        self.comment = comment
        self.in_fstab = in_fstab

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'comment': self.comment,
            'in_fstab': self.in_fstab,
        }

    def __repr__(self) -> str:
        return f"DiscoveredShare({self.name!r}, in_fstab={self.in_fstab})"


def parse_smb_listing(output: str) -> List[DiscoveredShare]:
    """Disk shares from ``smbclient -L`` output, hidden and IPC shares dropped"""
    shares = []
    for line in output.splitlines():
        match = SMB_SHARE_ROW.match(line)
        if not match:
            continue
        name, comment = match.group(1), match.group(2).strip()
        if name.endswith('$') or 'IPC' in name:
            continue
        shares.append(DiscoveredShare(name, comment))
    return shares


def parse_showmount(output: str) -> List[str]:
    """Export paths from ``showmount -e --no-headers`` output"""
    exports = []
    for line in output.splitlines():
        fields = line.split()
        if fields and fields[0].startswith('/') and fields[0] not in exports:
            exports.append(fields[0])
    return exports


def _diagnostic(result: CommandResult) -> str:
    for line in result.output.splitlines():
        line = line.strip()
        if line and not any(noise in line for noise in SMB_NOISE):
            return line
    return f"exit status {result.returncode}"


class ShareDiscovery:
    """Finds the shares a NAS exports"""

    def __init__(self, runner: Optional[CommandRunner] = None, fstab: Optional[FstabStore] = None,
                 timeout: int = 30):
        self.runner = runner or CommandRunner(default_timeout=timeout)
        self.fstab = fstab
        self.timeout = timeout

    def discover(self, host: str, protocol: str,
                 credential: Optional[Credential] = None) -> List[DiscoveredShare]:
        """List shares on ``host``

        Raises:
            HostUnreachable: The NAS did not answer a ping
            DiscoveryFailed: The listing tool failed or found nothing
        """
        adapter = get_adapter(protocol)
        if not self.runner.ping(host):
            raise HostUnreachable(host)

        logger.info(f"Discovering {adapter.name} shares on {host}")
        if adapter.name == 'smb':
            shares = self._discover_smb(host, credential)
        else:
            shares = [DiscoveredShare(path) for path in self._discover_nfs(host)]

        self._mark_fstab(host, adapter, shares)
        logger.info(f"Found {len(shares)} share(s) on {host}")
        return shares

    def names(self, host: str, protocol: str, credential: Optional[Credential] = None) -> List[str]:
        return [share.name for share in self.discover(host, protocol, credential)]

    def _mark_fstab(self, host: str, adapter: ProtocolAdapter, shares: List[DiscoveredShare]) -> None:
        if self.fstab is None:
            return
        entries = self.fstab.entries_for_host(host)
        for share in shares:
            share.in_fstab = any(adapter.matches(host, share.name, entry.source) for entry in entries)

    # -- SMB -----------------------------------------------------------------

    def _discover_smb(self, host: str, credential: Optional[Credential]) -> List[DiscoveredShare]:
        if not find_executable('smbclient'):
            hint = get_distro_info().install_hint(['smbclient'])
            raise DiscoveryFailed(f"smbclient not installed. Install with: {hint}")

        base = ['smbclient', '-L', f"//{host}"]
        protocol_floor = '--option=client min protocol=SMB2'
        if credential is not None and not credential.is_guest:
            # The password never appears on a command line
            with CredentialsFile(credential) as auth_file:
                result = self.runner.run(base + ['-A', auth_file, protocol_floor], timeout=self.timeout)
        else:
            result = self.runner.run(base + ['-N', protocol_floor], timeout=self.timeout)

        if result.timed_out:
            raise DiscoveryFailed(f"smbclient timed out after {self.timeout}s")

        shares = parse_smb_listing(result.stdout)
        if not shares:
            raise DiscoveryFailed(f"No shares found on {host}: {_diagnostic(result)}")
        return shares

    # -- NFS -----------------------------------------------------------------

    def _discover_nfs(self, host: str) -> List[str]:
        exports: List[str] = []
        if find_executable('showmount'):
            result = self.runner.run(['showmount', '-e', '--no-headers', host], timeout=self.timeout)
            if result.ok:
                exports = parse_showmount(result.stdout)
            else:
                logger.info(f"showmount failed ({_diagnostic(result)}), probing NFSv4 pseudo-root")
        else:
            logger.info("showmount not installed, probing NFSv4 pseudo-root")

        if not exports:
            exports = self._probe_pseudo_root(host)
        if not exports:
            raise NoExportsFound(host)
        return exports

    def _probe_pseudo_root(self, host: str) -> List[str]:
        """Mount ``host:/`` read-only and list its top level"""
        probe_dir = tempfile.mkdtemp(prefix='nas-mount-probe-')
        mounted = False
        try:
            result = self.runner.run(['mount', '-t', 'nfs', f"{host}:/", probe_dir, '-o', NFS_PROBE_OPTIONS],
                                     timeout=self.timeout, privileged=True)
            if not result.ok:
                logger.info(f"Pseudo-root probe failed: {_diagnostic(result)}")
                return []
            mounted = True

            listing = self.runner.run(['ls', '-1', probe_dir], timeout=self.timeout)
            if not listing.ok:
                logger.info(f"Could not list pseudo-root of {host}: {_diagnostic(listing)}")
                return []
            return ['/' + name.strip() for name in listing.stdout.splitlines() if name.strip()]
        finally:
            if mounted:
                self.runner.run(['umount', '-l', probe_dir], timeout=self.timeout, privileged=True)
            try:
                os.rmdir(probe_dir)
            except OSError as e:
                logger.warning(f"Could not remove probe directory {probe_dir}: {e}")
