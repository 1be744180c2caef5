#!/usr/bin/env python3
"""
Error types raised by nas-mount

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

from typing import List, Optional


class NasMountError(Exception):
    """Base class for all errors reported to the user"""


class HostUnreachable(NasMountError):
    """The NAS did not answer the reachability probe"""

    def __init__(self, host: str):
        super().__init__(f"NAS at {host} is not reachable")
        self.host = host


class MissingDependency(NasMountError):
    """One or more required external tools are not installed"""

    def __init__(self, missing: List[str], hint: Optional[str] = None):
        message = f"Missing required tools: {', '.join(missing)}"
        if hint:
            message += f"\nInstall with: {hint}"
        super().__init__(message)
        self.missing = missing
        self.hint = hint


class DiscoveryFailed(NasMountError):
    """Share discovery failed; callers fall back to manual input"""


class NoExportsFound(DiscoveryFailed):
    """Neither export listing nor the pseudo-root probe returned anything"""

    def __init__(self, host: str):
        super().__init__(f"No NFS exports found on {host}")
        self.host = host


class ProtocolVersionUnsupported(NasMountError):
    """The server refused the requested protocol version"""

    def __init__(self, version: str):
        super().__init__(f"Protocol version {version} not supported by server")
        self.version = version


class MountFailed(NasMountError):
    """A mount attempt failed for a concrete reason

    ``kind`` is one of ``timeout``, ``denied`` or ``failed``.
    """

    def __init__(self, reason: str, kind: str = "failed"):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


class TableWriteFailed(NasMountError):
    """The persistent mount table could not be rewritten"""


class UnitOperationFailed(NasMountError):
    """A systemctl operation on a mount or automount unit failed"""

    def __init__(self, unit: str, action: str, detail: str = ""):
        message = f"systemctl {action} {unit} failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.unit = unit
        self.action = action
        self.detail = detail
