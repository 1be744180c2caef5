#!/usr/bin/env python3
"""
Configuration module for nas-mount

Settings are merged from three layers, later layers winning:
the JSON config file, NAS_* environment variables, and command-line
flags. The result is an immutable MountConfig that is passed explicitly
to every component.

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
import json
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Dict, Any, Optional, Tuple, Mapping

logger = logging.getLogger(__name__)

# Configuration file location
CONFIG_DIR = os.path.expanduser("~/.config/nas-mount")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.json")

DEFAULT_FSTAB = "/etc/fstab"
DEFAULT_SYSTEM_CREDENTIALS = "/etc/nas-credentials"
DEFAULT_LOCK_FILE = "/run/lock/nas-mount.lock"

PROTOCOLS = ("smb", "nfs")


@dataclass(frozen=True)
class MountConfig:
    """Immutable settings for one nas-mount run"""

    host: str = "192.168.1.10"
    protocol: str = "smb"
    mount_base: str = field(default_factory=lambda: os.path.expanduser("~/nas"))
    username: Optional[str] = None
    password: Optional[str] = None
    shares: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    timeout: int = 30

    # Protocol tuning
    smb_version: str = "3.0"
    nfs_version: str = "4.2"
    rsize: Optional[int] = 1048576
    wsize: Optional[int] = 1048576
    actimeo: Optional[int] = 30
    smb_max_credits: Optional[int] = None
    nfs_soft: bool = False
    nfs_timeo: int = 600
    nfs_retrans: int = 2
    nfs_nconnect: Optional[int] = None
    extra_options: Optional[str] = None

    # Persistent (fstab) entries
    idle_timeout: int = 60
    mount_timeout: int = 30
    system_credentials_file: str = DEFAULT_SYSTEM_CREDENTIALS
    fstab_path: str = DEFAULT_FSTAB
    lock_file: str = DEFAULT_LOCK_FILE

    dry_run: bool = False
    assume_yes: bool = False

    def __post_init__(self):
        if self.protocol not in PROTOCOLS:
            raise ValueError(f"Unsupported protocol '{self.protocol}' (expected one of {', '.join(PROTOCOLS)})")
        if self.timeout <= 0:
            raise ValueError("Timeout must be a positive number of seconds")

    def with_overrides(self, **overrides: Any) -> 'MountConfig':
        """Return a copy with the given non-None values replaced"""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display; the password is never included"""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['password'] = "***" if self.password else None
        data['shares'] = list(self.shares)
        data['exclude'] = list(self.exclude)
        return data


# Environment variable -> (config key, converter)
ENV_VARIABLES = {
    "NAS_IP": ("host", str),
    "NAS_PROTOCOL": ("protocol", str),
    "NAS_MOUNT_BASE": ("mount_base", os.path.expanduser),
    "NAS_USER": ("username", str),
    "NAS_PASS": ("password", str),
    "NAS_SHARES": ("shares", lambda value: split_list(value)),
    "NAS_EXCLUDE_SHARES": ("exclude", lambda value: split_list(value)),
    "NAS_TIMEOUT": ("timeout", int),
    "NAS_SMB_VERSION": ("smb_version", str),
    "NAS_NFS_VERSION": ("nfs_version", str),
    "NAS_MOUNT_OPTS": ("extra_options", str),
    "NAS_FSTAB": ("fstab_path", str),
}


def split_list(value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated list, dropping blanks"""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(',') if item.strip())


def _coerce(key: str, value: Any) -> Any:
    if key in ("shares", "exclude"):
        if isinstance(value, str):
            return split_list(value)
        return tuple(str(item).strip() for item in value if str(item).strip())
    if key == "mount_base" and isinstance(value, str):
        return os.path.expanduser(value)
    return value


def read_config_file(path: str) -> Dict[str, Any]:
    """Load settings from a JSON config file, ignoring unknown keys"""
    if not os.path.exists(path):
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.error(f"Error loading configuration from {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Configuration in {path} is not a JSON object")
        return {}

    known = {f.name for f in fields(MountConfig)}
    settings = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown configuration key '{key}' in {path}")
            continue
        if value is None:
            continue
        settings[key] = _coerce(key, value)

    logger.info(f"Loaded configuration from {path}")
    return settings


def read_environment(environ: Mapping[str, str]) -> Dict[str, Any]:
    settings = {}
    for variable, (key, convert) in ENV_VARIABLES.items():
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        try:
            settings[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {variable}: {raw!r}")
    return settings


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None,
                **overrides: Any) -> MountConfig:
    """Build the effective configuration

    Args:
        path: Config file to read (defaults to $NAS_CONFIG or CONFIG_FILE)
        environ: Environment mapping (defaults to os.environ)
        overrides: Command-line values; None means "not given"

    Returns:
        The merged MountConfig
    """
    if environ is None:
        environ = os.environ
    if path is None:
        path = environ.get("NAS_CONFIG", CONFIG_FILE)

    settings: Dict[str, Any] = {}
    settings.update(read_config_file(path))
    settings.update(read_environment(environ))
    for key, value in overrides.items():
        if value is not None:
            settings[key] = _coerce(key, value)

    return MountConfig(**settings)
