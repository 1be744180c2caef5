#!/usr/bin/env python3
"""
Kernel mount table and mount point directory helpers

Mount state is read from /proc/self/mounts rather than by stat()-ing the
path, because stat on a stale network mount blocks indefinitely.
"""

import os
import logging
from typing import List, Optional, Tuple

from .fstab import unescape_field
from .runner import CommandRunner

logger = logging.getLogger(__name__)

PROC_MOUNTS = "/proc/self/mounts"


def invoking_user_ids() -> Tuple[int, int]:
    """uid/gid of the user behind sudo, or of the current process"""
    uid = os.environ.get('SUDO_UID')
    gid = os.environ.get('SUDO_GID')
    if uid and gid and uid.isdigit() and gid.isdigit():
        return int(uid), int(gid)
    return os.getuid(), os.getgid()


class MountTable:
    """Read-only view of the kernel's current mounts"""

    def __init__(self, path: str = PROC_MOUNTS):
        self.path = path

    def mounts(self) -> List[Tuple[str, str, str]]:
        """(source, mount point, fstype) for every current mount"""
        result = []
        try:
            with open(self.path, 'r') as f:
                for line in f:
                    fields = line.split()
                    if len(fields) >= 3:
                        result.append((unescape_field(fields[0]), unescape_field(fields[1]), fields[2]))
        except OSError as e:
            logger.error(f"Cannot read {self.path}: {e}")
        return result

    def is_mounted(self, mount_point: str) -> bool:
        target = os.path.normpath(mount_point)
        return any(os.path.normpath(mp) == target for _, mp, _ in self.mounts())


def _apply_owner(path: str, runner: CommandRunner, owner: Tuple[int, int], escalate: bool = False) -> None:
    uid, gid = owner
    if not escalate:
        try:
            os.chown(path, uid, gid)
            return
        except PermissionError:
            logger.debug(f"No permission to change owner of {path}, using sudo")
    result = runner.run(['chown', f"{uid}:{gid}", path], privileged=True)
    if not result.ok:
        logger.warning(f"Could not change owner of {path}: {result.first_line()}")


def ensure_directory(path: str, runner: CommandRunner, owner: Optional[Tuple[int, int]] = None) -> bool:
    """Create ``path`` (and parents), escalating with sudo when needed

    A newly created directory is handed to ``owner`` (uid, gid) on both
    paths, so mount points made under sudo belong to the invoking user.
    """
    if os.path.isdir(path):
        return True
    escalated = False
    try:
        os.makedirs(path, exist_ok=True)
        logger.debug(f"Created {path}")
    except PermissionError:
        escalated = True
        logger.debug(f"No permission to create {path}, using sudo")
        result = runner.run(['mkdir', '-p', path], privileged=True)
        if not result.ok:
            logger.error(f"Could not create {path}: {result.first_line()}")
            return False

    if owner is not None:
        _apply_owner(path, runner, owner, escalated)
    return True


def remove_empty_directory(path: str, runner: CommandRunner) -> bool:
    """rmdir ``path`` if it is empty; never touches non-empty directories"""
    try:
        if os.listdir(path):
            return False
    except OSError as e:
        logger.debug(f"Cannot list {path}: {e}")
        return False

    try:
        os.rmdir(path)
        return True
    except PermissionError:
        result = runner.run(['rmdir', path], privileged=True)
        return result.ok
    except OSError as e:
        logger.debug(f"Cannot remove {path}: {e}")
        return False
