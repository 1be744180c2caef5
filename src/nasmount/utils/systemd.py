#!/usr/bin/env python3
"""
Utilities for driving the systemd units behind fstab mount points

systemd generates one ``.mount`` unit per fstab line and, for lines with
``x-systemd.automount``, an ``.automount`` unit that mounts on first
access. Both are named after the escaped mount point path.
"""

import logging
from typing import List, Optional

from ..errors import UnitOperationFailed
from ..models import UnitState
from .runner import CommandRunner, CommandResult

logger = logging.getLogger(__name__)

SYSTEMCTL_TIMEOUT = 30

_ALLOWED = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789:_.")


def escape_path(path: str) -> str:
    """Escape a path the way ``systemd-escape --path`` does"""
    parts = [part for part in path.split('/') if part]
    if not parts:
        return '-'
    normalized = '/'.join(parts)

    escaped = []
    for index, ch in enumerate(normalized):
        if ch == '/':
            escaped.append('-')
        elif ch in _ALLOWED and not (ch == '.' and index == 0):
            escaped.append(ch)
        else:
            escaped.extend(f"\\x{byte:02x}" for byte in ch.encode('utf-8'))
    return ''.join(escaped)


def unescape_path(name: str) -> str:
    """Reverse of escape_path; accepts names with or without a unit suffix"""
    for suffix in ('.automount', '.mount'):
        if name.endswith(suffix):
            name = name[:-len(suffix)]
            break
    if name == '-':
        return '/'

    raw = bytearray()
    index = 0
    while index < len(name):
        ch = name[index]
        if ch == '\\' and name[index + 1:index + 2] == 'x' and index + 4 <= len(name):
            raw.append(int(name[index + 2:index + 4], 16))
            index += 4
            continue
        raw.extend(b'/' if ch == '-' else ch.encode('utf-8'))
        index += 1
    return '/' + raw.decode('utf-8')


def unit_name(mount_point: str, kind: str = 'automount') -> str:
    if kind not in ('automount', 'mount'):
        raise ValueError(f"Unknown unit kind: {kind}")
    return f"{escape_path(mount_point)}.{kind}"


def daemon_reload(runner: CommandRunner) -> bool:
    """Ask systemd to regenerate units from fstab; failure is not fatal"""
    result = runner.run(['systemctl', 'daemon-reload'], timeout=SYSTEMCTL_TIMEOUT, privileged=True)
    if not result.ok:
        logger.warning(f"systemctl daemon-reload failed: {result.first_line() or 'timed out'}")
        return False
    logger.debug("systemd unit definitions reloaded")
    return True


class AutomountController:
    """Starts, stops and resets the units backing on-demand mount points"""

    def __init__(self, runner: Optional[CommandRunner] = None, fstab=None,
                 timeout: int = SYSTEMCTL_TIMEOUT):
        self.runner = runner or CommandRunner()
        self.fstab = fstab
        self.timeout = timeout

    def _systemctl(self, action: str, *units: str) -> CommandResult:
        result = self.runner.run(['systemctl', action] + list(units),
                                 timeout=self.timeout, privileged=True)
        if not result.ok:
            detail = "timed out" if result.timed_out else result.first_line()
            raise UnitOperationFailed(' '.join(units), action, detail)
        return result

    def reload(self) -> bool:
        return daemon_reload(self.runner)

    def start(self, mount_point: str) -> bool:
        """Start the automount unit so the kernel registers its trigger"""
        unit = unit_name(mount_point, 'automount')
        try:
            self._systemctl('start', unit)
        except UnitOperationFailed as e:
            logger.error(str(e))
            return False
        logger.info(f"Started {unit}")
        return True

    def stop_and_reset(self, mount_point: str) -> None:
        """Tear down both units of a mount point

        Order matters: stop automount, stop mount, lazy-unmount, then
        clear failure state, so neither unit is left ``failed``.
        """
        automount = unit_name(mount_point, 'automount')
        mount = unit_name(mount_point, 'mount')

        for unit in (automount, mount):
            try:
                self._systemctl('stop', unit)
            except UnitOperationFailed as e:
                logger.warning(str(e))

        result = self.runner.run(['umount', '-l', mount_point], timeout=self.timeout, privileged=True)
        if not result.ok:
            logger.debug(f"Lazy unmount of {mount_point}: {result.first_line() or 'timed out'}")

        try:
            self._systemctl('reset-failed', automount, mount)
        except UnitOperationFailed as e:
            # reset-failed complains about units that were never loaded
            logger.debug(str(e))

        logger.info(f"Stopped and reset units for {mount_point}")

    def activate_all_under(self, base: str) -> int:
        """Start every automount unit whose fstab mount point is under ``base``

        A daemon-reload does not arm automount units that were never
        started, so each one is started explicitly.

        Returns:
            Number of units started
        """
        if self.fstab is None:
            raise ValueError("activate_all_under needs an FstabStore")

        started = 0
        mount_points: List[str] = [entry.mount_point for entry in self.fstab.entries_under(base)
                                   if entry.has_automount]
        for mount_point in mount_points:
            if self.start(mount_point):
                started += 1
        logger.info(f"Activated {started}/{len(mount_points)} automount unit(s) under {base}")
        return started

    def state(self, mount_point: str, kind: str = 'automount') -> UnitState:
        unit = unit_name(mount_point, kind)
        result = self.runner.run(['systemctl', 'is-active', unit], timeout=self.timeout)
        if result.timed_out:
            return UnitState.UNKNOWN
        value = result.stdout.strip()
        if value in ('active', 'activating', 'reloading'):
            return UnitState.ACTIVE
        if value == 'failed':
            return UnitState.FAILED
        if value in ('inactive', 'deactivating'):
            return UnitState.INACTIVE
        return UnitState.UNKNOWN
