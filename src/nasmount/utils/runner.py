#!/usr/bin/env python3
"""
Bounded-time execution of external commands

Every external call nas-mount makes (mount, smbclient, systemctl, ping...)
goes through CommandRunner so that a dead NAS can never hang the tool.
A call that exceeds its deadline is killed and reported with
``timed_out=True`` and the conventional exit status 124.
"""

import os
import shutil
import logging
import subprocess
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127

# Directories searched for sbin helpers that are not always on a user's PATH
SBIN_DIRS = ['/sbin', '/usr/sbin', '/usr/local/sbin']


class CommandResult:
    """Outcome of a single external command"""

    def __init__(self, args: Sequence[str], returncode: int, stdout: str = "",
                 stderr: str = "", timed_out: bool = False):
        self.args = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined stderr and stdout, the way mount helpers report errors"""
        parts = [part for part in (self.stderr, self.stdout) if part and part.strip()]
        return "\n".join(parts)

    def first_line(self) -> str:
        for line in self.output.splitlines():
            if line.strip():
                return line.strip()
        return ""

    def __repr__(self) -> str:
        return (f"CommandResult(args={self.args!r}, returncode={self.returncode}, "
                f"timed_out={self.timed_out})")


def find_executable(name: str) -> Optional[str]:
    """Locate an executable on PATH or in the sbin directories"""
    path = shutil.which(name)
    if path:
        return path
    for directory in SBIN_DIRS:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


class CommandRunner:
    """Runs external commands with a deadline

    Privileged commands are prefixed with ``sudo`` unless the process
    already runs as root.
    """

    def __init__(self, default_timeout: float = 30.0, use_sudo: Optional[bool] = None):
        self.default_timeout = default_timeout
        if use_sudo is None:
            use_sudo = os.geteuid() != 0
        self.use_sudo = use_sudo

    def run(self, args: Sequence[str], timeout: Optional[float] = None,
            input_text: Optional[str] = None, privileged: bool = False) -> CommandResult:
        cmd: List[str] = list(args)
        if privileged and self.use_sudo:
            cmd = ['sudo'] + cmd
        if timeout is None:
            timeout = self.default_timeout

        logger.debug(f"Running: {' '.join(cmd)} (timeout {timeout}s)")
        try:
            completed = subprocess.run(
                cmd,
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Command timed out after {timeout}s: {' '.join(cmd)}")
            return CommandResult(cmd, TIMEOUT_EXIT_CODE,
                                 stdout=_decode(e.stdout), stderr=_decode(e.stderr),
                                 timed_out=True)
        except FileNotFoundError:
            logger.debug(f"Command not found: {cmd[0]}")
            return CommandResult(cmd, NOT_FOUND_EXIT_CODE,
                                 stderr=f"{cmd[0]}: command not found")

        result = CommandResult(cmd, completed.returncode, completed.stdout, completed.stderr)
        if not result.ok:
            logger.debug(f"Command exited {result.returncode}: {result.first_line()}")
        return result

    def ping(self, host: str, wait: int = 2) -> bool:
        """Single ICMP echo with a short deadline"""
        result = self.run(['ping', '-c', '1', '-W', str(wait), host], timeout=wait + 3)
        return result.ok


def _decode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value
