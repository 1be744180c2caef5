#!/usr/bin/env python3
"""
Ad-hoc mounting of a single share

Mount failures are classified by matching the helper's diagnostics
against an ordered table of error signatures. The first matching
signature wins, so a timeout is never reported as "permission denied"
even when the helper printed both.
"""

import re
import logging
from typing import Callable, List, Optional, Tuple

from .errors import MountFailed, ProtocolVersionUnsupported
from .models import MountOutcome, ShareResult
from .protocols import ProtocolAdapter, fallback_versions
from .utils.config import MountConfig
from .utils.credentials import Credential, CredentialsFile
from .utils.filesystem import invoking_user_ids
from .utils.runner import CommandRunner, CommandResult, TIMEOUT_EXIT_CODE

logger = logging.getLogger(__name__)

_MOUNT_ERROR_PREFIX = re.compile(r'^mount error\(\d+\):\s*')


def _mentions(*needles: str) -> Callable[[CommandResult], bool]:
    def predicate(result: CommandResult) -> bool:
        text = result.output.lower()
        return any(needle in text for needle in needles)
    return predicate


# (kind, predicate), checked in order
ERROR_SIGNATURES: List[Tuple[str, Callable[[CommandResult], bool]]] = [
    ('timeout', lambda result: result.timed_out or result.returncode == TIMEOUT_EXIT_CODE),
    ('denied', _mentions('permission denied', 'error(13)', 'access denied')),
    ('unsupported', _mentions('protocol not supported',
                              'requested nfs version or transport protocol is not supported')),
]

OUTCOMES = {
    'timeout': MountOutcome.TIMED_OUT,
    'denied': MountOutcome.DENIED,
    'failed': MountOutcome.FAILED,
}


def classify_failure(result: CommandResult) -> str:
    for kind, predicate in ERROR_SIGNATURES:
        if predicate(result):
            return kind
    return 'failed'


def failure_reason(result: CommandResult) -> str:
    """First diagnostic line with the ``mount error(N):`` prefix removed"""
    line = result.first_line()
    if not line:
        return f"mount exited with status {result.returncode}"
    return _MOUNT_ERROR_PREFIX.sub('', line)


def check_mount_result(result: CommandResult, version: Optional[str] = None,
                       timeout: Optional[int] = None) -> None:
    """Raise if a mount command did not succeed

    Raises:
        ProtocolVersionUnsupported: The server refused ``version``
        MountFailed: Any other failure; ``kind`` tells timeout and denial apart
    """
    if result.ok:
        return
    kind = classify_failure(result)
    if kind == 'unsupported':
        raise ProtocolVersionUnsupported(version or "requested")
    if kind == 'timeout':
        detail = f"timed out after {timeout}s" if timeout else "timed out"
        raise MountFailed(detail, kind)
    if kind == 'denied':
        raise MountFailed("permission denied (check username/password)", kind)
    raise MountFailed(failure_reason(result), kind)


class ShareMounter:
    """Mounts shares of one protocol outside of fstab"""

    def __init__(self, config: MountConfig, adapter: ProtocolAdapter,
                 runner: Optional[CommandRunner] = None,
                 credential: Optional[Credential] = None,
                 owner: Optional[Tuple[int, int]] = None):
        self.config = config
        self.adapter = adapter
        self.runner = runner or CommandRunner(default_timeout=config.timeout)
        self.credential = credential
        self.uid, self.gid = owner if owner is not None else invoking_user_ids()

    def _run_mount(self, share: str, mount_point: str, version: Optional[str]) -> CommandResult:
        source = self.adapter.source(self.config.host, share)

        def run(credentials_file: Optional[str]) -> CommandResult:
            options = self.adapter.mount_options(self.config, credentials_file,
                                                 self.uid, self.gid, version)
            return self.runner.run(['mount', '-t', self.adapter.fstype, source, mount_point,
                                    '-o', ','.join(options)],
                                   timeout=self.config.timeout, privileged=True)

        if self.adapter.requires_credentials and self.credential and not self.credential.is_guest:
            with CredentialsFile(self.credential) as credentials_file:
                return run(credentials_file)
        return run(None)

    def mount(self, share: str, mount_point: str, version: Optional[str] = None) -> ShareResult:
        """Mount one share at ``mount_point``

        Raises:
            ProtocolVersionUnsupported: The server refused the version
        """
        version = version or self.adapter.default_version(self.config)
        result = self._run_mount(share, mount_point, version)
        try:
            check_mount_result(result, version, self.config.timeout)
        except MountFailed as e:
            logger.error(f"Mounting {share} failed: {e.reason}")
            return ShareResult(share, OUTCOMES[e.kind], mount_point, e.reason)

        logger.info(f"Mounted {self.adapter.source(self.config.host, share)} at {mount_point} (vers={version})")
        return ShareResult(share, MountOutcome.MOUNTED, mount_point)

    def mount_with_fallback(self, share: str, mount_point: str,
                            start_version: Optional[str] = None) -> Tuple[ShareResult, Optional[str]]:
        """Mount, stepping down the NFS version chain on refusal

        Returns:
            (result, version that worked or None)
        """
        start_version = start_version or self.adapter.default_version(self.config)
        if self.adapter.name != 'nfs':
            try:
                return self.mount(share, mount_point, start_version), start_version
            except ProtocolVersionUnsupported as e:
                reason = f"{e} (try --smb-version)"
                logger.error(f"Mounting {share} failed: {reason}")
                return ShareResult(share, MountOutcome.FAILED, mount_point, reason), None

        tried = []
        for version in fallback_versions(start_version):
            tried.append(version)
            try:
                result = self.mount(share, mount_point, version)
            except ProtocolVersionUnsupported:
                logger.info(f"NFS {version} not supported by {self.config.host}, trying next version")
                continue
            learned = version if result.outcome == MountOutcome.MOUNTED else None
            return result, learned

        reason = f"no supported NFS version (tried {', '.join(tried)})"
        logger.error(f"Mounting {share} failed: {reason}")
        return ShareResult(share, MountOutcome.FAILED, mount_point, reason), None
