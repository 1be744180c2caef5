#!/usr/bin/env python3
"""
Credential resolution and ephemeral credentials files

Passwords live in process memory, in the desktop keyring (via
secret-tool), and for the length of a single mount call in an owner-only
file inside a private runtime directory. Those files are erased on
normal exit, on exceptions, and on SIGINT/SIGTERM/SIGHUP.

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
import atexit
import signal
import shutil
import logging
import tempfile
from typing import Optional, Set

from .prompt import Prompter, ConsolePrompter
from .runner import CommandRunner

logger = logging.getLogger(__name__)

SECRET_SERVICE = "nas-mount"
SECRET_TIMEOUT = 5


class Credential:
    """A username/password pair; an empty username means guest access"""

    def __init__(self, username: str = "", password: str = ""):
        self.username = username or ""
        self.password = password or ""

    @property
    def is_guest(self) -> bool:
        return not self.username

    def file_content(self) -> str:
        return f"username={self.username}\npassword={self.password}\n"

    def __repr__(self) -> str:
        if self.is_guest:
            return "Credential(guest)"
        return f"Credential({self.username!r}, password=***)"


GUEST = Credential()


class SecretStore:
    """Password storage in the desktop keyring through secret-tool"""

    def __init__(self, runner: Optional[CommandRunner] = None, environ=None):
        self.runner = runner or CommandRunner()
        self.environ = os.environ if environ is None else environ
        self._available: Optional[bool] = None

    def available(self) -> bool:
        """Probe for secret-tool, a session bus and a responsive service"""
        if self._available is None:
            self._available = self._probe()
        return self._available

    def _probe(self) -> bool:
        if not shutil.which('secret-tool'):
            logger.debug("secret-tool not installed, keyring unavailable")
            return False
        if not self.environ.get('DBUS_SESSION_BUS_ADDRESS'):
            logger.debug("No D-Bus session bus, keyring unavailable")
            return False
        # A miss exits 1 and is fine; only a hang means the service is unreachable
        result = self.runner.run(['secret-tool', 'lookup', 'service', f"{SECRET_SERVICE}-test", 'key', 'ping'],
                                 timeout=SECRET_TIMEOUT)
        if result.timed_out:
            logger.debug("Secret service did not answer, keyring unavailable")
            return False
        return True

    def lookup(self, host: str, username: str) -> Optional[str]:
        if not self.available():
            return None
        result = self.runner.run(['secret-tool', 'lookup', 'service', SECRET_SERVICE,
                                  'host', host, 'user', username], timeout=SECRET_TIMEOUT)
        if not result.ok:
            return None
        password = result.stdout.rstrip('\n')
        return password or None

    def store(self, host: str, username: str, password: str) -> bool:
        if not self.available():
            return False
        result = self.runner.run(['secret-tool', 'store', f"--label=NAS {host} ({username})",
                                  'service', SECRET_SERVICE, 'host', host, 'user', username],
                                 timeout=SECRET_TIMEOUT, input_text=password)
        if not result.ok:
            logger.warning("Could not save password to keyring; is the keyring daemon running?")
            return False
        logger.info(f"Saved password for {username}@{host} to keyring")
        return True

    def clear(self, host: str, username: str) -> bool:
        if not self.available():
            return False
        result = self.runner.run(['secret-tool', 'clear', 'service', SECRET_SERVICE,
                                  'host', host, 'user', username], timeout=SECRET_TIMEOUT)
        return result.ok


class CredentialResolver:
    """Resolves credentials: explicit input, then keyring, then prompt"""

    def __init__(self, secret_store: Optional[SecretStore] = None,
                 prompter: Optional[Prompter] = None):
        self.secret_store = secret_store or SecretStore()
        self.prompter = prompter or ConsolePrompter()

    def resolve(self, host: str, username: Optional[str] = None,
                password: Optional[str] = None) -> Credential:
        try:
            return self._resolve(host, username, password)
        except EOFError:
            logger.warning("No interactive input available, continuing as guest")
            return GUEST

    def _resolve(self, host: str, username: Optional[str], password: Optional[str]) -> Credential:
        if username is None:
            username = self.prompter.ask("NAS username (Enter for guest)").strip()
        if not username:
            logger.info(f"Using guest access for {host}")
            return GUEST

        if password is not None:
            return Credential(username, password)

        stored = self.secret_store.lookup(host, username)
        if stored:
            logger.info(f"Password for {username}@{host} retrieved from keyring")
            return Credential(username, stored)

        password = self.prompter.secret(f"Password for {username}")
        if password and self.secret_store.available():
            if self.prompter.confirm("Save password to system keyring?"):
                self.secret_store.store(host, username, password)
        return Credential(username, password)


# -- ephemeral credentials files ------------------------------------------------

_live_files: Set[str] = set()
_handlers_installed = False
_private_dir: Optional[str] = None


def runtime_directory() -> str:
    """Private (0700) directory for secrets, never a shared temp path"""
    global _private_dir
    base = os.environ.get('XDG_RUNTIME_DIR')
    if base and os.path.isdir(base) and os.access(base, os.W_OK):
        path = os.path.join(base, 'nas-mount')
        os.makedirs(path, mode=0o700, exist_ok=True)
        os.chmod(path, 0o700)
        return path

    if _private_dir is None or not os.path.isdir(_private_dir):
        _private_dir = tempfile.mkdtemp(prefix="nas-mount-")
    return _private_dir


def secure_erase(path: str) -> None:
    """Overwrite a file with zeros, then unlink it"""
    try:
        size = os.path.getsize(path)
        with open(path, 'r+b') as f:
            f.write(b'\0' * size)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        logger.debug(f"Could not overwrite {path}: {e}")
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    _live_files.discard(path)


def cleanup_credentials() -> None:
    """Erase every credentials file still on disk"""
    for path in list(_live_files):
        secure_erase(path)
    if _private_dir and os.path.isdir(_private_dir):
        try:
            os.rmdir(_private_dir)
        except OSError as e:
            logger.debug(f"Could not remove {_private_dir}: {e}")


def _handle_signal(signum, frame):
    cleanup_credentials()
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Make termination signals run the credential cleanup

    SIGINT already unwinds through the context managers as
    KeyboardInterrupt; SIGTERM and SIGHUP would otherwise kill the
    process without running any cleanup.
    """
    global _handlers_installed
    if _handlers_installed:
        return
    atexit.register(cleanup_credentials)
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _handle_signal)
    _handlers_installed = True


class CredentialsFile:
    """Context manager holding a credentials file for one external call

    Usage:
        with CredentialsFile(credential) as path:
            runner.run(['mount', ..., '-o', f'credentials={path}'])
    """

    def __init__(self, credential: Credential, directory: Optional[str] = None):
        self.credential = credential
        self.directory = directory
        self.path: Optional[str] = None

    def __enter__(self) -> str:
        directory = self.directory or runtime_directory()
        fd, path = tempfile.mkstemp(prefix='.creds-', dir=directory)
        self.path = path
        _live_files.add(path)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, 'w') as f:
                f.write(self.credential.file_content())
        except BaseException:
            secure_erase(path)
            raise
        return path

    def __exit__(self, exc_type, exc, tb):
        if self.path:
            secure_erase(self.path)
            self.path = None
        return False
