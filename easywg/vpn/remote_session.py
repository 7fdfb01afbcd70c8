"""
Authenticated remote shell sessions over SSH.
"""

from __future__ import annotations

import logging
import shlex
import threading
from typing import TYPE_CHECKING

import paramiko

from easywg.common.exceptions import (
    AuthFailedError,
    CommandFailedError,
    HostUnreachableError,
    PrivilegeDeniedError,
)

if TYPE_CHECKING:
    from easywg.common.models import Server

logger = logging.getLogger(__name__)

PRIVILEGE_PROBE = "sudo -n true"


class RemoteHostSession:
    """One SSH connection to one host, executing one command at a time.

    Elevated commands are wrapped in ``sudo -n`` unless the login user is root,
    so a session that passed the privilege probe never blocks on a password
    prompt.
    """

    def __init__(
        self,
        address: str,
        port: int = 22,
        username: str = "root",
        password: str | None = None,
        key_path: str | None = None,
        connect_timeout: float = 30.0,
        command_timeout: float | None = None,
    ):
        self.address = address
        self.port = port
        self.username = username
        self.password = password
        self.key_path = key_path
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.elevate = username != "root"
        self._client: paramiko.SSHClient | None = None
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        server: Server,
        connect_timeout: float,
        command_timeout: float | None = None,
    ) -> RemoteHostSession:
        """Create a session for a server record and connect it."""
        session = cls(
            server.ip,
            port=server.port,
            username=server.ssh_user,
            password=server.ssh_password,
            key_path=server.ssh_key_path,
            connect_timeout=connect_timeout,
            command_timeout=command_timeout,
        )
        session.connect()
        return session

    def __enter__(self) -> RemoteHostSession:
        if self._client is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> None:
        """Connect, authenticate and verify non-interactive privilege."""
        logger.info("Connecting to %s:%s as %s", self.address, self.port, self.username)
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.address,
                port=self.port,
                username=self.username,
                password=self.password,
                key_filename=self.key_path,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            msg = f"Authentication to {self.address}:{self.port} as {self.username} failed"
            raise AuthFailedError(msg) from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            msg = f"Host {self.address}:{self.port} is unreachable: {e}"
            raise HostUnreachableError(msg) from e

        self._client = client
        if self.elevate:
            try:
                self._exec(PRIVILEGE_PROBE)
            except CommandFailedError as e:
                self.close()
                msg = (
                    f"User {self.username} on {self.address} cannot run sudo "
                    "without a password"
                )
                raise PrivilegeDeniedError(msg) from e
            except (paramiko.SSHException, OSError) as e:
                self.close()
                msg = f"Lost connection to {self.address}:{self.port}: {e}"
                raise HostUnreachableError(msg) from e
        logger.info("Connected to %s:%s", self.address, self.port)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.debug("Closed session to %s:%s", self.address, self.port)

    def _wrap(self, command: str, sudo: bool) -> str:
        if sudo and self.elevate:
            return f"sudo -n sh -c {shlex.quote(command)}"
        return command

    def _exec(self, command: str) -> str:
        if self._client is None:
            msg = "Session is not connected"
            raise RuntimeError(msg)
        _, stdout, stderr = self._client.exec_command(
            command, timeout=self.command_timeout
        )
        out = stdout.read().decode("utf-8", "replace")
        err = stderr.read().decode("utf-8", "replace")
        status = stdout.channel.recv_exit_status()
        if status != 0:
            raise CommandFailedError(command, err, status)
        return out

    def run(self, command: str, *, sudo: bool = True, secret: bool = False) -> str:
        """Run one command and return its stdout.

        Raises CommandFailedError carrying stderr on a non-zero exit status.
        """
        shown = "<redacted>" if secret else command
        logger.debug("[%s] $ %s", self.address, shown)
        with self._lock:
            try:
                return self._exec(self._wrap(command, sudo))
            except CommandFailedError as e:
                # Report the unwrapped command, never key material
                raise CommandFailedError(shown, e.stderr, e.exit_status) from None
            except (paramiko.SSHException, OSError) as e:
                msg = f"Lost connection to {self.address}:{self.port} running {shown}: {e}"
                raise HostUnreachableError(msg) from e

    def write_file(self, path: str, content: str) -> None:
        """Stream content into a remote file, overwriting it."""
        if self._client is None:
            msg = "Session is not connected"
            raise RuntimeError(msg)
        command = self._wrap(f"cat > {shlex.quote(path)}", sudo=True)
        logger.debug("[%s] write %s (%d bytes)", self.address, path, len(content))
        with self._lock:
            try:
                stdin, stdout, stderr = self._client.exec_command(
                    command, timeout=self.command_timeout
                )
                stdin.write(content)
                stdin.flush()
                stdin.channel.shutdown_write()
                err = stderr.read().decode("utf-8", "replace")
                status = stdout.channel.recv_exit_status()
            except (paramiko.SSHException, OSError) as e:
                msg = f"Lost connection to {self.address}:{self.port} writing {path}: {e}"
                raise HostUnreachableError(msg) from e
        if status != 0:
            raise CommandFailedError(f"write {path}", err, status)
