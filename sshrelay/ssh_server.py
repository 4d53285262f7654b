# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""AsyncSSH front end for the relay.

asyncssh terminates the protocol (key exchange, encryption, channel framing)
and calls into the classes below, which hand everything to a per-connection
ConnectionHandler:

- RelayServer: owns the listener, the shared registry and credential store,
  and builds one handler per accepted connection
- RelaySSHServer: asyncssh.SSHServer for a single connection (auth, session
  open, remote forward requests, teardown)
- RelaySession: asyncssh.SSHServerSession for one channel (data, close)
- GrantedForwardListener: placeholder returned for a granted tcpip-forward so
  asyncssh acknowledges the request without binding a socket
"""

import asyncio
import itertools
from pathlib import Path
from typing import Any, Optional

import asyncssh

from sshrelay.config import ConfigError
from sshrelay.credentials import CredentialStore
from sshrelay.handler import ConnectionHandler, ConnectionIdAllocator
from sshrelay.models.config import ServerConfigModel
from sshrelay.registry import DuplicateChannelError, SessionRegistry
from sshrelay.utils.logging import get_logger

logger = get_logger(__name__)


def load_host_key(path: Optional[Path] = None) -> asyncssh.SSHKey:
    """Read the host key from ``path``, or generate an Ed25519 key if unset.

    Raises:
        ConfigError: The key file is missing or not a private key asyncssh
            understands.
    """
    if path is None:
        logger.debug("Generating new host key...")
        return asyncssh.generate_private_key("ssh-ed25519")

    logger.debug(f"Reading host key from {path}...")
    try:
        return asyncssh.read_private_key(path)
    except (OSError, asyncssh.KeyImportError) as e:
        raise ConfigError(f"Failed to load host key from {path}: {e}")


class GrantedForwardListener:
    """Listener stand-in for a granted remote forward. Nothing is bound."""

    def __init__(self, listen_host: str, listen_port: int):
        self.listen_host = listen_host
        self.listen_port = listen_port
        self.closed = False

    def get_port(self) -> int:
        return self.listen_port

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class RelaySession(asyncssh.SSHServerSession):
    """One relay channel."""

    def __init__(self, handler: ConnectionHandler, channel_id: int):
        self._handler = handler
        self.channel_id = channel_id
        self._chan: Optional[asyncssh.SSHServerChannel] = None
        self._registered = False

    def connection_made(self, chan: asyncssh.SSHServerChannel) -> None:
        self._chan = chan
        try:
            self._handler.channel_opened(self.channel_id, chan)
            self._registered = True
        except DuplicateChannelError as e:
            logger.error(f"Connection {self._handler.connection_id}: {e}")
            chan.close()

    def shell_requested(self) -> bool:
        return True

    def exec_requested(self, command: str) -> bool:
        # Commands are ignored; the channel is relayed like a shell
        return True

    def data_received(self, data: bytes, datatype: Optional[int]) -> None:
        if not self._registered:
            return
        self._handler.data_received(self.channel_id, data)

    def eof_received(self) -> bool:
        # Keep the channel half-open so the client still receives broadcasts
        return True

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if self._registered:
            self._handler.channel_closed(self.channel_id)
            self._registered = False


class RelaySSHServer(asyncssh.SSHServer):
    """asyncssh callbacks for a single accepted connection."""

    def __init__(self, handler: ConnectionHandler, auth_rejection_time: float = 0.0):
        self.handler = handler
        self.auth_rejection_time = auth_rejection_time
        self._conn: Optional[asyncssh.SSHServerConnection] = None
        self._channel_ids = itertools.count()

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._conn = conn
        peer = conn.get_extra_info("peername")
        logger.info(f"Connection {self.handler.connection_id} accepted from {peer}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            logger.debug(f"Connection {self.handler.connection_id} lost: {exc}")
        self.handler.connection_closed()

    def begin_auth(self, username: str) -> bool:
        # Every user has to authenticate
        return True

    async def _reject(self) -> bool:
        if self.auth_rejection_time > 0:
            await asyncio.sleep(self.auth_rejection_time)
        return False

    def password_auth_supported(self) -> bool:
        return True

    async def validate_password(self, username: str, password: str) -> bool:
        decision = self.handler.authenticate_password(username, password)
        if not decision.accepted:
            return await self._reject()
        return True

    def public_key_auth_supported(self) -> bool:
        return True

    async def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        # asyncssh verifies the client's signature before completing auth
        decision = self.handler.authenticate_public_key(username, key.get_fingerprint())
        if not decision.accepted:
            return await self._reject()
        return True

    def session_requested(self) -> RelaySession:
        return RelaySession(self.handler, next(self._channel_ids))

    def server_requested(self, listen_host: str, listen_port: int) -> GrantedForwardListener:
        """Grant a remote forward and start the greeting task.

        Returned synchronously so asyncssh sends the grant before the task
        opens its forwarded channel.
        """
        self.handler.forward_requested(listen_host, listen_port, self.open_forwarded_channel)
        return GrantedForwardListener(listen_host, listen_port)

    async def open_forwarded_channel(
        self, address: str, port: int, orig_host: str, orig_port: int
    ) -> asyncssh.SSHWriter:
        if self._conn is None:
            raise ConnectionError("SSH connection not established")
        _, writer = await self._conn.open_connection(address, port, orig_host, orig_port)
        return writer


class RelayServer:
    """Listener plus the state shared by every connection."""

    def __init__(
        self,
        config: ServerConfigModel,
        credentials: Optional[CredentialStore] = None,
        registry: Optional[SessionRegistry] = None,
        host_key: Optional[asyncssh.SSHKey] = None,
    ):
        self.config = config
        self.credentials = (
            credentials if credentials is not None else CredentialStore.from_config(config.users)
        )
        self.registry = registry if registry is not None else SessionRegistry()
        self._host_key = host_key
        self._ids = ConnectionIdAllocator()
        self._acceptor: Optional[Any] = None
        self._stopped: Optional[asyncio.Event] = None

    def create_handler(self) -> ConnectionHandler:
        """Build the handler for a newly accepted connection."""
        return ConnectionHandler(self._ids.next_id(), self.credentials, self.registry)

    def _server_factory(self) -> RelaySSHServer:
        return RelaySSHServer(self.create_handler(), self.config.auth_rejection_time)

    async def start(self) -> None:
        if self._acceptor is not None:
            return

        if self._host_key is None:
            self._host_key = load_host_key(self.config.host_key)

        logger.debug(
            f"Binding {self.config.listen_address} for {len(self.credentials)} user(s)..."
        )

        self._acceptor = await asyncssh.listen(
            host=self.config.address,
            port=self.config.port,
            server_factory=self._server_factory,
            server_host_keys=[self._host_key],
            encoding=None,  # Binary mode
            line_editor=False,
            login_timeout=self.config.login_timeout,
            keepalive_interval=self.config.keepalive_interval,
            keepalive_count_max=self.config.keepalive_count_max,
        )
        logger.success(f"Listening on {self.config.address}:{self.get_port()}...")

    def get_port(self) -> int:
        if self._acceptor is None:
            return self.config.port
        return self._acceptor.get_port()

    @property
    def host_key(self) -> Optional[asyncssh.SSHKey]:
        return self._host_key

    def close(self) -> None:
        """Stop accepting connections and release serve_forever."""
        if self._acceptor is not None:
            self._acceptor.close()
        if self._stopped is not None:
            self._stopped.set()

    async def wait_closed(self) -> None:
        if self._acceptor is not None:
            await self._acceptor.wait_closed()
            self._acceptor = None

    async def serve_forever(self) -> None:
        """Start listening and block until close() is called."""
        self._stopped = asyncio.Event()
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            self.close()
            await self.wait_closed()
            logger.info("Server stopped")
