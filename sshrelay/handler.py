# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Per-connection relay logic, independent of the SSH library.

A ConnectionHandler is built for every accepted connection with shared
references to the credential store and the session registry plus a fresh
connection id. The SSH adapter in ``sshrelay.ssh_server`` translates asyncssh
callbacks into calls on this class.
"""

import asyncio
import itertools
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from sshrelay.credentials import CredentialStore
from sshrelay.forwarding import ChannelOpener, spawn_forwarded_greeting
from sshrelay.registry import ChannelHandle, SessionRegistry
from sshrelay.utils.logging import get_logger

logger = get_logger(__name__)

AUTH_METHODS: Tuple[str, ...] = ("publickey", "password")


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of one authentication attempt.

    On reject, ``proceed_with`` lists the methods the client may try next.
    asyncssh re-offers every supported method on its own, so the adapter only
    looks at ``accepted``; ``proceed_with`` is for engines that take an
    explicit method list with the failure reply.
    """

    accepted: bool
    proceed_with: Tuple[str, ...] = ()

    @classmethod
    def accept(cls) -> "AuthDecision":
        return cls(accepted=True)

    @classmethod
    def reject(cls) -> "AuthDecision":
        return cls(accepted=False, proceed_with=AUTH_METHODS)

    def __bool__(self) -> bool:
        return self.accepted


class ConnectionIdAllocator:
    """Thread-safe monotonic connection id source."""

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


def format_data_line(payload: bytes) -> bytes:
    """Render received bytes as the confirmation line sent to every client."""
    text = payload.decode("utf-8", errors="replace")
    return f"Got data: {text}\r\n".encode("utf-8")


class ConnectionHandler:
    """Auth policy, channel registration, data relay and forward handling for one connection."""

    def __init__(
        self,
        connection_id: int,
        credentials: CredentialStore,
        registry: SessionRegistry,
    ):
        self.connection_id = connection_id
        self.credentials = credentials
        self.registry = registry
        self.username: Optional[str] = None
        self._channels: Dict[int, ChannelHandle] = {}
        self._forward_tasks: Set[asyncio.Task] = set()

    # Authentication

    def authenticate_password(self, username: str, password: str) -> AuthDecision:
        if self.credentials.check_password(username, password):
            self.username = username
            logger.info(f"Connection {self.connection_id}: password accepted for {username}")
            return AuthDecision.accept()
        logger.info(f"Connection {self.connection_id}: password rejected for {username}")
        return AuthDecision.reject()

    def authenticate_public_key(self, username: str, fingerprint: str) -> AuthDecision:
        """Check a key fingerprint.

        The transport must only report a key as authenticated after it has
        verified the client's signature; this method only checks membership.
        """
        if self.credentials.check_public_key(username, fingerprint):
            self.username = username
            logger.info(
                f"Connection {self.connection_id}: key {fingerprint} accepted for {username}"
            )
            return AuthDecision.accept()
        logger.debug(f"Connection {self.connection_id}: key {fingerprint} rejected for {username}")
        return AuthDecision.reject()

    # Channels and data

    def channel_opened(self, channel_id: int, handle: ChannelHandle) -> bool:
        """Register a newly opened channel. Always grants the open.

        Raises:
            DuplicateChannelError: The transport reused a channel id.
        """
        self.registry.register(self.connection_id, channel_id, handle)
        self._channels[channel_id] = handle
        return True

    def channel_closed(self, channel_id: int) -> None:
        self._channels.pop(channel_id, None)
        self.registry.unregister(self.connection_id, channel_id)

    def data_received(self, channel_id: int, payload: bytes) -> bytes:
        """Fan the formatted line out to other connections, then echo it back.

        Only the originating channel gets the echo; sibling channels of this
        connection are skipped by the fan-out and receive nothing.

        Returns:
            The formatted line.
        """
        line = format_data_line(payload)
        delivered = self.registry.broadcast(self.connection_id, line)
        logger.debug(
            f"Connection {self.connection_id}: relayed {len(payload)} bytes to {delivered} channel(s)"
        )

        handle = self._channels.get(channel_id)
        if handle is None:
            logger.warning(
                f"Connection {self.connection_id}: data on unknown channel {channel_id}, not echoed"
            )
            return line

        try:
            handle.write(line)
        except Exception as e:
            logger.warning(f"Connection {self.connection_id}: echo on channel {channel_id} failed: {e}")
        return line

    # Remote port forwarding

    def forward_requested(
        self, address: str, port: int, open_channel: ChannelOpener
    ) -> asyncio.Task:
        """Grant a remote forward and spawn the greeting task.

        Must be called from a running event loop. The returned task is the
        optional completion signal; the grant itself never depends on it.
        """
        logger.info(f"Connection {self.connection_id}: remote forward granted for {address}:{port}")
        return spawn_forwarded_greeting(open_channel, address, port, self._forward_tasks)

    # Teardown

    def connection_closed(self) -> None:
        """Drop every registry entry this connection still owns."""
        self._channels.clear()
        removed = self.registry.unregister_connection(self.connection_id)
        logger.info(
            f"Connection {self.connection_id} closed ({removed} channel(s) unregistered)"
        )

    @property
    def pending_forwards(self) -> Set[asyncio.Task]:
        return set(self._forward_tasks)
