# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Process-wide table of open relay channels and the broadcast fan-out.

Every authenticated connection registers each channel it opens under a
``(connection_id, channel_id)`` key. A data event on one connection is pushed
to every channel whose connection id differs from the sender's.

One lock covers registration, removal and iteration, so a broadcast never
sees a table that a concurrent register call has half-updated.
"""

import threading
from typing import Any, Dict, List, Protocol, Tuple

from sshrelay.utils.logging import get_logger

logger = get_logger(__name__)

ChannelKey = Tuple[int, int]


class ChannelHandle(Protocol):
    """Anything that can push bytes down one open channel."""

    def write(self, data: bytes) -> Any:
        ...


class RegistryError(Exception):
    """Base class for session registry errors."""


class DuplicateChannelError(RegistryError):
    """A channel key was registered twice."""

    def __init__(self, connection_id: int, channel_id: int):
        super().__init__(
            f"Channel {channel_id} of connection {connection_id} is already registered"
        )
        self.connection_id = connection_id
        self.channel_id = channel_id


class SessionRegistry:
    """Shared mapping of (connection id, channel id) to channel handle."""

    def __init__(self) -> None:
        self._sessions: Dict[ChannelKey, ChannelHandle] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: int, channel_id: int, handle: ChannelHandle) -> None:
        """Add a routable channel.

        Raises:
            DuplicateChannelError: The key is already present. Existing
                entries are never overwritten.
        """
        key = (connection_id, channel_id)
        with self._lock:
            if key in self._sessions:
                raise DuplicateChannelError(connection_id, channel_id)
            self._sessions[key] = handle
        logger.debug(f"Registered channel {channel_id} for connection {connection_id}")

    def unregister(self, connection_id: int, channel_id: int) -> bool:
        """Remove one channel. Returns False if it was not registered."""
        with self._lock:
            removed = self._sessions.pop((connection_id, channel_id), None)
        return removed is not None

    def unregister_connection(self, connection_id: int) -> int:
        """Remove every channel owned by a connection. Returns how many."""
        with self._lock:
            stale = [key for key in self._sessions if key[0] == connection_id]
            for key in stale:
                del self._sessions[key]
        if stale:
            logger.debug(f"Dropped {len(stale)} channel(s) of connection {connection_id}")
        return len(stale)

    def broadcast(self, sender_connection_id: int, payload: bytes) -> int:
        """Push payload to every channel not owned by the sender.

        A failing destination is logged and skipped; it never stops delivery
        to the rest and never raises to the caller.

        Returns:
            Number of channels the payload was written to.
        """
        delivered = 0
        with self._lock:
            for (connection_id, channel_id), handle in self._sessions.items():
                if connection_id == sender_connection_id:
                    continue
                try:
                    handle.write(payload)
                    delivered += 1
                except Exception as e:
                    logger.warning(
                        f"Delivery to channel {channel_id} of connection {connection_id} failed: {e}"
                    )
        return delivered

    def keys(self) -> List[ChannelKey]:
        """Snapshot of registered keys."""
        with self._lock:
            return list(self._sessions)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
