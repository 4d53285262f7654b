# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""One-shot greeting pushed through a granted remote port forward.

When a client asks the server to listen on its behalf (``ssh -R``), the relay
grants the request and then, instead of binding a socket, immediately opens a
single forwarded channel back to the client, writes a fixed greeting into it
and closes it again.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set

from sshrelay.utils.logging import get_logger

logger = get_logger(__name__)

GREETING = b"Hello from a forwarded port"

# Reported to the client as the peer that "connected" to the forwarded port
ORIGINATOR_HOST = "1.2.3.4"
ORIGINATOR_PORT = 1234

# Some clients only register a forward once they have read the grant, so a
# channel opened right behind it can be refused as unknown
OPEN_DELAY = 0.05

# open_channel(dest_host, dest_port, orig_host, orig_port) -> writer
ChannelOpener = Callable[[str, int, str, int], Awaitable[Any]]


async def send_forwarded_greeting(
    open_channel: ChannelOpener, address: str, port: int, delay: float = OPEN_DELAY
) -> bool:
    """Open a forwarded channel, write the greeting, then EOF and close it.

    Errors are logged and swallowed: the forward has already been granted and
    nobody is waiting on the outcome.

    Returns:
        True if the greeting was written and the channel closed cleanly.
    """
    if delay > 0:
        await asyncio.sleep(delay)

    try:
        writer = await open_channel(address, port, ORIGINATOR_HOST, ORIGINATOR_PORT)
    except Exception as e:
        logger.error(f"Failed to open forwarded channel to {address}:{port}", exc=e)
        return False

    sent = False
    try:
        writer.write(GREETING)
        await writer.drain()
        writer.write_eof()
        sent = True
    except Exception as e:
        logger.error(f"Failed to write greeting to {address}:{port}", exc=e)

    try:
        writer.close()
    except Exception as e:
        logger.warning(f"Failed to close forwarded channel to {address}:{port}: {e}")
        sent = False

    if sent:
        logger.debug(f"Sent greeting through forward {address}:{port}")
    return sent


def spawn_forwarded_greeting(
    open_channel: ChannelOpener,
    address: str,
    port: int,
    tasks: Optional[Set[asyncio.Task]] = None,
    delay: float = OPEN_DELAY,
) -> asyncio.Task:
    """Schedule send_forwarded_greeting as a detached task.

    Nothing joins the task. It is returned so callers (and tests) can await
    it if they want to. When ``tasks`` is given, the task is kept there until
    it finishes so it is not garbage collected mid-flight.
    """
    task = asyncio.get_running_loop().create_task(
        send_forwarded_greeting(open_channel, address, port, delay),
        name=f"forward-greeting-{address}:{port}",
    )
    if tasks is not None:
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    return task
