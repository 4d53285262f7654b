"""Tests for sshrelay/forwarding.py"""

import asyncio
from unittest.mock import AsyncMock

from sshrelay.forwarding import (
    GREETING,
    ORIGINATOR_HOST,
    ORIGINATOR_PORT,
    send_forwarded_greeting,
    spawn_forwarded_greeting,
)


def test_greeting_literal():
    assert GREETING == b"Hello from a forwarded port"
    assert (ORIGINATOR_HOST, ORIGINATOR_PORT) == ("1.2.3.4", 1234)


class TestSendForwardedGreeting:
    """Test the open/write/eof/close sequence"""

    def test_writes_greeting_then_eof_and_close(self, make_writer):
        writer = make_writer()
        opener = AsyncMock(return_value=writer)

        result = asyncio.run(send_forwarded_greeting(opener, "example.com", 9999))

        assert result is True
        opener.assert_awaited_once_with("example.com", 9999, "1.2.3.4", 1234)
        assert writer.writes == [b"Hello from a forwarded port"]
        assert writer.eof is True
        assert writer.closed is True

    def test_open_failure_logged(self, caplog):
        opener = AsyncMock(side_effect=OSError("administratively prohibited"))

        result = asyncio.run(send_forwarded_greeting(opener, "example.com", 9999))

        assert result is False
        assert "Failed to open forwarded channel to example.com:9999" in caplog.text

    def test_write_failure_still_closes(self, make_writer, caplog):
        writer = make_writer(fail=True)
        opener = AsyncMock(return_value=writer)

        result = asyncio.run(send_forwarded_greeting(opener, "example.com", 9999))

        assert result is False
        assert writer.closed is True
        assert writer.eof is False
        assert "Failed to write greeting" in caplog.text


class TestSpawnForwardedGreeting:
    """Test the detached task wrapper"""

    def test_task_tracked_until_done(self, make_writer):
        writer = make_writer()
        opener = AsyncMock(return_value=writer)
        tasks = set()

        async def scenario():
            task = spawn_forwarded_greeting(opener, "localhost", 0, tasks)
            assert task in tasks
            result = await task
            # done callbacks run on the next loop iteration
            await asyncio.sleep(0)
            return result

        assert asyncio.run(scenario()) is True
        assert tasks == set()

    def test_runs_without_anyone_awaiting(self, make_writer):
        writer = make_writer()
        opener = AsyncMock(return_value=writer)

        async def scenario():
            spawn_forwarded_greeting(opener, "localhost", 8080, delay=0)
            for _ in range(5):
                await asyncio.sleep(0)

        asyncio.run(scenario())

        assert writer.writes == [GREETING]
