# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pytest fixtures for sshrelay tests."""

import os
import subprocess
import sys
from pathlib import Path
from typing import List

import pytest

from sshrelay.credentials import CredentialStore, UserCredential
from sshrelay.registry import SessionRegistry

ALICE_PASSWORD = "secret"
BOB_FINGERPRINT = "SHA256:bobkeyfingerprintbobkeyfingerprintbobkeyfi"


class FakeChannel:
    """Records everything written to it, like an asyncssh channel would send."""

    def __init__(self, name: str = "chan", fail: bool = False):
        self.name = name
        self.fail = fail
        self.writes: List[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.fail:
            raise BrokenPipeError("Channel not open for sending")
        self.writes.append(data)

    def close(self) -> None:
        self.closed = True


class FakeWriter(FakeChannel):
    """Stand-in for asyncssh.SSHWriter on a forwarded channel."""

    def __init__(self, name: str = "forward", fail: bool = False):
        super().__init__(name, fail)
        self.eof = False

    async def drain(self) -> None:
        return None

    def write_eof(self) -> None:
        self.eof = True


def run_sshrelay(*args, cwd=None, check=True, capture_output=True, text=True):
    """Run the sshrelay CLI via python module (tests local code, not an installed copy)."""
    project_root = Path(__file__).parent.parent

    env = os.environ.copy()
    env["PYTHONPATH"] = str(project_root)

    return subprocess.run(
        [sys.executable, "-m", "sshrelay", *args],
        cwd=cwd,
        check=check,
        capture_output=capture_output,
        text=text,
        env=env,
    )


@pytest.fixture
def credentials() -> CredentialStore:
    """alice logs in with a password, bob with a key, carol has nothing configured."""
    return CredentialStore(
        {
            "alice": UserCredential.create(password=ALICE_PASSWORD),
            "bob": UserCredential.create(keys=[BOB_FINGERPRINT]),
            "carol": UserCredential.create(),
        }
    )


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def make_writer():
    return FakeWriter


@pytest.fixture
def cli_runner():
    return run_sshrelay
