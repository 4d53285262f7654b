# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Read-only user credential table.

Built once from the ``users`` section of the config file and shared by every
connection for the lifetime of the process. Nothing here takes a lock because
nothing here is ever mutated after construction.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, FrozenSet, Iterable, Mapping, Optional

if TYPE_CHECKING:
    from sshrelay.models.config import UserConfig


@dataclass(frozen=True)
class UserCredential:
    """Allowed credentials for one user."""

    password: Optional[str] = None
    fingerprints: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def create(cls, password: Optional[str] = None, keys: Iterable[str] = ()) -> "UserCredential":
        return cls(password=password, fingerprints=frozenset(keys))


class CredentialStore:
    """Username to UserCredential mapping, immutable after construction."""

    def __init__(self, users: Mapping[str, UserCredential]):
        self._users: Mapping[str, UserCredential] = MappingProxyType(dict(users))

    @classmethod
    def from_config(cls, users: Mapping[str, "UserConfig"]) -> "CredentialStore":
        """Build the store from validated config models."""
        return cls(
            {
                name: UserCredential.create(password=user.password, keys=user.keys)
                for name, user in users.items()
            }
        )

    def lookup(self, username: str) -> Optional[UserCredential]:
        return self._users.get(username)

    def check_password(self, username: str, password: str) -> bool:
        """True iff the user exists, has a password, and it matches exactly."""
        user = self.lookup(username)
        if user is None or user.password is None:
            return False
        return user.password == password

    def check_public_key(self, username: str, fingerprint: str) -> bool:
        """True iff the user exists and lists this key fingerprint."""
        user = self.lookup(username)
        if user is None:
            return False
        return fingerprint in user.fingerprints

    def __len__(self) -> int:
        return len(self._users)
