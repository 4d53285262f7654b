# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT

"""Pydantic models for the server configuration file (sshrelay.yml)."""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

FINGERPRINT_PREFIX = "SHA256:"


class UserConfig(BaseModel):
    """Credentials accepted for one user.

    ``keys`` holds SHA256 public key fingerprints as printed by
    ``ssh-keygen -lf`` or ``sshrelay fingerprint``. The ``SHA256:`` prefix is
    optional in the file and added on load.
    """

    model_config = ConfigDict(extra="forbid")

    password: Optional[str] = None
    keys: List[str] = Field(default_factory=list)

    @field_validator("keys")
    @classmethod
    def normalize_fingerprints(cls, v: List[str]) -> List[str]:
        normalized = []
        for fingerprint in v:
            fingerprint = fingerprint.strip()
            if not fingerprint:
                raise ValueError("Empty key fingerprint")
            if not fingerprint.startswith(FINGERPRINT_PREFIX):
                fingerprint = FINGERPRINT_PREFIX + fingerprint
            normalized.append(fingerprint)
        return normalized


class ServerConfigModel(BaseModel):
    """Top-level server configuration."""

    model_config = ConfigDict(extra="forbid")

    host_key: Optional[Path] = None  # OpenSSH/PEM private key; generated if unset
    address: str = "0.0.0.0"
    port: int = Field(default=22, ge=0, le=65535)

    # Transport knobs, applied by the asyncssh adapter
    auth_rejection_time: float = Field(default=3.0, ge=0)
    login_timeout: float = Field(default=120.0, gt=0)
    keepalive_interval: float = Field(default=15.0, ge=0)
    keepalive_count_max: int = Field(default=3, ge=1)

    users: Dict[str, UserConfig]

    @property
    def listen_address(self) -> str:
        return f"{self.address}:{self.port}"
