# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Config file loading for the relay server."""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from sshrelay.models.config import ServerConfigModel
from sshrelay.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("sshrelay.yml")


class ConfigError(Exception):
    """The configuration could not be loaded or is invalid."""


def load_config(
    path: Path = DEFAULT_CONFIG_FILE,
    address: Optional[str] = None,
    port: Optional[int] = None,
) -> ServerConfigModel:
    """Load and validate the config file.

    ``address`` and ``port`` override the values from the file when given
    (command-line flags take precedence).

    Raises:
        ConfigError: Missing or unreadable file, bad YAML, or failed validation.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"Failed to read config from {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")

    try:
        config = ServerConfigModel.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Config validation errors in {path}: {e}")

    overrides = {}
    if address is not None:
        overrides["address"] = address
    if port is not None:
        overrides["port"] = port
    if overrides:
        config = config.model_copy(update=overrides)

    # Relative host key paths are resolved against the config file location
    if config.host_key is not None and not config.host_key.is_absolute():
        config = config.model_copy(update={"host_key": Path(path).parent / config.host_key})

    if not config.users:
        logger.warning(f"No users configured in {path}; every login will be rejected")

    logger.debug(f"Loaded config from {path}: {len(config.users)} user(s)")
    return config
