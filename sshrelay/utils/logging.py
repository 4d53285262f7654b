# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Logging setup for sshrelay.

Two output modes share the ``sshrelay`` logger namespace:
1. CLI mode: Rich console output for one-shot commands (keygen, fingerprint)
2. Server mode: plain stderr lines, suitable for journald or docker logs

An optional rotating log file captures everything at DEBUG level.

Usage:
    from sshrelay.utils.logging import get_logger, configure_logging

    configure_logging(debug=True, server=True)
    logger = get_logger(__name__)
    logger.info("Listening on 0.0.0.0:22")
    logger.error("Forward failed", exc=exception)

Environment Variables:
    SSHRELAY_DEBUG=1          Enable debug mode
    SSHRELAY_LOG_LEVEL=DEBUG  Set log level (DEBUG, INFO, WARNING, ERROR)
    SSHRELAY_LOG_FILE=/path   Also write logs to this file
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console

_configured = False
_debug_mode = False
_server_mode = False
_log_file: Optional[Path] = None

# Shared Rich console instance
console = Console()

SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode or os.environ.get("SSHRELAY_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(
    debug: bool = False,
    server: bool = False,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Configure the sshrelay logger hierarchy.

    Call once from the entry point. Later calls are ignored unless ``force``
    is set, which the ``serve`` command uses to switch from the import-time
    defaults to server mode.

    Args:
        debug: Enable debug mode (DEBUG level, debug lines on the console)
        server: Server mode (stderr handler, no Rich markup)
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Write a rotating log file at this path
    """
    global _configured, _debug_mode, _server_mode, _log_file

    if _configured and not force:
        return

    _debug_mode = debug or is_debug_mode()
    _server_mode = server

    env_log_file = os.environ.get("SSHRELAY_LOG_FILE")
    if log_file:
        _log_file = log_file
    elif env_log_file:
        _log_file = Path(env_log_file)

    if log_level:
        level_name = log_level.upper()
    else:
        level_name = os.environ.get(
            "SSHRELAY_LOG_LEVEL", "DEBUG" if _debug_mode else "INFO"
        ).upper()

    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger("sshrelay")
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if _log_file:
        try:
            file_handler = RotatingFileHandler(
                _log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(file_handler)
        except OSError:
            # Unwritable log file, keep going with stderr only
            pass

    if _server_mode:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s: %(levelname)s: %(message)s")
        )
        root_logger.addHandler(stderr_handler)

    _configured = True

    root_logger.debug(
        f"Logging configured: level={level_name}, debug={_debug_mode}, server={_server_mode}"
    )


class RelayLogger:
    """Logger facade used throughout sshrelay.

    In server mode every message goes through the stdlib handlers only. In CLI
    mode messages are also rendered on the Rich console.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.console = console

    def _echo(self, markup: str) -> None:
        if not _server_mode:
            self.console.print(markup)

    def debug(self, message: str) -> None:
        self.logger.debug(message)
        if is_debug_mode():
            self._echo(f"[dim][DEBUG] {message}[/dim]")

    def info(self, message: str, console_output: bool = False) -> None:
        self.logger.info(message)
        if console_output:
            self._echo(f"[blue]{message}[/blue]")

    def success(self, message: str) -> None:
        self.logger.log(SUCCESS_LEVEL, message)
        self._echo(f"[green]✓ {message}[/green]")

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        """Log an error, with the exception text and traceback when given."""
        if exc:
            self.logger.error(f"{message}: {exc}", exc_info=exc)
        else:
            self.logger.error(message)


def get_logger(name: str) -> RelayLogger:
    """Get a logger for a module, namespaced under ``sshrelay``."""
    if not _configured:
        configure_logging()

    if not name.startswith("sshrelay"):
        name = f"sshrelay.{name}"

    return RelayLogger(name)
