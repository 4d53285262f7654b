# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""sshrelay command line interface."""

import asyncio
import functools
import os
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

import asyncssh
import click
from rich.console import Console
from rich.panel import Panel

from sshrelay import __version__
from sshrelay.config import DEFAULT_CONFIG_FILE, ConfigError, load_config
from sshrelay.ssh_server import RelayServer
from sshrelay.utils.logging import configure_logging, get_logger

console = Console()


def handle_errors(func: Callable) -> Callable:
    """Print known failures as a red panel and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SystemExit:
            raise
        except click.ClickException:
            raise
        except ConfigError as exc:
            console.print(Panel(str(exc), title="[red]Config Error[/red]", border_style="red"))
            sys.exit(1)
        except (OSError, asyncssh.Error, asyncssh.KeyImportError) as exc:
            console.print(Panel(str(exc), title="[red]Error[/red]", border_style="red"))
            sys.exit(1)

    return wrapper


async def _run_server(server: RelayServer) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, server.close)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass
    await server.serve_forever()


@click.group()
@click.version_option(version=__version__, prog_name="sshrelay")
def cli():
    """sshrelay - SSH server that relays every client's input to all clients."""


@cli.command()
@click.option("-a", "--address", help="Address to bind to. Overrides the config file.")
@click.option(
    "-p",
    "--port",
    type=click.IntRange(0, 65535),
    help="Port number to listen on. Overrides the config file.",
)
@click.option(
    "-c",
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Path to configuration file.",
)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write logs to this file.",
)
@handle_errors
def serve(
    address: Optional[str],
    port: Optional[int],
    config_file: Path,
    debug: bool,
    log_file: Optional[Path],
):
    """Run the relay server."""
    configure_logging(debug=debug, server=True, log_file=log_file, force=True)
    logger = get_logger("sshrelay.cli")

    config = load_config(config_file, address=address, port=port)
    server = RelayServer(config)

    try:
        asyncio.run(_run_server(server))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing key.")
@handle_errors
def keygen(path: Path, force: bool):
    """Generate an Ed25519 host key at PATH (public key at PATH.pub)."""
    pub_path = path.with_name(path.name + ".pub")
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")

    key = asyncssh.generate_private_key("ssh-ed25519")
    # Owner-only before any key bytes land, also when overwriting
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        os.fchmod(f.fileno(), 0o600)
        f.write(key.export_private_key())
    key.write_public_key(pub_path)

    console.print(f"[green]✓ Wrote host key to {path}[/green]")
    console.print(f"Fingerprint: {key.get_fingerprint()}")


@cli.command()
@click.argument("key_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@handle_errors
def fingerprint(key_file: Path):
    """Print the SHA256 fingerprint of a public key, for the users.*.keys list."""
    key = asyncssh.read_public_key(key_file)
    click.echo(key.get_fingerprint())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
