"""Unified CLI for signal-relay using Click."""

import sys
import uuid
from pathlib import Path

import click
from loguru import logger
from websockets.exceptions import WebSocketException

from signal_relay.config import VALID_BINARY_POLICIES, get_config
from signal_relay.protocol import EnvelopeError
from signal_relay.runners import run_receive, run_relay_server, run_send

LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Minimum level of log messages written to stderr.",
)
def cli(log_level):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


# =============================================================================
# Server
# =============================================================================


@cli.command()
@click.option("--host", type=str, default=None, help="Interface to bind. Overrides config.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on. Overrides config.")
@click.option("--path", type=str, default=None, help="WebSocket endpoint path (default /ws).")
@click.option(
    "--ping-interval",
    type=float,
    default=None,
    help="Seconds between keepalive pings on each connection.",
)
@click.option(
    "--queue-size",
    type=int,
    default=None,
    help="Outbound queue capacity per connection.",
)
@click.option(
    "--drop-original-id",
    is_flag=True,
    default=False,
    help="Release the auto-assigned id when a client registers a custom id.",
)
@click.option(
    "--binary-without-target",
    type=click.Choice(sorted(VALID_BINARY_POLICIES)),
    default=None,
    help="Reply with an error or silently drop binary frames sent before any target_id.",
)
def serve(host, port, path, ping_interval, queue_size, drop_original_id, binary_without_target):
    """Run the relay server.

    Clients connect to ws://HOST:PORT/ws, register under an identifier and
    exchange messages by addressing each other's identifiers.

    Example:
        signal-relay serve --host 0.0.0.0 --port 8000
    """
    config = get_config()
    try:
        server_config = config.server.with_overrides(
            host=host,
            port=port,
            path=path,
            ping_interval=ping_interval,
            queue_size=queue_size,
            retain_original_id=False if drop_original_id else None,
            binary_without_target=binary_without_target,
        )
    except ValueError as e:
        logger.error(f"Invalid server option: {e}")
        sys.exit(1)

    run_relay_server(server_config)


# =============================================================================
# File transfer
# =============================================================================


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--url", "-u", type=str, default=None, help="Relay URL. Overrides config.")
@click.option("--id", "connection_id", type=str, default=None, help="Transfer ID to register (random if omitted).")
@click.option("--chunk-size", type=int, default=5 * 1024 * 1024, show_default=True, help="Bytes per chunk.")
@click.option("--timeout", default=300.0, show_default=True, help="Seconds to wait for the receiver.")
def send(file, url, connection_id, chunk_size, timeout):
    """Send FILE to the first receiver that joins this transfer.

    Prints a transfer ID; give it to the receiver.

    Example:
        signal-relay send report.pdf
    """
    url = url or get_config().client_url
    connection_id = connection_id or str(uuid.uuid4())
    if chunk_size < 1:
        logger.error("Chunk size must be positive")
        sys.exit(1)

    click.echo(f"Transfer ID: {connection_id}")
    click.echo(f"Receiver command: signal-relay receive {connection_id}")
    try:
        receiver_id = run_send(url, file, connection_id, chunk_size=chunk_size, timeout=timeout)
    except (OSError, RuntimeError, TimeoutError, EnvelopeError, WebSocketException) as e:
        logger.error(f"Transfer failed: {e}")
        sys.exit(1)

    click.echo(f"Sent {Path(file).name} to {receiver_id}")


@cli.command()
@click.argument("sender_id")
@click.option("--url", "-u", type=str, default=None, help="Relay URL. Overrides config.")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Directory to save the received file in.",
)
@click.option("--timeout", default=300.0, show_default=True, help="Seconds to wait for data.")
def receive(sender_id, url, output_dir, timeout):
    """Receive a file from the sender registered as SENDER_ID.

    Example:
        signal-relay receive 3f2b9c1e-... -o downloads/
    """
    url = url or get_config().client_url
    try:
        saved = run_receive(url, sender_id, output_dir=output_dir, timeout=timeout)
    except (OSError, RuntimeError, TimeoutError, EnvelopeError, WebSocketException) as e:
        logger.error(f"Transfer failed: {e}")
        sys.exit(1)

    click.echo(f"Saved {saved}")


if __name__ == "__main__":
    cli()
