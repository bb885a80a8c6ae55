#!/usr/bin/env python3
"""
TFTP Server CLI

Command-line interface for the read-only TFTP server.

Usage:
    tftpd serve                  # Serve ./tftp-root on port 69
    tftpd get FILE               # Download a file from a server
    tftpd config                 # Show the effective configuration
"""

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from .client import TFTPClient, TFTPError
from .config import load_config
from .packet import Mode
from .server import TFTPServer

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """tftpd - read-only TFTP server."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Address to listen on')
@click.option('--port', type=int, default=None, help='UDP port for requests')
@click.option('--root', type=click.Path(file_okay=False), default=None,
              help='Directory to serve files from')
@click.option('--timeout', type=float, default=None, help='Seconds to wait for each ACK')
@click.option('--retries', type=int, default=None, help='DATA sends per block')
@click.option('--max-transfers', type=int, default=None, help='Concurrent transfer limit')
@click.pass_context
def serve(ctx, host, port, root, timeout, retries, max_transfers):
    """Start the TFTP server."""
    config = ctx.obj['config']

    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if root is not None:
        config.root_dir = Path(root)
    if timeout is not None:
        config.ack_timeout = timeout
    if retries is not None:
        config.max_retries = retries
    if max_transfers is not None:
        config.max_transfers = max_transfers

    try:
        config.validate()
    except ValueError as e:
        raise click.BadParameter(str(e))

    async def run():
        server = TFTPServer(config)

        try:
            await server.start()
        except OSError as e:
            console.print(f"[red]Cannot bind {config.host}:{config.port}: {e}[/red]")
            return

        bound_host, bound_port = server.address
        console.print(Panel.fit(
            f"[bold green]TFTP Server Started[/bold green]\n\n"
            f"Listening: [yellow]{bound_host}:{bound_port}[/yellow] (RRQ only)\n"
            f"Root: [blue]{server.resolver.root}[/blue]\n"
            f"ACK timeout: [yellow]{config.ack_timeout}s[/yellow], "
            f"retries: [yellow]{config.max_retries}[/yellow]",
            title="Server Info"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

        try:
            await server.serve_forever()
        finally:
            console.print("[green]Server stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.argument('filename')
@click.option('--host', default='127.0.0.1', help='Server host')
@click.option('--port', type=int, default=69, help='Server port')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output path')
@click.option('--mode', type=click.Choice([m.value for m in Mode]),
              default=Mode.OCTET.value, help='Transfer mode')
@click.option('--timeout', type=float, default=5.0, help='Seconds to wait for each block')
@click.pass_context
def get(ctx, filename, host, port, output, mode, timeout):
    """Download a file from a TFTP server."""
    output_path = Path(output) if output else Path(Path(filename).name or 'download')

    async def run():
        client = TFTPClient(host=host, port=port, timeout=timeout)
        with open(output_path, 'wb') as out:
            return await client.download(filename, out, mode=mode)

    try:
        result = asyncio.run(run())
    except (TFTPError, TimeoutError, OSError) as e:
        output_path.unlink(missing_ok=True)
        console.print(f"[red]✗ Download failed: {e}[/red]")
        ctx.exit(1)

    console.print(Panel.fit(
        f"[bold green]Download Complete[/bold green]\n\n"
        f"File: [cyan]{filename}[/cyan]\n"
        f"Saved to: [blue]{output_path}[/blue]\n"
        f"Size: [yellow]{format_size(result.bytes_received)}[/yellow] "
        f"in [yellow]{result.blocks}[/yellow] blocks\n"
        f"Time: [yellow]{result.duration:.2f}s[/yellow]",
        title="TFTP Get"
    ))


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    console.print_json(json.dumps(ctx.obj['config'].to_dict()))


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
