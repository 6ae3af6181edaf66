#!/usr/bin/env python3
"""
b2lite CLI

Command-line interface for the object store client.

Usage:
    b2lite check                       # Authorize and run a round trip
    b2lite upload FILE...              # Upload files (optionally --bundle NAME)
    b2lite download NAME               # Download a file (--id, --extract DIR)
    b2lite list                        # List files in the bucket
    b2lite delete NAME FILE_ID         # Delete a file version
    b2lite rebundle ARCHIVE NAME...    # Bundle stored files into one archive
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

import aiofiles
import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .client import StoreClient
from .config import load_config
from .errors import ConfigurationError, StoreError
from .file import ArchiveCodec, ContentHasher

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def run_client(ctx, work):
    """Run `work(client)` with a client built from the context config."""
    config = ctx.obj['config']

    async def run():
        async with StoreClient.from_config(config) as client:
            return await work(client)

    try:
        return asyncio.run(run())
    except StoreError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(), default=None,
              help='JSON config file (environment variables override it)')
@click.pass_context
def cli(ctx, verbose, config_path):
    """b2lite - upload, download and bundle files in an object store bucket."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.pass_context
def check(ctx):
    """Authorize, list, and round-trip a small check file."""
    check_name = f"b2lite-check/{int(time.time())}.json"
    payload = b'{"check": "b2lite connection check"}'

    async def work(client: StoreClient):
        session = await client.auth.acquire()
        console.print(f"[green]✓ Authorized[/green] account [cyan]{session.account_id}[/cyan]")

        listing = await client.list_files(max_file_count=5)
        console.print(f"[green]✓ Listed[/green] {len(listing.files)} file(s)")

        record = await client.upload(check_name, payload, content_type='application/json')
        console.print(f"[green]✓ Uploaded[/green] {record.file_name}")

        result = await client.download_by_id(record.file_id)
        if not ContentHasher.verify(result.data, record.content_sha1):
            console.print("[red]✗ Downloaded bytes do not match the upload[/red]")
            raise SystemExit(1)
        console.print("[green]✓ Downloaded and verified[/green]")

        await client.delete_file(record.file_name, record.file_id)
        console.print("[green]✓ Deleted check file[/green]")

    run_client(ctx, work)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--prefix', default='', help='Prefix for names in the bucket')
@click.option('--bundle', 'bundle_name', default=None, help='Upload all files as one archive')
@click.option('--sha1/--no-sha1', 'include_sha1', default=True,
              help='Record per-file digests inside the archive')
@click.option('--concurrency', '-c', type=int, default=None, help='Uploads in flight')
@click.pass_context
def upload(ctx, files, prefix, bundle_name, include_sha1, concurrency):
    """Upload one or more files."""
    paths = [Path(f) for f in files]

    async def read_all():
        payloads = []
        for path in paths:
            async with aiofiles.open(path, 'rb') as f:
                payloads.append((f"{prefix}{path.name}", await f.read()))
        return payloads

    async def work(client: StoreClient):
        payloads = await read_all()

        if bundle_name:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task(f"Uploading {bundle_name}...", total=100)
                record = await client.upload_archive(
                    bundle_name, payloads, include_sha1=include_sha1,
                    on_progress=lambda p: progress.update(task, completed=p),
                )
            records = [record]
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task(f"Uploading {len(payloads)} file(s)...", total=None)
                records = await client.upload_many(payloads, concurrency)

        table = Table(title="Uploaded")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right", style="yellow")
        table.add_column("SHA-1", style="green")
        table.add_column("File ID")
        for r in records:
            table.add_row(r.file_name, format_size(r.content_length),
                          r.content_sha1[:16] + "...", r.file_id)
        console.print(table)

    run_client(ctx, work)


@cli.command()
@click.argument('name')
@click.option('--id', 'by_id', is_flag=True, help='NAME is a file id')
@click.option('--output', '-o', type=click.Path(), help='Output path')
@click.option('--extract', type=click.Path(file_okay=False),
              help='Treat the file as an archive and unpack into this directory')
@click.pass_context
def download(ctx, name, by_id, output, extract):
    """Download a file by name (or id)."""

    async def work(client: StoreClient):
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task(f"Downloading {name}...", total=100)

            def update_progress(percent: float):
                progress.update(task, completed=percent)

            if by_id:
                result = await client.download_by_id(name, on_progress=update_progress)
            else:
                result = await client.download_by_name(name, on_progress=update_progress)
            progress.update(task, completed=100, description="Done!")

        if result.sha1_matches is False:
            console.print("[yellow]! SHA-1 header does not match the downloaded bytes[/yellow]")

        if extract:
            target = Path(extract)
            entries = ArchiveCodec.decode(result.data)
            for entry in entries:
                out = safe_join(target, entry.file_name)
                out.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(out, 'wb') as f:
                    await f.write(entry.data)
            console.print(f"[green]✓ Extracted {len(entries)} file(s) to {target}[/green]")
            return

        out = Path(output) if output else Path(Path(result.file_name).name)
        async with aiofiles.open(out, 'wb') as f:
            await f.write(result.data)
        console.print(f"[green]✓ Downloaded to: {out}[/green] ({format_size(len(result.data))})")

    run_client(ctx, work)


@cli.command('list')
@click.option('--start', 'start_file_name', default=None, help='First file name to list')
@click.option('--limit', default=100, help='Page size')
@click.option('--all', 'list_all', is_flag=True, help='Follow pages to the end')
@click.pass_context
def list_files(ctx, start_file_name, limit, list_all):
    """List files in the bucket."""

    async def work(client: StoreClient):
        if list_all:
            records = [r async for r in client.iter_files(start_file_name, limit)]
            next_name = None
        else:
            page = await client.list_files(start_file_name, limit)
            records, next_name = page.files, page.next_file_name

        if not records:
            console.print("[yellow]No files[/yellow]")
            return

        table = Table(title=f"Files in {client.config.bucket_name}")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right", style="yellow")
        table.add_column("Type")
        table.add_column("Archive", justify="right")
        table.add_column("File ID", style="green")

        for r in records:
            count = r.archive_file_count
            table.add_row(
                r.file_name,
                format_size(r.content_length),
                r.content_type,
                f"{count} files" if count is not None else "",
                r.file_id,
            )

        console.print(table)
        if next_name:
            console.print(f"[dim]More files from: {next_name}[/dim]")

    run_client(ctx, work)


@cli.command()
@click.argument('name')
@click.argument('file_id')
@click.pass_context
def delete(ctx, name, file_id):
    """Delete one version of a file."""

    async def work(client: StoreClient):
        await client.delete_file(name, file_id)
        console.print(f"[green]✓ Deleted {name}[/green]")

    run_client(ctx, work)


@cli.command()
@click.argument('archive_name')
@click.argument('names', nargs=-1, required=True)
@click.pass_context
def rebundle(ctx, archive_name, names):
    """Bundle files already in the bucket into one archive."""

    async def work(client: StoreClient):
        record = await client.rebundle(archive_name, list(names), include_sha1=True)
        console.print(Panel.fit(
            f"[bold green]Archive Uploaded[/bold green]\n\n"
            f"Name: [cyan]{record.file_name}[/cyan]\n"
            f"Files: [yellow]{record.archive_file_count}[/yellow]\n"
            f"Size: [yellow]{format_size(record.content_length)}[/yellow]\n"
            f"File ID: [green]{record.file_id}[/green]",
            title="Rebundle"
        ))

    run_client(ctx, work)


def safe_join(root: Path, name: str) -> Path:
    """Join an archive member name under root, refusing paths that escape it."""
    target = (root / name).resolve()
    if root.resolve() not in target.parents:
        raise click.ClickException(f"Refusing to extract outside {root}: {name}")
    return target


def format_size(bytes_count: Optional[float]) -> str:
    """Format bytes as human-readable size."""
    bytes_count = float(bytes_count or 0)
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
