"""Main CLI entry point for streamcache.

Provides diagnostics for the local cache of an account: namespace lookup,
cache statistics and cleanup, and the stream tree.
"""

import contextlib
import sys
from pathlib import Path
from typing import Iterator, Mapping

import click
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from streamcache import Connection
from streamcache.cache.config import get_global_config
from streamcache.model import Stream
from streamcache.tree import walk_tree
from streamcache.utils import (
    CACHE_FOLDER,
    EVENTS_RESOURCE,
    STREAMS_RESOURCE,
    build_url_endpoint,
    derive_namespace,
)

# Global console for Rich output
console = Console()


def require_account(ctx: click.Context) -> dict:
    """Get the account options from the CLI context.

    Raises:
        click.ClickException: If username, token or domain is missing
    """
    account = ctx.obj
    missing = [
        f"--{name}" for name in ("username", "token", "domain") if not account.get(name)
    ]
    if missing:
        raise click.ClickException(f"Missing account option(s): {', '.join(missing)}")
    return account


@contextlib.contextmanager
def open_connection(ctx: click.Context) -> Iterator[Connection]:
    """Open a Connection for the account and close it after pending writes."""
    account = require_account(ctx)
    connection = Connection(
        account["username"],
        account["token"],
        account["domain"],
        cache_dir=account.get("cache_dir"),
    )
    try:
        yield connection
    finally:
        connection.close(wait=True)


def format_bytes(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def build_stream_tree(roots: Mapping[str, Stream]) -> Tree:
    """Render root streams and their descendants as a Rich tree."""
    tree = Tree("[bold]Streams[/bold]")
    # branches[d] is the node that streams at depth d hang from
    branches = [tree]
    for depth, stream in walk_tree(roots):
        label = f"[cyan]{stream.name or stream.id}[/cyan] [dim]({stream.id})[/dim]"
        if stream.trashed:
            label += " [yellow]trashed[/yellow]"
        del branches[depth + 1 :]
        branches.append(branches[depth].add(label))
    return tree


@click.group()
@click.option("--username", "-u", envvar="STREAMCACHE_USERNAME", help="Account username")
@click.option(
    "--token",
    envvar="STREAMCACHE_TOKEN",
    help="Access token (default: STREAMCACHE_TOKEN env var)",
)
@click.option("--domain", "-d", envvar="STREAMCACHE_DOMAIN", help="Service domain")
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False),
    help="Root cache directory (default: ~/.streamcache or STREAMCACHE_CACHE_DIR)",
)
@click.pass_context
def cli(ctx, username, token, domain, cache_dir):
    """streamcache CLI - Inspect the local cache of an account.

    Account options can also be set with STREAMCACHE_USERNAME,
    STREAMCACHE_TOKEN and STREAMCACHE_DOMAIN.
    """
    ctx.ensure_object(dict)
    ctx.obj["username"] = username
    ctx.obj["token"] = token
    ctx.obj["domain"] = domain
    ctx.obj["cache_dir"] = cache_dir


@cli.command("namespace")
@click.pass_context
def namespace(ctx):
    """Print the cache namespace of the account and its folder.

    Example:
        streamcache -u alice -d example.io --token TOKEN namespace
    """
    try:
        account = require_account(ctx)
        name = derive_namespace(
            build_url_endpoint(account["username"], account["domain"]),
            account["token"],
            account["username"],
            account["domain"],
        )
        root = (
            Path(account["cache_dir"]).expanduser()
            if account.get("cache_dir")
            else get_global_config().cache_dir
        )

        console.print(name, soft_wrap=True)
        console.print(f"[dim]Folder:[/dim] {root / CACHE_FOLDER / name}", soft_wrap=True)

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.group()
@click.pass_context
def cache(ctx):
    """Manage the local cache - stats, clear."""
    pass


@cache.command("stats")
@click.pass_context
def cache_stats(ctx):
    """Show cache statistics of the account.

    Example:
        streamcache cache stats
    """
    try:
        with open_connection(ctx) as connection:
            stats = connection.cache_status()
            statuses = {
                resource: connection.cache_status(resource)
                for resource in (STREAMS_RESOURCE, EVENTS_RESOURCE)
            }

        console.print(f"\n[bold cyan]Cache: {stats['namespace']}[/bold cyan]")
        console.print(f"[bold]Location:[/bold] {stats['cache_dir']}", soft_wrap=True)
        console.print(f"[bold]Scope:[/bold] {stats['scope']}")
        console.print(f"[bold]TTL:[/bold] {stats['ttl_seconds']}s")
        console.print(
            f"[bold]Hit rate:[/bold] {stats['cache_hit_rate']:.0%} "
            f"({stats['cache_hits']} hits, {stats['cache_misses']} misses)"
        )

        table = Table(title="Resources")
        table.add_column("Resource", style="cyan", no_wrap=True)
        table.add_column("Records", justify="right", style="green")
        table.add_column("Size", justify="right")
        table.add_column("Last synced", style="blue")
        table.add_column("Fresh", justify="center")

        for resource, status in statuses.items():
            if status is None:
                table.add_row(resource, "-", "-", "[dim]never[/dim]", "-")
                continue
            table.add_row(
                resource,
                str(status["record_count"]),
                format_bytes(status["size_bytes"]),
                (status["last_synced"] or "")[:19].replace("T", " "),
                "[green]yes[/green]" if status["fresh"] else "[yellow]no[/yellow]",
            )

        console.print(table)

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cache.command("clear")
@click.argument(
    "resource",
    type=click.Choice([STREAMS_RESOURCE, EVENTS_RESOURCE]),
    required=False,
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def cache_clear(ctx, resource, yes):
    """Delete cached data, of one resource or all of it.

    Example:
        streamcache cache clear events
        streamcache cache clear -y
    """
    try:
        target = resource or "all cached data"
        if not yes:
            if not click.confirm(f"Clear {target}?"):
                console.print("[yellow]Cancelled[/yellow]")
                return

        with open_connection(ctx) as connection:
            connection.clear_cache(resource)

        console.print(f"[green]✓[/green] Cleared {target}")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.group()
@click.pass_context
def streams(ctx):
    """Inspect streams."""
    pass


@streams.command("tree")
@click.option(
    "--online",
    is_flag=True,
    help="Fetch streams from the API (and refresh the cache) instead of the cache",
)
@click.pass_context
def streams_tree(ctx, online):
    """Print the stream tree.

    By default the tree is rebuilt from the local cache only.

    Example:
        streamcache streams tree
        streamcache streams tree --online
    """
    try:
        with open_connection(ctx) as connection:
            if not online:
                connection.deactivate_api()
            outcome = connection.streams.get().result()
            roots = connection.root_streams
            anomalies = connection.registry.anomalies

        if not outcome.data:
            source = "API" if online else "cache"
            console.print(f"[yellow]No streams found in {source}[/yellow]")
            return

        console.print(build_stream_tree(roots))
        console.print(
            f"\n[dim]{len(outcome.data)} stream(s) from {outcome.source.value}[/dim]"
        )

        if anomalies:
            console.print(f"\n[yellow]Not in tree ({len(anomalies)}):[/yellow]")
            for anomaly in anomalies:
                console.print(f"  • {anomaly}")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
