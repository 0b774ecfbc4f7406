"""Main CLI entry point for productcache.

Provides command-line inspection and maintenance of a product cache directory.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from productcache.cache import CacheConfig, CacheManager

# Global console for Rich output
console = Console()


def find_cache_dir(ctx_cache_dir: Optional[str] = None) -> Path:
    """Find cache directory from multiple sources.

    Priority:
    1. Explicit --cache-dir/-C flag
    2. PRODUCTCACHE_DIR environment variable
    3. Default ~/.productcache

    Args:
        ctx_cache_dir: Cache directory from CLI context

    Returns:
        Path to cache directory

    Raises:
        click.ClickException: If an explicitly given directory does not exist
    """
    if ctx_cache_dir:
        path = Path(ctx_cache_dir).expanduser()
        if path.exists():
            return path
        raise click.ClickException(f"Cache directory not found: {ctx_cache_dir}")

    env_dir = os.environ.get("PRODUCTCACHE_DIR")
    if env_dir:
        path = Path(env_dir).expanduser()
        if path.exists():
            return path
        raise click.ClickException(
            f"Cache directory not found (from PRODUCTCACHE_DIR): {env_dir}"
        )

    return CacheConfig().cache_dir


def open_manager(ctx) -> CacheManager:
    """Create a cache manager for the directory selected on the command line.

    Settings come from the directory's config.json when present, else from
    the PRODUCTCACHE_* environment variables.
    """
    return CacheManager(CacheConfig.for_directory(find_cache_dir(ctx.obj.get("cache_dir"))))


def format_size(size_bytes: int) -> str:
    """Human readable byte count."""
    size = float(size_bytes or 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


@click.group()
@click.option(
    "--cache-dir",
    "-C",
    type=click.Path(),
    help="Path to the cache directory (default: PRODUCTCACHE_DIR env var or ~/.productcache)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, cache_dir, verbose):
    """productcache CLI - Inspect and maintain a product cache directory.

    Use --cache-dir/-C to specify the directory, or set PRODUCTCACHE_DIR.
    """
    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s"
        )


@cli.command("info")
@click.pass_context
def info(ctx):
    """Show cache size, quota and entry counts.

    Example:
        productcache -C /data/cache info
    """
    try:
        manager = open_manager(ctx)
        stats = manager.get_stats()

        table = Table(title="Product cache")
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")

        table.add_row("Directory", stats["cache_dir"])
        table.add_row("Entries", str(stats["total_items"]))
        table.add_row("Total size", format_size(stats["total_size_bytes"]))
        table.add_row("Quota", format_size(stats["max_dir_size_bytes"]))
        table.add_row("Eviction fraction", f"{stats['eviction_fraction']:.0%}")

        console.print(table)

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("configure")
@click.option("--max-size-mb", type=int, default=None, help="Quota in megabytes")
@click.option(
    "--eviction-fraction",
    type=float,
    default=None,
    help="Share of the quota freed by an eviction pass",
)
@click.pass_context
def configure(ctx, max_size_mb, eviction_fraction):
    """Save quota settings to the cache directory's config.json.

    Example:
        productcache configure --max-size-mb 2048 --eviction-fraction 0.1
    """
    try:
        config = CacheConfig.for_directory(find_cache_dir(ctx.obj.get("cache_dir")))
        if max_size_mb is not None:
            config.max_dir_size_mb = max_size_mb
        if eviction_fraction is not None:
            config.eviction_fraction = eviction_fraction
        # Re-run range checks on the updated values
        config = CacheConfig(**vars(config))
        config.save()

        console.print(f"[green]✓[/green] Saved settings to {config.config_path}")
        console.print(f"  Quota: {config.max_dir_size_mb} MB")
        console.print(f"  Eviction fraction: {config.eviction_fraction:.0%}")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("list")
@click.option("--limit", "-n", type=int, default=None, help="Show at most N entries")
@click.pass_context
def list_entries(ctx, limit):
    """List cached entries, least recently touched first.

    Example:
        productcache list
        productcache list -n 20
    """
    try:
        manager = open_manager(ctx)
        entries = manager.list_entries()

        if not entries:
            console.print("[yellow]No cached entries found[/yellow]")
            return

        shown = entries[:limit] if limit else entries

        table = Table(title=f"Cached entries ({len(entries)})")
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Size", justify="right", style="green")
        table.add_column("Last touched", style="blue")
        table.add_column("Product", style="magenta")

        for entry in shown:
            touched = datetime.fromtimestamp(entry.last_touched_at).strftime(
                "%Y-%m-%d %H:%M"
            )
            table.add_row(
                entry.key,
                format_size(entry.size_bytes),
                touched,
                "present" if entry.has_product else "[red]missing[/red]",
            )

        console.print(table)
        if len(shown) < len(entries):
            console.print(f"  ... and {len(entries) - len(shown)} more")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("evict")
@click.option(
    "--max-size-mb",
    type=int,
    default=None,
    help="Quota to enforce for this pass, in megabytes",
)
@click.pass_context
def evict(ctx, max_size_mb):
    """Run an eviction pass against the quota.

    Example:
        productcache evict
        productcache evict --max-size-mb 2048
    """
    try:
        manager = open_manager(ctx)
        if max_size_mb is not None:
            manager.set_cache_dir_max_size_mb(max_size_mb)

        evicted = manager.evict()

        if not evicted:
            console.print("[green]✓[/green] Cache is within quota, nothing evicted")
            return

        freed = sum(entry.size_bytes or 0 for entry in evicted)
        console.print(
            f"[green]✓[/green] Evicted {len(evicted)} entries ({format_size(freed)})"
        )
        for entry in evicted[:10]:
            console.print(f"  - {entry.key}")
        if len(evicted) > 10:
            console.print(f"  ... and {len(evicted) - 10} more")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("remove")
@click.argument("key")
@click.pass_context
def remove(ctx, key):
    """Remove one entry and its product file.

    Example:
        productcache remove 4f1c2a
    """
    try:
        manager = open_manager(ctx)
        if not manager.remove(key):
            console.print(f"[red]✗[/red] Entry '{key}' not found", style="red")
            sys.exit(1)

        console.print(f"[green]✓[/green] Removed entry '{key}'")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("reconcile")
@click.pass_context
def reconcile(ctx):
    """Drop entries whose product files were deleted outside the cache.

    Example:
        productcache reconcile
    """
    try:
        manager = open_manager(ctx)
        dropped = manager.reconcile()
        console.print(f"[green]✓[/green] Dropped {dropped} entries with missing products")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def clear(ctx, yes):
    """Remove every cached entry and product file.

    Example:
        productcache clear -y
    """
    try:
        manager = open_manager(ctx)

        if not yes:
            if not click.confirm(f"Remove all entries from {manager.cache_dir}?"):
                console.print("[yellow]Cancelled[/yellow]")
                return

        count = len(manager.list_entries())
        manager.clear_all()
        console.print(f"[green]✓[/green] Removed {count} entries")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
