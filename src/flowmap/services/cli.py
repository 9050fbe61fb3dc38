"""flowmap CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from flowmap import __version__
from flowmap.errors import FlowmapError

if TYPE_CHECKING:
    from flowmap.graph.model import Index
    from flowmap.infrastructure.indexer import Summary

_PROJECT_PATH = click.Path(file_okay=False, path_type=Path)


@click.group()
@click.version_option(version=__version__, prog_name="flowmap")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """flowmap - incremental source graph indexer."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("flowmap").setLevel(level)


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _delta(added: dict[str, int], removed: dict[str, int], kind: str) -> str:
    plus, minus = added.get(kind, 0), removed.get(kind, 0)
    if not plus and not minus:
        return ""
    return f"+{plus} / -{minus}"


def _print_summary(summary: Summary, counts: dict[str, int], *, quiet: bool) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    if summary.nothing_changed:
        console.print("No changes detected. Index is up to date.")
    else:
        console.print(
            f"Files: [bold]{summary.files}[/]  new {summary.new}, modified {summary.modified}, "
            f"unchanged {summary.unchanged}, deleted {summary.deleted}"
            + ("  [dim](full re-extraction)[/]" if summary.full else "")
        )

    if not quiet:
        table = Table(title="Elements", show_header=True, box=None, padding=(0, 1))
        table.add_column("kind", style="cyan")
        table.add_column("count", justify="right")
        table.add_column("change", style="dim")
        for kind, count in counts.items():
            table.add_row(
                kind, str(count), _delta(summary.elements_added, summary.elements_removed, kind)
            )
        console.print(table)
        console.print(
            f"Edges: [bold]{summary.edges}[/] (+{summary.edges_added} / -{summary.edges_removed}, "
            f"{summary.cross_file_edges} cross-file)"
        )

    if summary.recovered or summary.dropped or summary.stale_references:
        console.print(
            f"Recovered {len(summary.recovered)}, dropped {len(summary.dropped)}, "
            f"stale {len(summary.stale_references)}"
        )
    click.echo(f"Index: {summary.store_path}")
    for path in summary.skipped:
        click.echo(f"  [skip] {path}")
    for path in summary.failed:
        click.echo(f"  [fail] {path}")
    if summary.warnings and not quiet:
        click.echo("")
        for warn in summary.warnings:
            click.echo(f"  [warn] {warn}")


@main.command()
@click.argument("path", type=_PROJECT_PATH, default=".")
@click.option("--json", "output_json", is_flag=True, help="Output the run summary as JSON.")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Extraction threads.")
@click.option("--full", is_flag=True, default=False, help="Re-extract every file.")
@click.pass_context
def index(
    ctx: click.Context, *, path: Path, output_json: bool, workers: int | None, full: bool
) -> None:
    """Index PATH (default: current directory) and update .flowmap/index.json.

    Only files that changed since the last run are re-extracted.  Use
    --full to re-extract everything.
    """
    from flowmap.infrastructure import index_store
    from flowmap.infrastructure.indexer import Indexer

    try:
        summary = Indexer(workers=workers, full=full).run(path)
    except FlowmapError as exc:
        _fail(exc)
        return

    if output_json:
        click.echo(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
        return

    counts = index_store.load(path).graph.metadata()["counts"]
    _print_summary(summary, counts, quiet=bool(ctx.obj.get("quiet")))


def _load_existing(path: Path) -> Index:
    from flowmap.infrastructure import index_store

    store = index_store.store_path(path)
    if not store.is_file():
        click.echo(f"Error: no index at {store}. Run `flowmap index` first.", err=True)
        sys.exit(1)
    return index_store.load(path)


@main.command()
@click.argument("path", type=_PROJECT_PATH, default=".")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def show(*, path: Path, output_json: bool) -> None:
    """Show metadata of the persisted graph for PATH."""
    from flowmap.graph.model import to_iso

    idx = _load_existing(path)
    meta = idx.graph.metadata()
    last_run = to_iso(idx.last_run_at) if idx.last_run_at else "never"

    if output_json:
        data = {
            "projectRoot": idx.project_root,
            "lastRunAt": last_run,
            "files": len(idx.files),
            **meta,
        }
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return

    from rich.console import Console
    from rich.panel import Panel
    from rich.table import Table

    console = Console()
    console.print(Panel(
        f"Last run: {last_run}",
        title=f"flowmap v{__version__}",
        border_style="blue",
    ))
    console.print(
        f"  Files: [bold]{len(idx.files)}[/]   Source files: [bold]{meta['sourceFileCount']}[/]   "
        f"Edges: [bold]{meta['edgeCount']}[/]"
    )
    table = Table(title="By Kind", show_header=False, box=None, padding=(0, 1))
    table.add_column("kind", style="cyan")
    table.add_column("count", justify="right")
    for kind, count in meta["counts"].items():
        table.add_row(kind, str(count))
    console.print(table)


@main.command()
@click.argument("path", type=_PROJECT_PATH, default=".")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write to this file instead of stdout.",
)
def export(*, path: Path, output: Path | None) -> None:
    """Export the graph snapshot of PATH as JSON."""
    idx = _load_existing(path)
    text = json.dumps(idx.graph.to_dict(), sort_keys=True, indent=2, ensure_ascii=False) + "\n"
    if output is None:
        click.echo(text, nl=False)
        return
    try:
        output.write_text(text, encoding="utf-8")
    except OSError as exc:
        _fail(exc)
        return
    click.echo(f"Wrote {output}", err=True)
