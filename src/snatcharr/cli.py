"""Command-line interface for snatcharr."""

from __future__ import annotations

import asyncio
import json
import os
from enum import Enum
from pathlib import Path  # noqa: TC003 - needed at runtime for typer
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from snatcharr.catalog import InMemoryCatalog
from snatcharr.clients.registry import default_registry
from snatcharr.config import Config, ConfigurationError
from snatcharr.health import HealthCache
from snatcharr.logging_config import configure_logging, parse_log_level
from snatcharr.matcher import MatchOptions, find_match
from snatcharr.parser import ReleaseDescriptor, parse

if TYPE_CHECKING:
    from snatcharr.health import HealthRecord
    from snatcharr.matcher import MatchResult

app = typer.Typer(
    name="snatcharr",
    help="Parse release names, match them against a library and drive download clients.",
    no_args_is_help=True,
)
clients_app = typer.Typer(help="Inspect configured download clients.")
app.add_typer(clients_app, name="clients")

console = Console()
error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Output format options."""

    JSON = "json"
    TABLE = "table"
    SIMPLE = "simple"


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2, default=str), markup=False, highlight=False, soft_wrap=True
    )


def _resolve_log_level(cli_level: str | None) -> str:
    """Pick the log level: CLI flag, then environment, then config file, then info."""
    if cli_level:
        return cli_level
    env_level = os.environ.get("SNATCHARR_LOG_LEVEL")
    if env_level:
        return env_level
    try:
        return Config.load().logging.level
    except ConfigurationError:
        return "info"


@app.callback()
def main(
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-l",
            help="Logging level (debug, info, warning, error, critical).",
        ),
    ] = None,
) -> None:
    """Parse release names, match them against a library and drive download clients."""
    level = _resolve_log_level(log_level)
    try:
        parse_log_level(level)
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None
    configure_logging(level.lower())


# --- parse ---


def format_descriptor_table(descriptor: ReleaseDescriptor) -> Table:
    """Format a parsed release as a rich table."""
    table = Table(title=f"Release: {escape(descriptor.raw_title)}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in descriptor.to_dict().items():
        if key == "raw_title" or value in (None, [], ()):
            continue
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items() if v is not None)
            if not value:
                continue
        elif isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        table.add_row(key.replace("_", " ").title(), escape(str(value)))
    return table


def format_descriptor_simple(descriptor: ReleaseDescriptor) -> str:
    """Format a parsed release as one line of text."""
    parts = [f"{descriptor.type.value}: {descriptor.title}"]
    if descriptor.year:
        parts.append(f"({descriptor.year})")
    if descriptor.season is not None:
        marker = f"S{descriptor.season:02d}"
        if descriptor.episodes:
            marker += "".join(f"E{e:02d}" for e in descriptor.episodes)
        parts.append(marker)
    parts.extend(p for p in (descriptor.quality, descriptor.source, descriptor.codec) if p)
    if descriptor.edition:
        parts.append(descriptor.edition)
    if descriptor.release_group:
        parts.append(f"-{descriptor.release_group}")
    return " ".join(parts)


@app.command("parse")
def parse_cmd(
    title: Annotated[str, typer.Argument(help="Release name to parse")],
    output_format: Annotated[
        OutputFormat, typer.Option("--format", "-f", help="Output format")
    ] = OutputFormat.TABLE,
) -> None:
    """Parse a release name into its structured fields.

    Example:
        snatcharr parse "Blade.Runner.1982.Final.Cut.1080p.BluRay.x264-GROUP"
    """
    descriptor = parse(title)
    if output_format == OutputFormat.JSON:
        _print_json(descriptor.to_dict())
    elif output_format == OutputFormat.TABLE:
        console.print(format_descriptor_table(descriptor))
    else:
        console.print(format_descriptor_simple(descriptor), markup=False, highlight=False)


# --- match ---


def _match_to_dict(match: MatchResult) -> dict[str, Any]:
    entry = match.catalog_entry
    data: dict[str, Any] = {
        "catalog_entry_id": entry.id,
        "title": entry.title,
        "year": entry.year,
        "confidence": round(match.confidence, 4),
        "match_reason": match.match_reason,
    }
    if match.episode is not None:
        data["episode"] = {
            "id": match.episode.id,
            "season": match.episode.season_number,
            "episode": match.episode.episode_number,
            "title": match.episode.title,
        }
    return data


@app.command("match")
def match_cmd(
    title: Annotated[str, typer.Argument(help="Release name to match")],
    catalog: Annotated[
        Path, typer.Option("--catalog", "-c", help="JSON library export to match against")
    ],
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", "-t", help="Minimum confidence (default from config)"),
    ] = None,
    include_unmonitored: Annotated[
        bool, typer.Option("--all", help="Also consider unmonitored library items")
    ] = False,
    require_id: Annotated[
        bool, typer.Option("--require-id", help="Only accept TMDB/IMDB ID matches")
    ] = False,
    tmdb_id: Annotated[int | None, typer.Option("--tmdb-id", help="Known TMDB ID")] = None,
    imdb_id: Annotated[str | None, typer.Option("--imdb-id", help="Known IMDB ID")] = None,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", "-f", help="Output format")
    ] = OutputFormat.SIMPLE,
) -> None:
    """Match a release name against a library export.

    Exits 0 on a match, 1 when nothing matches and 2 on bad input.

    Example:
        snatcharr match "The.Matrix.1999.1080p.BluRay.x264-GROUP" --catalog library.json
    """
    try:
        library = InMemoryCatalog.from_file(catalog)
    except FileNotFoundError:
        error_console.print(f"[red]File not found:[/red] {escape(str(catalog))}")
        raise typer.Exit(2) from None
    except ValueError as e:
        error_console.print(f"[red]Invalid catalog:[/red] {escape(str(e))}")
        raise typer.Exit(2) from e

    if threshold is None:
        try:
            threshold = Config.load().matching.confidence_threshold
        except ConfigurationError as e:
            error_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
            raise typer.Exit(2) from e

    options = MatchOptions(
        confidence_threshold=threshold,
        monitored_only=not include_unmonitored,
        require_id_match=require_id,
    )
    result = find_match(parse(title), library, options, tmdb_id=tmdb_id, imdb_id=imdb_id)

    failure = result.failure
    if failure is not None:
        if output_format == OutputFormat.JSON:
            _print_json({"matched": False, "error": failure.kind.value, **failure.details})
        else:
            error_console.print(f"[yellow]No match:[/yellow] {escape(failure.message)}")
        raise typer.Exit(1)

    match = result.unwrap()
    if output_format == OutputFormat.JSON:
        _print_json({"matched": True, **_match_to_dict(match)})
    elif output_format == OutputFormat.TABLE:
        table = Table(title="Match")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        for key, value in _match_to_dict(match).items():
            table.add_row(key.replace("_", " ").title(), escape(str(value)))
        console.print(table)
    else:
        console.print(match.match_reason, markup=False, highlight=False)


# --- clients ---


def _load_config() -> Config:
    try:
        return Config.load()
    except ConfigurationError as e:
        error_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(2) from e


@clients_app.command("list")
def clients_list(
    output_format: Annotated[
        OutputFormat, typer.Option("--format", "-f", help="Output format")
    ] = OutputFormat.TABLE,
) -> None:
    """List configured download clients."""
    config = _load_config()

    if not config.clients:
        console.print("[dim]No download clients configured[/dim]")
        raise typer.Exit(0)

    if output_format == OutputFormat.JSON:
        _print_json(
            [
                {
                    "id": c.id,
                    "name": c.name,
                    "type": c.type.value,
                    "url": c.base_url,
                    "priority": c.priority,
                    "enabled": c.enabled,
                }
                for c in config.clients
            ]
        )
    elif output_format == OutputFormat.TABLE:
        table = Table(title="Download Clients")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("URL")
        table.add_column("Priority", justify="right")
        table.add_column("Enabled")
        for c in config.clients:
            table.add_row(
                escape(c.id),
                escape(c.name),
                c.type.value,
                escape(c.base_url),
                str(c.priority),
                "[green]Yes[/green]" if c.enabled else "[dim]No[/dim]",
            )
        console.print(table)
    else:
        for c in config.clients:
            state = "enabled" if c.enabled else "disabled"
            console.print(
                f"{c.name} ({c.type.value}) {c.base_url} [{state}]",
                markup=False,
                highlight=False,
            )


@clients_app.command("test")
def clients_test(
    name: Annotated[str, typer.Argument(help="Client id or name")],
) -> None:
    """Test the connection to one download client.

    Exits 0 when the client answers, 1 when it does not and 2 on
    configuration errors.
    """
    config = _load_config()
    try:
        client_config = config.get_client(name)
        client = default_registry().bind([client_config])[0]
    except ConfigurationError as e:
        error_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(2) from e

    result = asyncio.run(client.test_connection())
    failure = result.failure
    if failure is not None:
        error_console.print(
            f"[red]{escape(client.name)} failed:[/red] {escape(failure.kind.value)}: "
            f"{escape(failure.message)}"
        )
        raise typer.Exit(1)

    details = ", ".join(f"{k}={v}" for k, v in (result.value or {}).items() if v is not None)
    console.print(f"[green]{escape(client.name)} OK[/green] {escape(details)}")


# --- health ---


async def _check_everything(config: Config, force: bool) -> list[tuple[str, str, HealthRecord]]:
    clients = default_registry().bind(config.clients)
    caches = [
        ("client", HealthCache.for_clients(clients, config.health)),
        ("indexer", HealthCache.for_indexers(config.indexers, config.health)),
    ]
    for _, cache in caches:
        cache.initialize()
    checked = await asyncio.gather(*(cache.check_all(force=force) for _, cache in caches))
    rows = []
    for (kind, cache), records in zip(caches, checked, strict=True):
        names = {t.id: t.name for t in cache.targets()}
        rows.extend((kind, names[target_id], record) for target_id, record in records.items())
    return rows


@app.command()
def health(
    force: Annotated[
        bool, typer.Option("--force", help="Bypass cached results and check live")
    ] = False,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", "-f", help="Output format")
    ] = OutputFormat.TABLE,
) -> None:
    """Check every enabled download client and indexer.

    Exits 0 when all are healthy and 1 otherwise.
    """
    config = _load_config()
    rows = asyncio.run(_check_everything(config, force))

    if not rows:
        console.print("[dim]No enabled clients or indexers configured[/dim]")
        raise typer.Exit(0)

    if output_format == OutputFormat.JSON:
        _print_json([{"kind": kind, "name": name, **r.to_dict()} for kind, name, r in rows])
    elif output_format == OutputFormat.TABLE:
        table = Table(title="Health")
        table.add_column("Kind", style="cyan")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Detail")
        for kind, name, record in rows:
            status = "[green]healthy[/green]" if record.is_healthy else "[red]unhealthy[/red]"
            detail = record.error or ", ".join(f"{k}={v}" for k, v in record.details.items())
            table.add_row(kind, escape(record.target_id), escape(name), status, escape(detail))
        console.print(table)
    else:
        for kind, name, record in rows:
            line = f"{kind} {name}: {record.status.value}"
            if record.error:
                line += f" ({record.error})"
            console.print(line, markup=False, highlight=False)

    raise typer.Exit(0 if all(r.is_healthy for _, _, r in rows) else 1)


@app.command()
def version() -> None:
    """Show version information."""
    from snatcharr import __version__

    console.print(f"snatcharr version {__version__}")


if __name__ == "__main__":
    app()
