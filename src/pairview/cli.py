"""Click-based CLI for pairview.

Thin wrapper around library modules. Commands parse options, call into the
package and render the result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from pairview.core.models import ALLOWED_SEPARATORS

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from pairview.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _resolve_csv_format(config, separator, price_column, volume_column, header):
    """Overlay 1-based CLI column options onto the configured CsvFormat."""
    from pairview.core import CsvFormat

    base = config.provider.csv
    if separator is None and price_column is None and volume_column is None and header is None:
        return base
    return CsvFormat.from_external(
        separator=separator if separator is not None else base.separator,
        price_column=price_column if price_column is not None else base.price_index + 1,
        volume_column=volume_column if volume_column is not None else base.volume_index + 1,
        has_header=header if header is not None else base.has_header,
        timestamp_column=(
            base.timestamp_index + 1 if base.timestamp_index is not None else None
        ),
        timestamp_format=base.timestamp_format,
    )


def _resolve_provider(config, source, root, csv_format, connection):
    from pairview.core import ProviderKind
    from pairview.providers import DatabaseProvider, FileProvider

    kind = ProviderKind(source) if source else config.provider.kind
    if kind == ProviderKind.DATABASE:
        return DatabaseProvider(connection or config.storage.connection)
    return FileProvider(root or config.provider.root, csv_format)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


_csv_options = [
    click.option("--root", "-r", type=str, default=None, help="Market data directory."),
    click.option(
        "--separator",
        type=click.Choice(ALLOWED_SEPARATORS),
        default=None,
        help="Column separator.",
    ),
    click.option("--price-column", type=int, default=None, help="Price column (1-based)."),
    click.option("--volume-column", type=int, default=None, help="Volume column (1-based)."),
    click.option("--header/--no-header", default=None, help="First line is a header."),
]


def csv_options(func):
    for option in reversed(_csv_options):
        func = option(func)
    return func


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PAIRVIEW_CONFIG",
    default=None,
    help="Path to pairview.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="pairview")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """pairview: pair series synthesis over file or database market data."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# import
# ---------------------------------------------------------------------------


@cli.command("import")
@csv_options
@click.option("--connection", type=str, default=None, help="Store connection descriptor.")
@click.pass_context
def import_cmd(
    ctx: click.Context,
    root: str | None,
    separator: str | None,
    price_column: int | None,
    volume_column: int | None,
    header: bool | None,
    connection: str | None,
) -> None:
    """Load every market data file into the store."""
    from pairview.core import PairViewError, require_connection
    from pairview.importing import ImportPipeline
    from pairview.providers import FileProvider
    from pairview.storage import SqliteInstrumentStore

    try:
        config = _load_config(ctx)
        csv_format = _resolve_csv_format(config, separator, price_column, volume_column, header)
        csv_format.ensure_valid()
        target = require_connection(
            connection if connection is not None else config.storage.connection
        )
    except PairViewError as e:
        _fail(str(e))

    provider = FileProvider(root or config.provider.root, csv_format)

    async def _run():
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Importing instruments...", total=100)
            pipeline = ImportPipeline(
                on_progress=lambda pct: progress.update(task, completed=pct),
            )
            async with SqliteInstrumentStore(target) as store:
                return await pipeline.run(provider, store)

    try:
        notice = _run_async(_run())
    except PairViewError as e:
        _fail(str(e))

    console.print(notice.message)
    console.print(
        f"  {notice.processed}/{notice.total} instruments  |  "
        f"{notice.inserted} inserted  |  {notice.appended} appended"
    )
    if provider.skipped_rows:
        console.print(f"[yellow]  {provider.skipped_rows} malformed rows skipped[/yellow]")
    if not notice.succeeded:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# synth
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("code_a")
@click.argument("code_b")
@click.option(
    "--transform",
    "-t",
    type=click.Choice(["Ratio", "RatioWithBeta", "Spread", "SpreadWithBeta"], case_sensitive=False),
    default=None,
    help="Pair transform (default from config).",
)
@click.option("--beta", type=float, default=None, help="Beta coefficient for *WithBeta.")
@click.option(
    "--source",
    type=click.Choice(["file", "database"]),
    default=None,
    help="Data provider (default from config).",
)
@csv_options
@click.option("--connection", type=str, default=None, help="Store connection descriptor.")
@click.option("--limit", "-n", type=int, default=20, help="Rows to show (0 = all).")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def synth(
    ctx: click.Context,
    code_a: str,
    code_b: str,
    transform: str | None,
    beta: float | None,
    source: str | None,
    root: str | None,
    separator: str | None,
    price_column: int | None,
    volume_column: int | None,
    header: bool | None,
    connection: str | None,
    limit: int,
    output_format: str,
) -> None:
    """Synthesize the pair series CODE_A (x) / CODE_B (y)."""
    from pairview.core import PairConfig, PairViewError, TransformKind
    from pairview.pairs import PairsContainer

    try:
        config = _load_config(ctx)
        csv_format = _resolve_csv_format(config, separator, price_column, volume_column, header)
        provider = _resolve_provider(config, source, root, csv_format, connection)
    except PairViewError as e:
        _fail(str(e))

    pair_config = PairConfig(
        transform=TransformKind(transform) if transform else config.pair.transform,
        beta=beta if beta is not None else config.pair.beta,
    )

    async def _run():
        container = PairsContainer(provider, pair_config, config.load_values_count)
        await container.refresh()
        return await container.pair(code_a, code_b)

    try:
        result = _run_async(_run())
    except PairViewError as e:
        _fail(str(e))
    except KeyError as e:
        _fail(str(e.args[0]))

    if output_format == "json":
        _output_synth_json(result)
    else:
        _output_synth_table(result, limit)


def _output_synth_table(result, limit: int) -> None:
    """Render a synthesis result as Rich tables."""
    summary = Table(title=f"Pair {result.series.code}")
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Transform", str(result.transform))
    summary.add_row("r", f"{result.r_value:.4f}")
    summary.add_row("Branch", result.branch)
    summary.add_row("Beta", f"{result.beta:.4f}" if result.beta is not None else "-")
    summary.add_row("Aligned points", str(result.aligned))
    summary.add_row("Omitted points", str(result.skipped))
    console.print(summary)

    samples = result.series.samples
    if limit > 0:
        samples = samples[-limit:]
    table = Table(title="Series")
    table.add_column("Timestamp")
    table.add_column("Value", justify="right")
    table.add_column("Volume", justify="right")
    for s in samples:
        table.add_row(s.timestamp.isoformat(sep=" "), f"{s.price:.6f}", f"{s.volume:,.0f}")
    console.print(table)


def _output_synth_json(result) -> None:
    """Write a synthesis result as JSON to stdout."""
    output = {
        "code": result.series.code,
        "transform": str(result.transform),
        "r_value": result.r_value,
        "branch": result.branch,
        "beta": result.beta,
        "aligned": result.aligned,
        "skipped": result.skipped,
        "samples": [s.model_dump(mode="json") for s in result.series.samples],
    }
    click.echo(json.dumps(output, indent=2, default=str))


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--refresh-interval", type=click.IntRange(min=1), default=None, help="Refresh interval (seconds)."
)
@click.option(
    "--persist-interval", type=click.IntRange(min=1), default=None, help="Persist interval (seconds)."
)
@click.option(
    "--duration",
    type=float,
    default=0,
    help="Stop after this many seconds (0 = run until interrupted).",
)
@click.option(
    "--source",
    type=click.Choice(["file", "database"]),
    default=None,
    help="Data provider (default from config).",
)
@click.pass_context
def watch(
    ctx: click.Context,
    refresh_interval: int | None,
    persist_interval: int | None,
    duration: float,
    source: str | None,
) -> None:
    """Keep pair state fresh and persisted on two background timers."""
    from pairview.core import PairViewError
    from pairview.pairs import PairsContainer
    from pairview.scheduling import Scheduler
    from pairview.storage import SqliteInstrumentStore

    try:
        config = _load_config(ctx)
        provider = _resolve_provider(config, source, None, config.provider.csv, None)
    except PairViewError as e:
        _fail(str(e))

    schedule = config.schedule.model_copy(
        update={
            k: v
            for k, v in (
                ("refresh_interval", refresh_interval),
                ("persist_interval", persist_interval),
            )
            if v is not None
        }
    )

    async def _run():
        container = PairsContainer(provider, config.pair, config.load_values_count)
        async with SqliteInstrumentStore(config.storage) as store:
            await container.refresh()
            scheduler = Scheduler(container, store, schedule)
            await scheduler.start()
            console.print(
                f"Watching {len(await container.codes())} instruments "
                f"(refresh {schedule.refresh_interval}s, persist {schedule.persist_interval}s)"
            )
            try:
                if duration > 0:
                    await asyncio.sleep(duration)
                else:
                    await asyncio.Event().wait()
            finally:
                await scheduler.stop()
            return scheduler

    try:
        scheduler = _run_async(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted.[/yellow]")
        return
    except PairViewError as e:
        _fail(str(e))

    for line in (scheduler.refresh_line, scheduler.persist_line):
        console.print(
            f"  {line.name}: {line.stats.fires} fires, {line.stats.failures} failures"
        )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show persisted instruments and history lengths."""
    from pairview.core import PairViewError
    from pairview.storage import SqliteInstrumentStore

    async def _run():
        config = _load_config(ctx)
        async with SqliteInstrumentStore(config.storage) as store:
            stats = await _gather_stats(store)

        table = Table(title="pairview Status")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")

        table.add_row("Store", config.storage.connection)
        table.add_row("Provider", str(config.provider.kind))
        table.add_section()
        table.add_row("Instruments", str(len(stats)))
        table.add_row("Total samples", str(sum(stats.values())))
        if stats:
            table.add_section()
            for code, length in stats.items():
                table.add_row(f"  {code}", str(length))

        console.print(table)

    try:
        _run_async(_run())
    except PairViewError as e:
        _fail(str(e))


async def _gather_stats(store) -> dict[str, int]:
    """History length per persisted instrument."""
    return {code: await store.history_length(code) for code in await store.list_codes()}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
