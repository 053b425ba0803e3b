# src/dump2parquet/cli.py
from __future__ import annotations

import logging
from contextlib import nullcontext
from pathlib import Path
from typing import Optional

import click

from .core.config import feature_enabled
from .core.logs import configure_logging
from .pipeline.anomalies import AnomalySink
from .pipeline.api import ConvertConfig, DumpPipeline, summary_to_dict
from .pipeline.errors import DumpError
from .pipeline.progress import NullProgress, TqdmProgress
from .pipeline.sources import open_dump
from .pipeline.timestamps import resolve_timezone

logger = logging.getLogger("dump2parquet")


def _validate_timezone(ctx: click.Context, param: click.Parameter, value: str) -> str:
    try:
        resolve_timezone(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return value


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("input", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output", "-o",
    default=".",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (created if missing)",
)
@click.option(
    "--timezone", "tz_name",
    default="UTC",
    show_default=True,
    callback=_validate_timezone,
    help="Time zone the dump's DATETIME/TIMESTAMP values are expressed in",
)
@click.option(
    "--skip-unparseable",
    is_flag=True,
    help="Log and drop statements the parser rejects instead of aborting "
    "(also DUMP2PARQUET_FEATURE_PARSER_SKIP_UNPARSEABLE=1)",
)
@click.option("--no-progress", is_flag=True, help="Do not draw the row progress bar")
@click.option("--verbose", "-v", count=True, help="-v for debug logs, -vv to include sqlglot")
def main(
    input: Optional[Path],
    output: Path,
    tz_name: str,
    skip_unparseable: bool,
    no_progress: bool,
    verbose: int,
) -> None:
    """Parse a MySQL dump and write one parquet file per table.

    INPUT is a .sql or .sql.gz file; standard input is read when omitted.
    """
    configure_logging(verbose)
    skip_unparseable = skip_unparseable or feature_enabled("feature.parser.skip_unparseable")

    cfg = ConvertConfig(output_dir=output, timezone=tz_name, skip_unparseable=skip_unparseable)
    sink = AnomalySink()
    progress = NullProgress() if no_progress else TqdmProgress()
    pipeline = DumpPipeline(cfg, sink=sink, progress=progress)

    try:
        if input is not None:
            source = open_dump(input)
        else:
            source = nullcontext(click.get_text_stream("stdin", encoding="utf-8"))
        with source as stream:
            summary = pipeline.run(stream)
    except DumpError as e:
        logger.error("%s: %s", e.code, e)
        raise click.ClickException(str(e)) from e

    logger.info(
        "Wrote %d row(s) in %d table(s) to %s in %d ms",
        summary.rows_written, len(summary.tables), output, summary.wall_ms,
    )
    logger.debug("Summary: %s", summary_to_dict(summary))
    logger.debug("Anomaly counters: %s", sink.counters())
    for anomaly in sink.drain():
        logger.debug("Anomaly: %s", anomaly.to_dict())
    logger.debug("Timers: %s", sink.timer_histograms())


if __name__ == "__main__":  # pragma: no cover
    main()
