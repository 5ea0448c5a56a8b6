"""
Command-line interface for the Location Timeline package.

This module provides commands for ingesting raw samples, uploading them,
rebuilding days and inspecting the derived timeline.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import click

from .data import SampleDataLoader
from .exceptions import LocationTimelineError
from .pipeline import Pipeline
from .services import TimelineService
from .settings import Settings, load_settings

T = TypeVar("T")


# Configure basic logging
def configure_logging(verbose: bool = False) -> None:
    """Configure logging with appropriate level."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def _with_service(
    settings: Settings, action: Callable[[TimelineService], Awaitable[T]]
) -> T:
    """Run an async action against a service and close it afterwards."""

    async def _run() -> T:
        service = TimelineService(settings)
        try:
            return await action(service)
        finally:
            await service.close()

    return asyncio.run(_run())


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


config_option = click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
verbose_option = click.option(
    "--verbose/--quiet",
    default=False,
    help="Enable verbose output",
)
user_option = click.option("--user", "user_id", required=True, help="User id")
date_option = click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    required=True,
    help="Local day (YYYY-MM-DD)",
)
json_option = click.option(
    "--json/--text", "as_json", default=False, help="Print JSON instead of text"
)


@click.group()
def main():
    """
    Build a location timeline from raw phone samples.

    Raw location, screen-usage and health samples are segmented into
    stationary and traveling periods, grouped into location blocks, verified
    against planned events and mined for recurring patterns.
    """


@main.command()
@config_option
@verbose_option
@user_option
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def ingest(config: Path | None, verbose: bool, user_id: str, path: Path) -> None:
    """Validate a JSON/CSV batch of raw samples and queue it for upload."""
    configure_logging(verbose)
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        records = SampleDataLoader().load_sample_records(path)
        service = TimelineService(settings)
        result = service.ingest(user_id, records)
        click.echo(
            f"Ingested {result.ingested} samples "
            f"({result.rejected} rejected, {result.duplicates} duplicates)"
        )
    except LocationTimelineError as e:
        logger.error(f"Ingestion failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@verbose_option
@user_option
def flush(config: Path | None, verbose: bool, user_id: str) -> None:
    """Upload pending samples."""
    configure_logging(verbose)
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        result = _with_service(settings, lambda s: s.flush(user_id))
        click.echo(f"Uploaded {result.uploaded} samples, {result.remaining} pending")
        for error in result.errors:
            click.echo(f"  warning: {error}")
    except LocationTimelineError as e:
        logger.error(f"Flush failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@verbose_option
@user_option
@date_option
def reprocess(config: Path | None, verbose: bool, user_id: str, day: datetime) -> None:
    """Rebuild all segments of one day."""
    configure_logging(verbose)
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        result = _with_service(settings, lambda s: s.reprocess_day(user_id, day.date()))
        click.echo(
            f"{result.day}: {result.segments_created} segments, "
            f"{result.places_looked_up} place lookups, "
            f"{result.summaries_generated} summaries (v{result.version})"
        )
        for error in result.errors:
            click.echo(f"  warning: {error}")
    except LocationTimelineError as e:
        logger.error(f"Reprocessing failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@user_option
@date_option
@json_option
def blocks(config: Path | None, user_id: str, day: datetime, as_json: bool) -> None:
    """Show the location blocks of a day."""
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        result = _with_service(settings, lambda s: s.get_blocks(user_id, day.date()))
        if as_json:
            _echo_json([b.model_dump(mode="json") for b in result])
            return

        tz = settings.tz
        click.echo(f"\nLocation Blocks for {day.date()}")
        click.echo("=" * 40)
        for block in result:
            start = block.start.astimezone(tz).strftime("%H:%M")
            end = block.end.astimezone(tz).strftime("%H:%M")
            place = block.label or block.category or "-"
            click.echo(
                f"{start}-{end}  {block.kind.value:<16} {place:<24} "
                f"{block.confidence:.2f}"
            )
    except LocationTimelineError as e:
        logger.error(f"Loading blocks failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@user_option
@date_option
@json_option
def verify(config: Path | None, user_id: str, day: datetime, as_json: bool) -> None:
    """Verify a day's planned events against its blocks."""
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        results = _with_service(settings, lambda s: s.verify(user_id, day.date()))
        if as_json:
            _echo_json([r.model_dump(mode="json") for r in results])
            return
        if not results:
            click.echo("No planned events")
            return
        for result in results:
            click.echo(
                f"{result.event_id:<24} {result.status.value:<22} "
                f"ratio={result.overlap_ratio:.2f} confidence={result.confidence:.2f}"
            )
    except LocationTimelineError as e:
        logger.error(f"Verification failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@user_option
@date_option
@json_option
def anomalies(config: Path | None, user_id: str, day: datetime, as_json: bool) -> None:
    """Compare a day with its weekday's history."""
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        report = _with_service(settings, lambda s: s.anomalies(user_id, day.date()))
        if as_json:
            _echo_json(report.model_dump(mode="json"))
            return
        click.echo(
            f"Anomaly score {report.score:.2f} "
            f"({len(report.anomalies)}/{report.slots_evaluated} slots)"
        )
        for anomaly in report.anomalies:
            click.echo(
                f"  {anomaly.slot_start.strftime('%H:%M')} expected "
                f"{anomaly.expected_category}, was {anomaly.actual_category}"
            )
    except LocationTimelineError as e:
        logger.error(f"Anomaly detection failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@user_option
@date_option
@json_option
def predict(config: Path | None, user_id: str, day: datetime, as_json: bool) -> None:
    """Predict a day's categories from recurring patterns."""
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        predictions = _with_service(settings, lambda s: s.predictions(user_id, day.date()))
        if as_json:
            _echo_json([p.model_dump(mode="json") for p in predictions])
            return
        if not predictions:
            click.echo("Not enough history for predictions")
            return
        for prediction in predictions:
            click.echo(
                f"{prediction.start.strftime('%H:%M')}  {prediction.category:<16} "
                f"{prediction.confidence:.2f}"
            )
    except LocationTimelineError as e:
        logger.error(f"Prediction failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@user_option
@click.option("--confirm", "anchor_id", help="Anchor id to label")
@click.option("--label", help="Confirmed label")
@click.option("--category", help="Confirmed category")
def anchors(
    config: Path | None,
    user_id: str,
    anchor_id: str | None,
    label: str | None,
    category: str | None,
) -> None:
    """List a user's anchors, or confirm one with --confirm and --label."""
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        if anchor_id is not None:
            if not label:
                raise click.UsageError("--confirm requires --label")
            anchor = _with_service(
                settings,
                lambda s: s.confirm_anchor(user_id, anchor_id, label, category),
            )
            click.echo(f"Confirmed {anchor.id} as {anchor.label}")
            return

        service = TimelineService(settings)
        for anchor in service.anchors(user_id):
            click.echo(
                f"{anchor.id}  {anchor.geohash}  {anchor.label or '-':<24} "
                f"{anchor.category or '-':<12} {anchor.provenance.value:<15} "
                f"visits={anchor.visit_count}"
            )
    except LocationTimelineError as e:
        logger.error(f"Anchor command failed: {str(e)}")
        raise click.Abort() from e


@main.command()
@config_option
@verbose_option
@user_option
@click.option(
    "--date",
    "days",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    multiple=True,
    help="Day to rebuild (repeatable); defaults to every day with samples",
)
def run(config: Path | None, verbose: bool, user_id: str, days: tuple[datetime, ...]) -> None:
    """Flush pending samples and rebuild the timeline."""
    configure_logging(verbose)
    logger = logging.getLogger(__name__)
    try:
        settings = load_settings(config)
        pipeline = Pipeline(settings)
        upload, results = pipeline.run(user_id, [d.date() for d in days] or None)
        click.echo(
            f"Uploaded {upload.uploaded} samples, rebuilt {len(results)} days"
        )
    except LocationTimelineError as e:
        logger.error(f"Processing failed: {str(e)}")
        raise click.Abort() from e
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        raise click.Abort() from e


if __name__ == "__main__":
    main()
