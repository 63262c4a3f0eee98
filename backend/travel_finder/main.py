"""
Entry point CLI: prezzo migliore da ogni città dei partecipanti verso una
destinazione comune.

CMD=travel-finder --destination IST --start-date 2025-02-02 --end-date 2025-02-07 --nights 6
"""
import asyncio
import logging
import sys
import time
from datetime import date

import click

from travel_finder.config import ConfigError, load_trip_config, settings
from travel_finder.models.schemas import TripConfig
from travel_finder.services.providers.base import FlightProviderError
from travel_finder.services.providers.factory import PROVIDER_NAMES, get_provider
from travel_finder.services.search_engine import BestOfferResult, OriginOutcome, run_search

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _echo_result(result: BestOfferResult) -> None:
    click.echo(str(result))


async def _search(
    trip: TripConfig,
    provider_name: str | None,
    destination: str,
    date_from: date,
    date_to: date,
    nights: int,
    fail_fast: bool,
    max_workers: int | None,
    max_concurrent_calls: int,
    timeout: float,
) -> list[OriginOutcome]:
    async with get_provider(provider_name) as provider:
        return await run_search(
            provider,
            trip.attendees,
            destination=destination,
            date_from=date_from,
            date_to=date_to,
            nights=nights,
            rules=trip.rules,
            max_workers=max_workers,
            max_concurrent_calls=max_concurrent_calls,
            call_timeout=timeout,
            fail_fast=fail_fast,
            on_result=_echo_result,
        )


@click.command()
@click.option("--destination", required=True, help="Destination airport or city code")
@click.option("--start-date", required=True, type=click.DateTime(formats=["%Y-%m-%d"]),
              help="First departure date (YYYY-MM-DD)")
@click.option("--end-date", required=True, type=click.DateTime(formats=["%Y-%m-%d"]),
              help="Last departure date (YYYY-MM-DD)")
@click.option("--nights", required=True, type=click.IntRange(min=1), help="Number of nights")
@click.option("--config", "config_path", default=None,
              help="Trip document with rules and attendees [default: TRIP_CONFIG_PATH or conf.yml]")
@click.option("--provider", type=click.Choice(PROVIDER_NAMES, case_sensitive=False), default=None,
              help="Flight pricing provider [default: FLIGHT_PROVIDER]")
@click.option("--fail-fast", is_flag=True, help="Abort the whole run on the first error")
@click.option("--max-workers", type=click.IntRange(min=1), default=None,
              help="Origins searched in parallel [default: one per attendee]")
@click.option("--max-concurrent-calls", type=click.IntRange(min=1), default=None,
              help="Pricing-service calls in flight at once")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Deadline in seconds for each pricing-service call")
@click.option("-v", "--verbose", is_flag=True, help="Log progress at INFO level")
def cli(
    destination: str,
    start_date,
    end_date,
    nights: int,
    config_path: str | None,
    provider: str | None,
    fail_fast: bool,
    max_workers: int | None,
    max_concurrent_calls: int | None,
    timeout: float | None,
    verbose: bool,
) -> None:
    """Find the cheapest round trip from every attendee's city to DESTINATION."""
    started = time.perf_counter()
    _configure_logging(verbose)

    date_from, date_to = start_date.date(), end_date.date()
    if date_to < date_from:
        raise click.BadParameter("must not be before --start-date", param_hint="--end-date")

    try:
        trip = load_trip_config(config_path or settings.trip_config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    logger.info(
        "%d attendees → %s, departures %s..%s, %d nights",
        len(trip.attendees), destination, date_from, date_to, nights,
    )

    try:
        outcomes = asyncio.run(_search(
            trip,
            provider,
            destination,
            date_from,
            date_to,
            nights,
            fail_fast,
            max_workers or settings.max_workers,
            max_concurrent_calls or settings.max_concurrent_calls,
            timeout or settings.call_timeout_seconds,
        ))
    except (FlightProviderError, ValueError) as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc

    failed = [o for o in outcomes if not o.ok]
    for outcome in failed:
        click.echo(
            f"Search failed for {outcome.origin}: {type(outcome.error).__name__}: {outcome.error}",
            err=True,
        )
    click.echo(f"Finished in {time.perf_counter() - started:.3f}s")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    cli()
