"""
Scelta automatica della classe di viaggio per una tratta.

Flusso:
  1. Sonda: una ricerca andata/ritorno fra un mese (7 notti fisse),
     indipendente dalle date reali del viaggio, serve solo a stimare
     quanto è lungo il volo.
  2. Durata minima non nulla tra le offerte restituite.
  3. Mappatura durata → classe con le soglie di ClassificationRules
     (default 6h / 10h):
        durata < premium_min_hrs            → Economy
        premium_min_hrs ≤ durata < business → Premium Economy
        durata ≥ business_min_hrs           → Business

Se la sonda non restituisce nessuna durata valida si ripiega su Economy
(comportamento storico) con un warning nei log.
"""
import calendar
import logging
from collections.abc import Iterable
from datetime import date, timedelta

from travel_finder.models.schemas import ClassificationRules
from travel_finder.services.providers.base import (
    CabinClass,
    FlightProvider,
    Offer,
    OfferQuery,
    StopPolicy,
    TripType,
)
from travel_finder.utils.rate_limiter import CallLimiter

logger = logging.getLogger(__name__)

# Notti fisse usate dalla sonda
PROBE_STAY_DAYS = 7


def _add_one_month(day: date) -> date:
    """Stesso giorno del mese successivo, o l'ultimo giorno se il mese è più corto."""
    year, month = (day.year + 1, 1) if day.month == 12 else (day.year, day.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def probe_query(origin: str, destination: str, today: date | None = None) -> OfferQuery:
    outbound = _add_one_month(today or date.today())
    return OfferQuery(
        origin=origin,
        destination=destination,
        outbound_date=outbound,
        return_date=outbound + timedelta(days=PROBE_STAY_DAYS),
        travelers=1,
        cabin_class=CabinClass.ECONOMY,
        currency="USD",
        stops=StopPolicy.TWO_STOPS,
        trip_type=TripType.ROUND_TRIP,
        language="en",
    )


def shortest_duration(offers: Iterable[Offer]) -> int | None:
    """Durata minima non nulla in minuti, None se nessuna offerta ne ha una."""
    durations = [o.duration_minutes for o in offers if o.duration_minutes and o.duration_minutes > 0]
    return min(durations) if durations else None


def classify_duration(
    duration_minutes: int | None,
    rules: ClassificationRules | None = None,
) -> CabinClass:
    """
    Classe per la durata data. Durata assente o nulla → Economy, anche con
    soglie a zero.
    """
    if not duration_minutes or duration_minutes < 0:
        return CabinClass.ECONOMY
    rules = rules or ClassificationRules()
    if duration_minutes < rules.premium_min_hrs * 60:
        return CabinClass.ECONOMY
    if duration_minutes < rules.business_min_hrs * 60:
        return CabinClass.PREMIUM_ECONOMY
    return CabinClass.BUSINESS


async def select_class(
    provider: FlightProvider,
    origin: str,
    destination: str,
    rules: ClassificationRules | None = None,
    *,
    limiter: CallLimiter | None = None,
    today: date | None = None,
) -> CabinClass:
    """
    Sonda la tratta e restituisce la classe di viaggio.

    Gli errori del provider non vengono gestiti qui: arrivano al worker.
    """
    query = probe_query(origin, destination, today)
    if limiter is not None:
        offers = await limiter.call(provider.get_offers, query)
    else:
        offers = await provider.get_offers(query)

    duration = shortest_duration(offers)
    if duration is None:
        logger.warning(
            "Probe %s→%s: no offer with a flight duration, defaulting to %s",
            origin, destination, CabinClass.ECONOMY.value,
        )
    cabin = classify_duration(duration, rules)
    logger.info(
        "Probe %s→%s: shortest flight %s min → %s",
        origin, destination, duration, cabin.value,
    )
    return cabin
