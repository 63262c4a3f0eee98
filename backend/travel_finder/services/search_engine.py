"""
Core logic per la ricerca del prezzo migliore verso una destinazione comune.

Flusso:
  1. Il coordinatore costruisce un template di query (destinazione, finestra
     di date, notti, valuta, scali, andata/ritorno) e lo clona per ogni
     partecipante impostando origine e numero di viaggiatori.
  2. Le query finiscono in una coda condivisa consumata da un pool di worker
     (uno per partecipante, oppure max_workers se impostato).
  3. Ogni worker, per ogni query:
       a. sceglie la classe con la sonda sulla durata (class_selector);
       b. interroga il price graph sull'intera finestra;
       c. lancia un fetcher per ogni coppia di date candidata e li attende;
       d. riduce i migliori per coppia a un solo risultato per origine.
  4. Ogni chiamata al provider passa dal CallLimiter condiviso: concorrenza
     limitata e timeout per singola chiamata. Il price graph riceve il
     limiter e lo usa per ogni richiesta che fa al servizio esterno.

Errori: di default ogni origine è isolata (l'errore viene loggato e
registrato in OriginOutcome, le altre proseguono). Con fail_fast=True il
primo errore cancella tutto il lavoro in corso e viene rilanciato.
"""
import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date

from travel_finder.models.schemas import Attendee, ClassificationRules
from travel_finder.services.class_selector import select_class
from travel_finder.services.offer_reducer import reduce_offers
from travel_finder.services.providers.base import (
    CabinClass,
    CandidateDatePair,
    FlightProvider,
    FlightQuery,
    Offer,
    StopPolicy,
    TripType,
)
from travel_finder.utils.rate_limiter import CallLimiter, gather_or_cancel

logger = logging.getLogger(__name__)

# Chiamate contemporanee massime verso il provider (tutti i worker insieme)
DEFAULT_MAX_CONCURRENT_CALLS = 8


@dataclass
class BestOfferResult:
    origin: str
    destination: str
    offer: Offer | None
    cabin_class: CabinClass | None = None

    @property
    def price(self) -> float | None:
        return self.offer.price if self.offer else None

    def format_price(self) -> str:
        if self.offer is None:
            return "unavailable"
        return f"{self.offer.price:.2f} {self.offer.currency}"

    def __str__(self) -> str:
        return f"Best offer for {self.origin} to {self.destination} is {self.format_price()}"


@dataclass
class OriginOutcome:
    """Risultato oppure errore che ha fermato questa origine."""
    origin: str
    result: BestOfferResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


ResultCallback = Callable[[BestOfferResult], None]


def candidate_date_pairs(graph_offers: Iterable[Offer]) -> list[CandidateDatePair]:
    """Coppie di date distinte del price graph, nell'ordine in cui compaiono."""
    seen: dict[CandidateDatePair, None] = {}
    for offer in graph_offers:
        seen.setdefault(offer.date_pair, None)
    return list(seen)


def build_base_query(
    destination: str,
    date_from: date,
    date_to: date,
    nights: int,
    currency: str = "USD",
    stops: StopPolicy = StopPolicy.TWO_STOPS,
    trip_type: TripType = TripType.ROUND_TRIP,
    language: str = "en",
) -> FlightQuery:
    """Template condiviso da tutti i partecipanti; l'origine si imposta per clone."""
    return FlightQuery(
        origin="",
        destination=destination,
        range_start=date_from,
        range_end=date_to,
        trip_length=nights,
        currency=currency,
        stops=stops,
        trip_type=trip_type,
        language=language,
    )


def queries_for(base: FlightQuery, attendees: Sequence[Attendee]) -> list[FlightQuery]:
    return [replace(base, origin=a.city, travelers=a.travelers) for a in attendees]


async def fetch_best(
    provider: FlightProvider,
    query: FlightQuery,
    pair: CandidateDatePair,
    *,
    limiter: CallLimiter | None = None,
) -> BestOfferResult:
    """Offerte concrete per una coppia di date, ridotte alla più economica."""
    offer_query = query.for_dates(pair.outbound_date, pair.return_date)
    if limiter is not None:
        offers = await limiter.call(provider.get_offers, offer_query)
    else:
        offers = await provider.get_offers(offer_query)

    result = BestOfferResult(
        origin=query.origin,
        destination=query.destination,
        offer=reduce_offers(offers),
        cabin_class=query.cabin_class,
    )
    logger.info(
        "%s→%s %s/%s: %d offers, best %s",
        query.origin, query.destination, pair.outbound_date, pair.return_date,
        len(offers), result.format_price(),
    )
    return result


async def process_query(
    provider: FlightProvider,
    query: FlightQuery,
    rules: ClassificationRules | None = None,
    *,
    limiter: CallLimiter | None = None,
) -> BestOfferResult:
    """Classe, price graph, poi prezzo di ogni coppia di date candidata."""
    limiter = limiter or CallLimiter(DEFAULT_MAX_CONCURRENT_CALLS)

    query.cabin_class = await select_class(
        provider, query.origin, query.destination, rules, limiter=limiter,
    )
    query.require_class()

    # Il provider prende uno slot per ogni richiesta: qui non si tiene nessuno slot
    graph = await provider.get_price_graph(query, limiter)
    pairs = candidate_date_pairs(graph)
    logger.info(
        "%s→%s (%s): %d candidate date pairs",
        query.origin, query.destination, query.cabin_class.value, len(pairs),
    )

    per_pair = await gather_or_cancel(
        fetch_best(provider, query, pair, limiter=limiter) for pair in pairs
    )
    best = reduce_offers(r.offer for r in per_pair if r.offer is not None)
    return BestOfferResult(
        origin=query.origin,
        destination=query.destination,
        offer=best,
        cabin_class=query.cabin_class,
    )


async def _worker(
    name: str,
    queue: "asyncio.Queue[FlightQuery | None]",
    provider: FlightProvider,
    rules: ClassificationRules | None,
    limiter: CallLimiter,
    outcomes: list[OriginOutcome],
    on_result: ResultCallback | None,
    fail_fast: bool,
) -> None:
    while True:
        query = await queue.get()
        try:
            if query is None:
                return
            try:
                result = await process_query(provider, query, rules, limiter=limiter)
            except Exception as exc:
                if fail_fast:
                    raise
                logger.warning(
                    "%s: search %s→%s failed: %s: %s",
                    name, query.origin, query.destination, type(exc).__name__, exc,
                )
                outcomes.append(OriginOutcome(query.origin, error=exc))
                continue
            outcomes.append(OriginOutcome(query.origin, result=result))
            if on_result is not None:
                on_result(result)
        finally:
            queue.task_done()


async def run_search(
    provider: FlightProvider,
    attendees: Sequence[Attendee],
    *,
    destination: str,
    date_from: date,
    date_to: date,
    nights: int,
    rules: ClassificationRules | None = None,
    max_workers: int | None = None,
    max_concurrent_calls: int = DEFAULT_MAX_CONCURRENT_CALLS,
    call_timeout: float | None = None,
    fail_fast: bool = False,
    on_result: ResultCallback | None = None,
) -> list[OriginOutcome]:
    """
    Prezzo andata/ritorno migliore da ogni città dei partecipanti a destination.

    Returns:
        Un OriginOutcome per partecipante, in ordine di completamento.

    Raises:
        Il primo errore di un worker, solo se fail_fast è True.
    """
    base = build_base_query(destination, date_from, date_to, nights)
    queries = queries_for(base, attendees)
    if not queries:
        return []

    limiter = CallLimiter(max_concurrent_calls, timeout=call_timeout)
    queue: asyncio.Queue[FlightQuery | None] = asyncio.Queue()
    outcomes: list[OriginOutcome] = []

    n_workers = len(queries) if not max_workers else min(max_workers, len(queries))
    workers = [
        asyncio.create_task(
            _worker(f"worker-{i}", queue, provider, rules, limiter, outcomes, on_result, fail_fast)
        )
        for i in range(n_workers)
    ]

    for query in queries:
        await queue.put(query)
    # Chiusura della coda: una sentinella per worker
    for _ in workers:
        await queue.put(None)

    await gather_or_cancel(workers)
    logger.info(
        "Search to %s done: %d/%d origins priced",
        destination, sum(o.ok for o in outcomes), len(outcomes),
    )
    return outcomes
