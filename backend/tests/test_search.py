"""
Test per il modulo search_engine: helper puri, fetch_best, process_query e
run_search (coordinatore + worker).

Il pricing service è sempre FakeProvider (conftest) o un AsyncMock:
  - probe  → durata fissa (default 3h → Economy)
  - graph  → due coppie di date
  - offers → prezzi scriptati per origine / data
"""
import asyncio
from datetime import date, timedelta

import pytest

from conftest import FakeProvider, make_offer
from travel_finder.models.schemas import Attendee
from travel_finder.services.providers.base import (
    CabinClass,
    CandidateDatePair,
    FlightProviderError,
    FlightQuery,
    ProviderTimeoutError,
    StopPolicy,
    TripType,
)
from travel_finder.services.search_engine import (
    BestOfferResult,
    build_base_query,
    candidate_date_pairs,
    fetch_best,
    process_query,
    queries_for,
    run_search,
)
from travel_finder.utils.rate_limiter import CallLimiter

DESTINATION = "IST"
DATE_FROM = date(2025, 2, 2)
DATE_TO = date(2025, 2, 7)
NIGHTS = 6


def _classified_query(origin="NYC", travelers=1) -> FlightQuery:
    query = FlightQuery(origin, DESTINATION, DATE_FROM, DATE_TO, NIGHTS, travelers=travelers)
    query.cabin_class = CabinClass.ECONOMY
    return query


async def _search(provider, attendees, **kwargs):
    return await run_search(
        provider,
        attendees,
        destination=DESTINATION,
        date_from=DATE_FROM,
        date_to=DATE_TO,
        nights=NIGHTS,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Helper puri
# ---------------------------------------------------------------------------

class TestQueryBuilding:

    def test_base_query_fixed_fields(self):
        base = build_base_query(DESTINATION, DATE_FROM, DATE_TO, NIGHTS)
        assert base.destination == DESTINATION
        assert base.range_start == DATE_FROM
        assert base.range_end == DATE_TO
        assert base.trip_length == NIGHTS
        assert base.currency == "USD"
        assert base.stops is StopPolicy.TWO_STOPS
        assert base.trip_type is TripType.ROUND_TRIP
        assert base.cabin_class is None

    def test_one_clone_per_attendee(self, attendees):
        base = build_base_query(DESTINATION, DATE_FROM, DATE_TO, NIGHTS)
        queries = queries_for(base, attendees)
        assert [(q.origin, q.travelers) for q in queries] == [("NYC", 1), ("LAX", 2)]
        # Clones are independent from the template
        queries[0].cabin_class = CabinClass.BUSINESS
        assert base.cabin_class is None
        assert queries[1].cabin_class is None

    def test_invalid_window_rejected(self):
        with pytest.raises(ValueError):
            build_base_query(DESTINATION, DATE_TO, DATE_FROM, NIGHTS)
        with pytest.raises(ValueError):
            build_base_query(DESTINATION, DATE_FROM, DATE_TO, 0)

    def test_unclassified_query_cannot_be_priced(self):
        query = FlightQuery("NYC", DESTINATION, DATE_FROM, DATE_TO, NIGHTS)
        with pytest.raises(ValueError):
            query.for_dates(DATE_FROM, DATE_FROM + timedelta(days=NIGHTS))

    def test_candidate_pairs_deduplicated_in_order(self):
        graph = [
            make_offer(90, outbound=date(2025, 2, 3), return_date=date(2025, 2, 9)),
            make_offer(80, outbound=date(2025, 2, 2), return_date=date(2025, 2, 8)),
            make_offer(70, outbound=date(2025, 2, 3), return_date=date(2025, 2, 9)),
        ]
        assert candidate_date_pairs(graph) == [
            CandidateDatePair(date(2025, 2, 3), date(2025, 2, 9)),
            CandidateDatePair(date(2025, 2, 2), date(2025, 2, 8)),
        ]


class TestBestOfferResult:

    def test_line_format(self):
        result = BestOfferResult("NYC", "IST", make_offer(512.4))
        assert str(result) == "Best offer for NYC to IST is 512.40 USD"
        assert result.price == 512.4

    def test_no_offer(self):
        result = BestOfferResult("NYC", "IST", None)
        assert result.price is None
        assert str(result) == "Best offer for NYC to IST is unavailable"


# ---------------------------------------------------------------------------
# fetch_best
# ---------------------------------------------------------------------------

class TestFetchBest:

    async def test_exact_dates_and_query_fields(self):
        provider = FakeProvider(offers=lambda q: [make_offer(300), make_offer(210), make_offer(0)])
        query = _classified_query(travelers=3)
        pair = CandidateDatePair(date(2025, 2, 4), date(2025, 2, 10))

        result = await fetch_best(provider, query, pair)

        assert result.price == 210
        assert result.origin == "NYC"
        assert result.destination == DESTINATION
        sent = provider.offer_calls[0]
        assert sent.outbound_date == date(2025, 2, 4)
        assert sent.return_date == date(2025, 2, 10)
        assert sent.travelers == 3
        assert sent.cabin_class is CabinClass.ECONOMY

    async def test_no_priced_offer(self):
        provider = FakeProvider(offers=lambda q: [])
        pair = CandidateDatePair(date(2025, 2, 4), date(2025, 2, 10))
        result = await fetch_best(provider, _classified_query(), pair)
        assert result.offer is None


# ---------------------------------------------------------------------------
# process_query
# ---------------------------------------------------------------------------

class TestProcessQuery:

    async def test_class_assigned_before_price_graph(self):
        provider = FakeProvider(probe=lambda q: [make_offer(0, 11 * 60)])
        query = FlightQuery("NYC", DESTINATION, DATE_FROM, DATE_TO, NIGHTS)

        await process_query(provider, query)

        assert query.cabin_class is CabinClass.BUSINESS
        assert provider.graph_calls[0].cabin_class is CabinClass.BUSINESS
        assert all(c.cabin_class is CabinClass.BUSINESS for c in provider.offer_calls)

    async def test_one_fetch_per_pair_and_minimum_kept(self):
        prices = {date(2025, 2, 2): 450.0, date(2025, 2, 3): 380.0}
        provider = FakeProvider(offers=lambda q: [make_offer(prices[q.outbound_date], outbound=q.outbound_date)])

        result = await process_query(provider, FlightQuery("NYC", DESTINATION, DATE_FROM, DATE_TO, NIGHTS))

        assert len(provider.offer_calls) == 2
        assert result.price == 380.0
        assert result.offer.outbound_date == date(2025, 2, 3)

    async def test_empty_price_graph(self):
        provider = FakeProvider(graph=lambda q: [])
        result = await process_query(provider, FlightQuery("NYC", DESTINATION, DATE_FROM, DATE_TO, NIGHTS))
        assert result.offer is None
        assert provider.offer_calls == []

    async def test_failed_pair_cancels_siblings(self):
        cancelled = []

        class SlowThenFail(FakeProvider):
            async def get_offers(self, query):
                if self._is_probe(query):
                    return await super().get_offers(query)
                if query.outbound_date == date(2025, 2, 2):
                    raise FlightProviderError("HTTP 500")
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.append(query.outbound_date)
                    raise
                return []

        with pytest.raises(FlightProviderError):
            await process_query(SlowThenFail(), FlightQuery("NYC", DESTINATION, DATE_FROM, DATE_TO, NIGHTS))
        assert cancelled == [date(2025, 2, 3)]


# ---------------------------------------------------------------------------
# run_search — coordinatore + worker
# ---------------------------------------------------------------------------

class TestRunSearch:

    async def test_scenario_two_attendees(self, attendees):
        """NYC (1) e LAX (2) → IST: un risultato per partecipante, prezzo numerico."""
        printed: list[BestOfferResult] = []
        provider = FakeProvider(
            offers=lambda q: [make_offer(200 * q.travelers, outbound=q.outbound_date, return_date=q.return_date)],
        )

        outcomes = await _search(provider, attendees, on_result=printed.append)

        assert len(outcomes) == 2
        assert all(o.ok for o in outcomes)
        assert sorted(r.origin for r in printed) == ["LAX", "NYC"]
        by_origin = {r.origin: r for r in printed}
        assert by_origin["NYC"].price == 200
        assert by_origin["LAX"].price == 400
        assert all(str(r).startswith(f"Best offer for {r.origin} to IST is ") for r in printed)
        assert len(provider.graph_calls) == 2

    async def test_dispatches_one_query_per_attendee(self):
        attendees = [Attendee(city=c) for c in ("NYC", "LAX", "SFO", "ORD", "BOS")]
        provider = FakeProvider()

        outcomes = await _search(provider, attendees, max_workers=2)

        assert sorted(q.origin for q in provider.graph_calls) == sorted(a.city for a in attendees)
        assert len(outcomes) == 5

    async def test_no_attendees(self):
        assert await _search(FakeProvider(), []) == []

    async def test_failing_origin_is_isolated(self, attendees, caplog):
        import logging

        def offers(q):
            if q.origin == "LAX":
                raise FlightProviderError("unreachable")
            return [make_offer(150)]

        printed = []
        with caplog.at_level(logging.WARNING, logger="travel_finder.services.search_engine"):
            outcomes = await _search(FakeProvider(offers=offers), attendees, on_result=printed.append)

        by_origin = {o.origin: o for o in outcomes}
        assert by_origin["NYC"].ok
        assert by_origin["NYC"].result.price == 150
        assert not by_origin["LAX"].ok
        assert isinstance(by_origin["LAX"].error, FlightProviderError)
        assert [r.origin for r in printed] == ["NYC"]
        assert any("LAX" in msg for msg in caplog.messages)

    async def test_fail_fast_raises(self, attendees):
        def probe(q):
            raise FlightProviderError("probe failed")

        with pytest.raises(FlightProviderError):
            await _search(FakeProvider(probe=probe), attendees, fail_fast=True)

    async def test_concurrent_calls_are_bounded(self):
        peak = 0
        running = 0

        class Counting(FakeProvider):
            async def get_offers(self, query):
                nonlocal peak, running
                running += 1
                peak = max(peak, running)
                try:
                    await asyncio.sleep(0.01)
                    return await super().get_offers(query)
                finally:
                    running -= 1

        graph = lambda q: [
            make_offer(100, outbound=DATE_FROM + timedelta(days=i), return_date=DATE_FROM + timedelta(days=i + NIGHTS))
            for i in range(6)
        ]
        attendees = [Attendee(city=c) for c in ("NYC", "LAX", "SFO")]

        outcomes = await _search(Counting(graph=graph), attendees, max_concurrent_calls=2)

        assert all(o.ok for o in outcomes)
        assert peak <= 2

    async def test_slow_call_times_out(self, attendees):
        class Hanging(FakeProvider):
            async def _graph_call(self, query):
                await asyncio.sleep(10)
                return []

        outcomes = await _search(Hanging(), attendees, call_timeout=0.05)

        assert len(outcomes) == 2
        assert all(isinstance(o.error, ProviderTimeoutError) for o in outcomes)

    async def test_shared_limiter_passed_down(self):
        limiter = CallLimiter(1)
        provider = FakeProvider()
        result = await process_query(provider, _classified_query(), limiter=limiter)
        assert result.price == 100
        assert limiter.in_flight == 0
