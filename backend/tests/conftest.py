"""
Fixture condivise per la test suite travel-finder.

Il pricing service viene simulato con FakeProvider (offerte scritte a mano)
o con unittest.mock: nessuna chiamata di rete è necessaria per i test.
"""
from collections.abc import Callable
from datetime import date

import pytest

from travel_finder.models.schemas import Attendee, ClassificationRules
from travel_finder.services.providers.base import (
    FlightProvider,
    FlightQuery,
    Offer,
    OfferQuery,
)


def make_offer(
    price: float,
    duration_minutes: int = 120,
    outbound: date = date(2025, 2, 2),
    return_date: date | None = date(2025, 2, 8),
    airline: str = "TK",
    currency: str = "USD",
) -> Offer:
    return Offer(
        price=price,
        currency=currency,
        duration_minutes=duration_minutes,
        outbound_date=outbound,
        return_date=return_date,
        airline=airline,
    )


class FakeProvider(FlightProvider):
    """
    Provider scriptato: le risposte sono funzioni della query ricevuta.

    probe(query)  → offerte della sonda (riconosciuta da cabin economy + 1 adulto
                    + date fuori dalla finestra); default: durata 3h
    offers(query) → offerte concrete per coppia di date
    graph(query)  → offerte del price graph
    Tutte le chiamate vengono registrate per le asserzioni.
    """

    def __init__(
        self,
        offers: Callable[[OfferQuery], list[Offer]] | None = None,
        graph: Callable[[FlightQuery], list[Offer]] | None = None,
        probe: Callable[[OfferQuery], list[Offer]] | None = None,
    ) -> None:
        self._offers = offers or (lambda q: [make_offer(100, outbound=q.outbound_date, return_date=q.return_date)])
        self._graph = graph or _default_graph
        self._probe = probe or (lambda q: [make_offer(0, duration_minutes=180)])
        self.offer_calls: list[OfferQuery] = []
        self.probe_calls: list[OfferQuery] = []
        self.graph_calls: list[FlightQuery] = []
        self.closed = False

    async def get_offers(self, query: OfferQuery) -> list[Offer]:
        if self._is_probe(query):
            self.probe_calls.append(query)
            return self._probe(query)
        self.offer_calls.append(query)
        return self._offers(query)

    def _is_probe(self, query: OfferQuery) -> bool:
        # The probe is the only stay of exactly 7 nights in these tests
        return (
            query.return_date is not None
            and (query.return_date - query.outbound_date).days == 7
        )

    async def get_price_graph(self, query: FlightQuery, limiter=None) -> list[Offer]:
        self.graph_calls.append(query)
        return await self._limited(limiter, self._graph_call, query)

    async def _graph_call(self, query: FlightQuery) -> list[Offer]:
        return self._graph(query)

    async def aclose(self) -> None:
        self.closed = True


def _default_graph(query: FlightQuery) -> list[Offer]:
    return [
        make_offer(90, outbound=date(2025, 2, 2), return_date=date(2025, 2, 8)),
        make_offer(80, outbound=date(2025, 2, 3), return_date=date(2025, 2, 9)),
    ]


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def attendees():
    return [Attendee(city="NYC", travelers=1), Attendee(city="LAX", travelers=2)]


@pytest.fixture
def rules():
    return ClassificationRules()


# ---------------------------------------------------------------------------
# Date di riferimento (scenario IST, 6 notti)
# ---------------------------------------------------------------------------

@pytest.fixture
def date_from():
    return date(2025, 2, 2)


@pytest.fixture
def date_to():
    return date(2025, 2, 7)
