"""
MockProvider — provider offline deterministico per sviluppo e test.

Nessuna chiamata di rete: prezzi e durate sono derivati da un CRC32 della
tratta e delle date, quindi la stessa ricerca restituisce sempre gli stessi
numeri. Utile per provare la pipeline senza consumare quota SerpAPI.
"""
import asyncio
import zlib
from datetime import timedelta

from travel_finder.services.providers.base import (
    CabinClass,
    FlightProvider,
    FlightQuery,
    Offer,
    OfferQuery,
    StopPolicy,
    TripType,
)
from travel_finder.utils.rate_limiter import CallLimiter

# Moltiplicatore di prezzo per classe
_CLASS_FACTOR: dict[CabinClass, float] = {
    CabinClass.ECONOMY: 1.0,
    CabinClass.PREMIUM_ECONOMY: 1.6,
    CabinClass.BUSINESS: 3.2,
    CabinClass.FIRST: 5.0,
}

_AIRLINES = ("AA", "DL", "TK", "LH")


def _seed(*parts: object) -> int:
    return zlib.crc32("|".join(str(p) for p in parts).encode())


def route_duration(origin: str, destination: str) -> int:
    """Durata base stabile della tratta in minuti, tra 1h e 16h."""
    return 60 + _seed(origin.upper(), destination.upper()) % (15 * 60)


def generate_offers(query: OfferQuery) -> list[Offer]:
    """
    Simula quattro offerte per una ricerca a date esatte.

    Ogni scalo in più allunga il viaggio e abbassa un po' il prezzo; le
    offerte con più scali di quanti ne consenta query.stops vengono scartate.
    """
    max_stops = {
        StopPolicy.ANY: 2,
        StopPolicy.NONSTOP: 0,
        StopPolicy.ONE_STOP: 1,
        StopPolicy.TWO_STOPS: 2,
    }[query.stops]
    base_minutes = route_duration(query.origin, query.destination)
    day_seed = _seed(query.origin, query.destination, query.outbound_date, query.return_date)
    base_price = 150 + base_minutes * 0.6 + day_seed % 200
    if query.trip_type is TripType.ROUND_TRIP:
        base_price *= 1.8
    base_price *= _CLASS_FACTOR[query.cabin_class] * query.travelers

    offers: list[Offer] = []
    for i, airline in enumerate(_AIRLINES):
        stops = i % 3
        if stops > max_stops:
            continue
        offers.append(Offer(
            price=round(base_price * (1 - 0.07 * stops) + i * 11, 2),
            currency=query.currency,
            duration_minutes=base_minutes + stops * 95 + i * 5,
            outbound_date=query.outbound_date,
            return_date=query.return_date,
            airline=airline,
        ))
    return offers


class MockProvider(FlightProvider):

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def get_offers(self, query: OfferQuery) -> list[Offer]:
        if self.latency:
            await asyncio.sleep(self.latency)
        return generate_offers(query)

    async def get_price_graph(
        self,
        query: FlightQuery,
        limiter: CallLimiter | None = None,
    ) -> list[Offer]:
        query.require_class()
        # Una sola "chiamata" simulata per tutta la finestra
        return await self._limited(limiter, self._build_graph, query)

    async def _build_graph(self, query: FlightQuery) -> list[Offer]:
        if self.latency:
            await asyncio.sleep(self.latency)
        days = (query.range_end - query.range_start).days + 1
        graph: list[Offer] = []
        for i in range(days):
            outbound = query.range_start + timedelta(days=i)
            return_date = (
                outbound + timedelta(days=query.trip_length)
                if query.trip_type is TripType.ROUND_TRIP
                else None
            )
            offers = generate_offers(query.for_dates(outbound, return_date))
            graph.append(min(offers, key=lambda o: o.price))
        return graph
