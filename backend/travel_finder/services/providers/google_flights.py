"""
GoogleFlightsProvider — provider primario via SerpAPI.

SerpAPI espone i dati di Google Flights in JSON strutturato senza scraping
diretto. Un solo httpx.AsyncClient viene condiviso da tutte le chiamate
concorrenti della pipeline (httpx è sicuro per l'uso concorrente).

Registrazione: https://serpapi.com

Documentazione endpoint:
  https://serpapi.com/google-flights-api

Il price graph non esiste come endpoint SerpAPI: viene ricostruito
interrogando in parallelo ogni data di partenza della finestra
(ritorno = partenza + notti) e tenendo l'offerta più economica per data.
Ogni richiesta per data prende il proprio slot nel CallLimiter condiviso.

Quota: le risposte di get_offers restano in memoria per la durata del
provider (chiave: OfferQuery). Le stesse coppie di date chiamate dal fetcher
dopo il price graph non costano una seconda richiesta SerpAPI.
"""
import logging
from datetime import date, timedelta

import httpx

from travel_finder.services.offer_reducer import reduce_offers
from travel_finder.services.providers.base import (
    CabinClass,
    FlightProvider,
    FlightProviderError,
    FlightQuery,
    Offer,
    OfferQuery,
    StopPolicy,
    TripType,
)
from travel_finder.utils.rate_limiter import CallLimiter, gather_or_cancel

logger = logging.getLogger(__name__)

_SERPAPI_URL = "https://serpapi.com/search.json"

# Finestra massima accettata dal price graph (stesso limite di Google Flights)
DEFAULT_MAX_RANGE_DAYS = 161

_TRAVEL_CLASS: dict[CabinClass, str] = {
    CabinClass.ECONOMY: "1",
    CabinClass.PREMIUM_ECONOMY: "2",
    CabinClass.BUSINESS: "3",
    CabinClass.FIRST: "4",
}

# 0=qualsiasi, 1=solo diretti, 2=max 1 scalo, 3=max 2 scali
_STOPS: dict[StopPolicy, str] = {
    StopPolicy.ANY: "0",
    StopPolicy.NONSTOP: "1",
    StopPolicy.ONE_STOP: "2",
    StopPolicy.TWO_STOPS: "3",
}

# Messaggio SerpAPI quando la ricerca è valida ma senza voli
_NO_RESULTS = "hasn't returned any results"


def _parse_offer(item: dict, query: OfferQuery) -> Offer | None:
    """
    Normalizza un'offerta SerpAPI (best_flights o other_flights) in Offer.

    Struttura SerpAPI:
    {
      "flights": [{"departure_airport": {...}, "arrival_airport": {...},
                   "airline": "Turkish Airlines", "duration": 610, ...}],
      "total_duration": 610,
      "price": 812,
      ...
    }
    """
    try:
        flights = item.get("flights", [])
        airline = flights[0].get("airline", "") if flights else ""
        return Offer(
            price=float(item.get("price") or 0),
            currency=query.currency,
            duration_minutes=int(item.get("total_duration") or 0),
            outbound_date=query.outbound_date,
            return_date=query.return_date,
            airline=airline,
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


def _search_params(query: OfferQuery, api_key: str) -> dict:
    params: dict = {
        "engine": "google_flights",
        "departure_id": query.origin,
        "arrival_id": query.destination,
        "outbound_date": query.outbound_date.isoformat(),
        "currency": query.currency,
        "hl": query.language,
        "type": "1" if query.trip_type is TripType.ROUND_TRIP else "2",
        "travel_class": _TRAVEL_CLASS[query.cabin_class],
        "stops": _STOPS[query.stops],
        "adults": str(query.travelers),
        "api_key": api_key,
    }
    if query.trip_type is TripType.ROUND_TRIP:
        if query.return_date is None:
            raise ValueError("round trip query without return_date")
        params["return_date"] = query.return_date.isoformat()
    return params


class GoogleFlightsProvider(FlightProvider):

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 30,
        max_connections: int = 10,
        max_range_days: int = DEFAULT_MAX_RANGE_DAYS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise FlightProviderError("SERPAPI_API_KEY is not set")
        self.api_key = api_key
        self.max_range_days = max_range_days
        self.requests_sent = 0
        # Risposte già pagate, riusate per la stessa OfferQuery
        self._offers_cache: dict[OfferQuery, list[Offer]] = {}
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, pool=None),
            limits=httpx.Limits(max_connections=max_connections),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_offers(self, query: OfferQuery) -> list[Offer]:
        """
        Chiama SerpAPI per una coppia di date e restituisce Offer normalizzate.
        Se la stessa query ha già avuto risposta, la richiesta non viene ripetuta.
        """
        cached = self._offers_cache.get(query)
        if cached is not None:
            logger.debug("SerpAPI %s→%s %s: cache hit", query.origin, query.destination, query.outbound_date)
            return list(cached)

        params = _search_params(query, self.api_key)
        self.requests_sent += 1
        try:
            resp = await self._client.get(_SERPAPI_URL, params=params)
        except httpx.HTTPError as exc:
            raise FlightProviderError(
                f"SerpAPI {query.origin}→{query.destination} {query.outbound_date}: "
                f"{type(exc).__name__}: {exc}"
            ) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        error = data.get("error")
        if error and _NO_RESULTS in error:
            logger.debug("SerpAPI %s→%s %s: no flights", query.origin, query.destination, query.outbound_date)
            self._offers_cache[query] = []
            return []
        if resp.status_code != 200 or error:
            raise FlightProviderError(
                f"SerpAPI {query.origin}→{query.destination} {query.outbound_date}: "
                f"HTTP {resp.status_code}: {error or resp.text[:200]}"
            )

        offers: list[Offer] = []
        # SerpAPI suddivide i risultati in best_flights e other_flights
        for section in ("best_flights", "other_flights"):
            for item in data.get(section, []):
                offer = _parse_offer(item, query)
                if offer:
                    offers.append(offer)

        logger.debug(
            "SerpAPI %s→%s %s/%s: %d offers",
            query.origin, query.destination, query.outbound_date, query.return_date, len(offers),
        )
        self._offers_cache[query] = offers
        return list(offers)

    async def get_price_graph(
        self,
        query: FlightQuery,
        limiter: CallLimiter | None = None,
    ) -> list[Offer]:
        query.require_class()
        days = (query.range_end - query.range_start).days + 1
        if days > self.max_range_days:
            raise ValueError(
                f"date window of {days} days exceeds the {self.max_range_days}-day limit"
            )

        # Chiamate parallele (una per data di partenza)
        outbound_dates = [query.range_start + timedelta(days=i) for i in range(days)]
        results = await gather_or_cancel(
            self._cheapest_for(query, d, limiter) for d in outbound_dates
        )
        return [offer for offer in results if offer is not None]

    async def _cheapest_for(
        self,
        query: FlightQuery,
        outbound: date,
        limiter: CallLimiter | None,
    ) -> Offer | None:
        return_date = (
            outbound + timedelta(days=query.trip_length)
            if query.trip_type is TripType.ROUND_TRIP
            else None
        )
        offers = await self._limited(limiter, self.get_offers, query.for_dates(outbound, return_date))
        return reduce_offers(offers)
