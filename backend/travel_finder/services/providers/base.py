"""
Flight Provider Layer — interfaccia astratta (Strategy Pattern).

La pipeline (class_selector, search_engine) usa solo queste classi.
Il provider concreto viene scelto dalla factory tramite FLIGHT_PROVIDER nel .env.

Ogni provider espone due operazioni:
  get_offers()      → offerte concrete per date esatte di andata/ritorno
                      (usata anche per la sonda sulla durata del volo)
  get_price_graph() → una offerta riassuntiva per ogni data di partenza
                      della finestra, serve solo a enumerare le coppie di date
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from travel_finder.utils.rate_limiter import CallLimiter


class FlightProviderError(RuntimeError):
    """Il pricing service ha fallito o ha restituito dati inutilizzabili."""


class ProviderTimeoutError(FlightProviderError):
    """Una chiamata al pricing service non si è conclusa entro la deadline."""


class CabinClass(str, Enum):
    ECONOMY = "economy"
    PREMIUM_ECONOMY = "premium_economy"
    BUSINESS = "business"
    FIRST = "first"


class StopPolicy(str, Enum):
    ANY = "any"
    NONSTOP = "nonstop"
    ONE_STOP = "one_stop"
    TWO_STOPS = "two_stops"  # al massimo 2 scali


class TripType(str, Enum):
    ROUND_TRIP = "round_trip"
    ONE_WAY = "one_way"


@dataclass(frozen=True)
class CandidateDatePair:
    """Date di andata/ritorno prese da un'offerta del price graph."""
    outbound_date: date
    return_date: date | None


@dataclass
class Offer:
    """Risultato normalizzato indipendente dal provider."""
    price: float               # 0 = prezzo non disponibile
    currency: str
    duration_minutes: int      # 0 = durata non disponibile
    outbound_date: date
    return_date: date | None = None
    airline: str = ""

    @property
    def date_pair(self) -> CandidateDatePair:
        return CandidateDatePair(self.outbound_date, self.return_date)


@dataclass(frozen=True)
class OfferQuery:
    """Ricerca di offerte concrete su date esatte."""
    origin: str
    destination: str
    outbound_date: date
    return_date: date | None
    travelers: int = 1
    cabin_class: CabinClass = CabinClass.ECONOMY
    currency: str = "USD"
    stops: StopPolicy = StopPolicy.TWO_STOPS
    trip_type: TripType = TripType.ROUND_TRIP
    language: str = "en"


@dataclass
class FlightQuery:
    """
    Ricerca price graph per una origine su una finestra di date di partenza.

    Clonata da un template condiviso per ogni partecipante; cabin_class resta
    None finché il class selector non ha classificato la tratta.
    """
    origin: str
    destination: str
    range_start: date
    range_end: date
    trip_length: int          # nights
    travelers: int = 1
    cabin_class: CabinClass | None = None
    currency: str = "USD"
    stops: StopPolicy = StopPolicy.TWO_STOPS
    trip_type: TripType = TripType.ROUND_TRIP
    language: str = "en"

    def __post_init__(self) -> None:
        if self.range_end < self.range_start:
            raise ValueError(
                f"range_end {self.range_end} is before range_start {self.range_start}"
            )
        if self.trip_length < 1:
            raise ValueError("trip_length must be at least 1 night")
        if self.travelers < 1:
            raise ValueError("travelers must be at least 1")

    def require_class(self) -> CabinClass:
        if self.cabin_class is None:
            raise ValueError(
                f"query {self.origin}→{self.destination} has no cabin class yet"
            )
        return self.cabin_class

    def for_dates(self, outbound_date: date, return_date: date | None) -> OfferQuery:
        """Ricerca a date esatte con tratta, viaggiatori e opzioni di questa query."""
        return OfferQuery(
            origin=self.origin,
            destination=self.destination,
            outbound_date=outbound_date,
            return_date=return_date,
            travelers=self.travelers,
            cabin_class=self.require_class(),
            currency=self.currency,
            stops=self.stops,
            trip_type=self.trip_type,
            language=self.language,
        )


class FlightProvider(ABC):

    @abstractmethod
    async def get_offers(self, query: OfferQuery) -> list[Offer]:
        """
        Offerte concrete per query.outbound_date / query.return_date.
        Solleva FlightProviderError se il servizio fallisce.
        """
        ...

    @abstractmethod
    async def get_price_graph(
        self,
        query: FlightQuery,
        limiter: "CallLimiter | None" = None,
    ) -> list[Offer]:
        """
        Offerte riassuntive su query.range_start..query.range_end, ognuna con
        return_date = outbound_date + trip_length (per andata/ritorno).
        I prezzi sono indicativi: servono solo le coppie di date.

        Ogni chiamata verso il servizio esterno fatta qui dentro deve passare
        da limiter (uno slot e una deadline per chiamata), se fornito.
        """
        ...

    @staticmethod
    async def _limited(limiter: "CallLimiter | None", fn, *args):
        """Esegue fn(*args) dentro uno slot del limiter, se presente."""
        if limiter is None:
            return await fn(*args)
        return await limiter.call(fn, *args)

    async def aclose(self) -> None:
        """Rilascia le risorse di rete. Può essere chiamata più volte."""

    async def __aenter__(self) -> "FlightProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
