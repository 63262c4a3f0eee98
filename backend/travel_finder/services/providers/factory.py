"""
Flight Provider Factory — sceglie il pricing service tramite FLIGHT_PROVIDER.

Provider disponibili:
  serpapi → GoogleFlightsProvider (rete, richiede SERPAPI_API_KEY)
  mock    → MockProvider (offline, deterministico)

Il provider restituito va chiuso dal chiamante (async with / aclose()):
contiene il client HTTP condiviso da tutti i task della pipeline.
"""
from travel_finder.config import Settings, settings as default_settings
from travel_finder.services.providers.base import FlightProvider
from travel_finder.services.providers.google_flights import GoogleFlightsProvider
from travel_finder.services.providers.mock import MockProvider

PROVIDER_NAMES: tuple[str, ...] = ("serpapi", "mock")


def get_provider(name: str | None = None, settings: Settings | None = None) -> FlightProvider:
    """
    Costruisce il provider richiesto (default: settings.flight_provider).

    Raises:
        ValueError se il nome non è tra PROVIDER_NAMES.
    """
    settings = settings or default_settings
    name = (name or settings.flight_provider).lower()

    if name == "serpapi":
        return GoogleFlightsProvider(
            settings.serpapi_api_key,
            timeout=settings.request_timeout_seconds,
            max_connections=settings.max_concurrent_calls,
            max_range_days=settings.max_range_days,
        )
    if name == "mock":
        return MockProvider()
    raise ValueError(f"unknown flight provider {name!r} (expected one of {', '.join(PROVIDER_NAMES)})")
