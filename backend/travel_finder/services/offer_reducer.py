"""
Offer reducer: sceglie l'offerta più economica con prezzo definito.

Funzione pura e totale: non solleva eccezioni e non usa la rete.
"""
from collections.abc import Iterable
from datetime import date

from travel_finder.services.providers.base import Offer


def _sort_key(offer: Offer) -> tuple:
    # A parità di prezzo decidono gli altri campi: il vincitore non dipende
    # dall'ordine in cui il provider ha restituito le offerte.
    return (
        offer.price,
        offer.outbound_date,
        offer.return_date or date.max,
        offer.duration_minutes,
        offer.airline,
    )


def reduce_offers(offers: Iterable[Offer]) -> Offer | None:
    """
    Offerta a prezzo minimo, ignorando quelle con prezzo 0 o mancante.

    None se nessuna offerta in input ha un prezzo utilizzabile (input vuoto compreso).
    """
    best: Offer | None = None
    for offer in offers:
        if not offer.price or offer.price < 0:
            continue
        if best is None or _sort_key(offer) < _sort_key(best):
            best = offer
    return best
