"""
Limiter in-process per proteggere il pricing service esterno.

Uso tipico:
    limiter = CallLimiter(max_concurrent=8, timeout=60)
    offers = await limiter.call(provider.get_offers, query)

Note:
- Ogni chiamata al provider (sonda, richieste del price graph, offerte)
  passa da qui, una chiamata per slot:
  al massimo max_concurrent chiamate sono in volo contemporaneamente,
  indipendentemente da quante coppie di date restituisce il price graph.
- Il timeout vale per la singola chiamata, attesa del semaforo esclusa.
- Un timeout diventa ProviderTimeoutError (sottoclasse di FlightProviderError).
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from travel_finder.services.providers.base import ProviderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallLimiter:

    def __init__(self, max_concurrent: int = 8, timeout: float | None = None) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Numero di chiamate che occupano uno slot in questo momento."""
        return self._in_flight

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Esegue fn(*args, **kwargs) dentro uno slot del limiter.

        Args:
            fn: coroutine function (di solito un metodo di FlightProvider).

        Returns:
            Il valore restituito da fn.

        Raises:
            ProviderTimeoutError se la chiamata supera self.timeout secondi.
        """
        async with self._semaphore:
            self._in_flight += 1
            try:
                return await asyncio.wait_for(fn(*args, **kwargs), self.timeout)
            except asyncio.TimeoutError as exc:
                name = getattr(fn, "__name__", repr(fn))
                logger.warning("%s: no answer after %ss", name, self.timeout)
                raise ProviderTimeoutError(
                    f"{name} timed out after {self.timeout}s"
                ) from exc
            finally:
                self._in_flight -= 1


async def gather_or_cancel(aws: Iterable[Awaitable[T]]) -> list[T]:
    """
    Come asyncio.gather, ma al primo errore i task fratelli vengono
    cancellati e attesi prima di rilanciare l'errore.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
