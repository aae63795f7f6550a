"""
Freshness-bounded quote cache for FX Quote Aggregator.
Serves the stored snapshot while it is fresh and runs at most one refresh
per currency at a time; concurrent callers share the in-flight result.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..api.schemas import Currency, Quote
from ..core.config import settings
from ..core.logging_config import create_logger
from ..services.aggregator import QuoteAggregator, aggregator_service
from ..services.quote_store import PersistenceError, QuoteStore, quote_store, utcnow

logger = create_logger(__name__)


class QuoteCacheService:
    """Coordinates cache reads and deduplicated refreshes per currency."""

    def __init__(
        self,
        store: Optional[QuoteStore] = None,
        aggregator: Optional[QuoteAggregator] = None,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._store = store or quote_store
        self._aggregator = aggregator or aggregator_service
        self._ttl_seconds = ttl_seconds or settings.cache_ttl_seconds
        self._clock = clock or utcnow
        self._refreshes: Dict[Currency, asyncio.Task] = {}
        self._refresh_lock = asyncio.Lock()

    def is_refreshing(self, currency: Currency) -> bool:
        """Whether an aggregation pass for currency is in flight."""
        return currency in self._refreshes

    def _is_fresh(self, fetched_at: datetime) -> bool:
        return (self._clock() - fetched_at).total_seconds() < self._ttl_seconds

    async def get_quotes(self, currency: Currency) -> List[Quote]:
        """
        Get the quote set for a currency.

        Returns the stored snapshot while it is fresh. Otherwise joins the
        in-flight refresh for the currency, or starts one. Callers joining
        the same refresh receive the same list object.
        """
        last_fetched_at = await self._store.last_fetched_at(currency)
        if last_fetched_at is not None and self._is_fresh(last_fetched_at):
            logger.debug("Serving cached quotes", extra={
                "currency": currency.value,
                "fetched_at": last_fetched_at.isoformat()
            })
            return await self._store.load(currency)

        async with self._refresh_lock:
            refresh = self._refreshes.get(currency)
            if refresh is None:
                # Another caller may have finished a refresh since the read above
                last_fetched_at = await self._store.last_fetched_at(currency)
                if last_fetched_at is None or not self._is_fresh(last_fetched_at):
                    refresh = asyncio.create_task(self._refresh(currency))
                    self._refreshes[currency] = refresh
            else:
                logger.info("Waiting for in-flight refresh", extra={"currency": currency.value})

        if refresh is None:
            return await self._store.load(currency)

        # A cancelled caller must not cancel the refresh shared with other callers
        return await asyncio.shield(refresh)

    async def _refresh(self, currency: Currency) -> List[Quote]:
        try:
            logger.info("Refreshing quotes from sources", extra={"currency": currency.value})

            try:
                quotes = await self._aggregator.aggregate(currency)
            except Exception as e:
                logger.error("Aggregation failed, serving stored quotes", extra={
                    "currency": currency.value,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                return await self._store.load(currency)

            if not quotes:
                logger.warning("No quotes collected, serving stored quotes", extra={
                    "currency": currency.value
                })
                return await self._store.load(currency)

            try:
                await self._store.save(currency, quotes, fetched_at=self._clock())
            except PersistenceError as e:
                logger.error("Failed to store refreshed quotes", extra={
                    "currency": currency.value,
                    "count": len(quotes),
                    "error": e.message
                })
            except Exception as e:
                logger.error("Unexpected error storing refreshed quotes", extra={
                    "currency": currency.value,
                    "count": len(quotes),
                    "error": str(e),
                    "error_type": type(e).__name__
                })
            else:
                logger.info("Cached refreshed quotes", extra={
                    "currency": currency.value,
                    "count": len(quotes)
                })

            return quotes

        finally:
            self._refreshes.pop(currency, None)


# Global cache service instance
cache_service = QuoteCacheService()
