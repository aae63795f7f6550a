"""
Quote aggregation service for FX Quote Aggregator.
Runs every registered source for a currency and collects whatever succeeds.
"""

import asyncio
from typing import Dict, List, Optional

from ..api.schemas import Currency, Quote
from ..core.config import settings
from ..core.logging_config import create_logger
from ..providers.base import BaseQuoteSource, SourceError
from ..providers.ars_sources import AmbitoSource, CronistaSource, DolarHoySource
from ..providers.brl_sources import NomadSource, NubankSource, WiseSource

logger = create_logger(__name__)


class UnsupportedCurrencyError(Exception):
    """Raised when no sources are registered for a currency."""

    def __init__(self, currency):
        self.currency = currency
        super().__init__(f"Unsupported currency: {getattr(currency, 'value', currency)}")


def build_default_sources() -> Dict[Currency, List[BaseQuoteSource]]:
    """Registered sources per currency, in result order."""
    return {
        Currency.BRL: [WiseSource(), NubankSource(), NomadSource()],
        Currency.ARS: [AmbitoSource(), DolarHoySource(), CronistaSource()],
    }


class QuoteAggregator:
    """Collects quotes for a currency from all of its registered sources."""

    def __init__(
        self,
        sources: Optional[Dict[Currency, List[BaseQuoteSource]]] = None,
        primary_sources: Optional[Dict[Currency, str]] = None,
        timeout: Optional[float] = None
    ):
        self._sources = sources if sources is not None else build_default_sources()
        # Name of the source whose quote is handed to the others as reference
        self._primary_sources = primary_sources if primary_sources is not None else {Currency.BRL: "wise"}
        self._timeout = timeout or settings.source_timeout_seconds

    def get_sources(self, currency: Currency) -> List[BaseQuoteSource]:
        try:
            return list(self._sources[currency])
        except KeyError:
            raise UnsupportedCurrencyError(currency) from None

    async def initialize(self) -> None:
        """Open HTTP clients for all sources."""
        for currency, sources in self._sources.items():
            for source in sources:
                try:
                    await source.connect()
                except Exception as e:
                    logger.error("Failed to initialize source", extra={
                        "source": source.name,
                        "currency": currency.value,
                        "error": str(e)
                    })

        logger.info("Quote aggregator initialized", extra={
            "sources": {c.value: [s.name for s in sources] for c, sources in self._sources.items()}
        })

    async def shutdown(self) -> None:
        """Close HTTP clients for all sources."""
        for sources in self._sources.values():
            for source in sources:
                try:
                    await source.disconnect()
                except Exception as e:
                    logger.warning("Error disconnecting source", extra={
                        "source": source.name,
                        "error": str(e)
                    })

        logger.info("Quote aggregator shutdown complete")

    async def aggregate(self, currency: Currency) -> List[Quote]:
        """
        Run one aggregation pass for a currency.

        Sources run concurrently, each bounded by the source timeout. A
        primary source, when configured, runs first and its quote is passed
        to the remaining sources. Failed sources are left out; the result
        keeps registration order and may be empty.

        Raises:
            UnsupportedCurrencyError: If no sources are registered for currency
        """
        sources = self.get_sources(currency)
        primary_name = self._primary_sources.get(currency)
        primary = next((s for s in sources if s.name == primary_name), None)

        results: Dict[int, Optional[Quote]] = {}
        reference = None
        if primary is not None:
            reference = await self._run_source(primary, currency)
            results[id(primary)] = reference

        others = [s for s in sources if s is not primary]
        fetched = await asyncio.gather(*(self._run_source(s, currency, reference) for s in others))
        results.update(zip((id(s) for s in others), fetched))

        quotes: List[Quote] = []
        seen_sources = set()
        for source in sources:
            quote = results.get(id(source))
            if quote is None:
                continue
            if quote.source in seen_sources:
                logger.warning("Dropping duplicate source quote", extra={
                    "currency": currency.value,
                    "source": quote.source
                })
                continue
            seen_sources.add(quote.source)
            quotes.append(quote)

        logger.info("Aggregation pass completed", extra={
            "currency": currency.value,
            "sources_total": len(sources),
            "quotes_received": len(quotes)
        })
        return quotes

    async def _run_source(
        self,
        source: BaseQuoteSource,
        currency: Currency,
        reference: Optional[Quote] = None
    ) -> Optional[Quote]:
        try:
            quote = await asyncio.wait_for(source.fetch_quote(reference), timeout=self._timeout)

        except asyncio.TimeoutError:
            logger.warning("Source timed out", extra={
                "source": source.name,
                "currency": currency.value,
                "timeout": self._timeout
            })
            return None

        except SourceError as e:
            logger.warning("Source failed", extra={
                "source": source.name,
                "currency": currency.value,
                "error": e.message
            })
            return None

        except Exception as e:
            logger.error("Unexpected error from source", extra={
                "source": source.name,
                "currency": currency.value,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return None

        logger.debug("Source quote received", extra={
            "source": source.name,
            "currency": currency.value,
            "buy_price": quote.buy_price,
            "sell_price": quote.sell_price
        })
        return quote


# Global aggregator service instance
aggregator_service = QuoteAggregator()
