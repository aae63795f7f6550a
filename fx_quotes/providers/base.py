"""
Abstract base class for quote sources in FX Quote Aggregator.
Defines the interface that every source adapter implements.
"""

import random
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple
import httpx
from bs4 import BeautifulSoup

from ..api.schemas import Currency, Quote
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

# Thousands-and-decimal forms first, so "1.234,56" is not read as "1.234"
NUMBER_PATTERN = re.compile(r"\d{1,3}(?:\.\d{3})+,\d{1,4}|\d{1,3}(?:,\d{3})+\.\d{1,4}|\d+[.,]\d{2,6}")

PriceRange = Tuple[float, float]


class SourceError(Exception):
    """Base exception for source errors."""

    def __init__(self, message: str, source: str, currency: Optional[Currency] = None):
        self.message = message
        self.source = source
        self.currency = currency
        super().__init__(self.message)


class SourceUnavailableError(SourceError):
    """Exception raised when a source page cannot be retrieved."""
    pass


class RateNotFoundError(SourceError):
    """Exception raised when no plausible rate is found on a source page."""
    pass


def parse_number(raw: str) -> float:
    """
    Parse a localized decimal string.

    When both separators are present the last one is the decimal mark
    ("1.234,56" and "1,234.56" are both 1234.56); a lone comma is a
    decimal mark ("5,12" is 5.12).
    """
    value = raw.strip().lstrip("$").strip()
    if "," in value and "." in value:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    else:
        value = value.replace(",", ".")
    return float(value)


def extract_numbers(text: str) -> List[float]:
    """All decimal numbers found in text, in document order."""
    numbers = []
    for match in NUMBER_PATTERN.findall(text or ""):
        try:
            numbers.append(parse_number(match))
        except ValueError:
            continue
    return numbers


def in_range(values: Iterable[float], price_range: PriceRange) -> List[float]:
    """Keep values strictly inside price_range."""
    low, high = price_range
    return [v for v in values if low < v < high]


class BaseQuoteSource(ABC):
    """Abstract base class for FX quote sources."""

    def __init__(
        self,
        name: str,
        url: str,
        currency: Currency,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self.name = name
        self.url = url
        self.currency = currency
        self.client = client
        self.timeout = timeout or settings.source_timeout_seconds
        self._owns_client = client is None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._get_default_headers(),
                follow_redirects=True
            )
            self._owns_client = True
            logger.debug("Connected to source", extra={"source": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from source", extra={"source": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
            "Accept": "text/html,application/xhtml+xml"
        }

    async def _fetch_page(self, url: Optional[str] = None) -> BeautifulSoup:
        """Download a page and parse it into a BeautifulSoup tree."""
        if not self.client:
            await self.connect()

        target = url or self.url
        try:
            response = await self.client.get(target, headers=self._get_default_headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceUnavailableError(
                f"Failed to fetch {target}: {e}",
                self.name,
                self.currency
            ) from e

        logger.debug("Fetched source page", extra={
            "source": self.name,
            "status_code": response.status_code,
            "response_size": len(response.content)
        })
        return BeautifulSoup(response.text, "html.parser")

    def _create_quote(self, buy_price: float, sell_price: float) -> Quote:
        """Create a standardized Quote object."""
        return Quote(
            buy_price=round(buy_price, 4),
            sell_price=round(sell_price, 4),
            source=self.url
        )

    def _not_found(self) -> RateNotFoundError:
        return RateNotFoundError(
            f"Could not find {self.currency.value}/USD rate on {self.name}",
            self.name,
            self.currency
        )

    @abstractmethod
    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        """
        Get the current buy/sell quote from this source.

        Args:
            reference: Quote from the currency's primary source in the same
                pass, or None when there is no primary or it failed

        Returns:
            Quote object

        Raises:
            SourceError: If unable to produce a quote
        """
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name='{self.name}', currency='{self.currency.value}')>"


class DerivedQuoteSource(BaseQuoteSource):
    """
    Source without a public rate feed.

    Quotes are derived from the primary source's buy price with a small
    random perturbation and a fixed sell markup; without a reference quote
    the configured default prices are returned.
    """

    def __init__(
        self,
        name: str,
        url: str,
        currency: Currency,
        default_buy_price: float,
        default_sell_price: float,
        max_deviation: float = 0.005,
        sell_markup: float = 1.005,
        rng: Optional[random.Random] = None
    ):
        super().__init__(name=name, url=url, currency=currency)
        self.default_buy_price = default_buy_price
        self.default_sell_price = default_sell_price
        self.max_deviation = max_deviation
        self.sell_markup = sell_markup
        self._rng = rng or random.Random()

    async def connect(self) -> None:
        # No remote calls
        return None

    async def disconnect(self) -> None:
        return None

    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        if reference is None:
            logger.info("Primary quote unavailable, using default rate", extra={
                "source": self.name,
                "currency": self.currency.value,
                "buy_price": self.default_buy_price
            })
            return self._create_quote(self.default_buy_price, self.default_sell_price)

        deviation = self._rng.uniform(-self.max_deviation, self.max_deviation)
        buy_price = reference.buy_price * (1 + deviation)
        return self._create_quote(buy_price, buy_price * self.sell_markup)
