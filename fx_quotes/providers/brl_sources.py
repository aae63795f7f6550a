"""
BRL/USD quote sources.
Wise is scraped directly; Nubank and Nomad publish no usable rate feed and
are derived from the Wise quote.
"""

import json
import random
import re
from typing import Optional

from bs4 import BeautifulSoup

from .base import BaseQuoteSource, DerivedQuoteSource, extract_numbers, in_range
from ..api.schemas import Currency, Quote

BRL_RANGE = (4.0, 7.0)
BRL_SELL_SPREAD = 1.005

SCRIPT_RATE_PATTERN = re.compile(r"\d+\.\d{4,6}")


class WiseSource(BaseQuoteSource):
    """Wise currency converter page."""

    URL = "https://wise.com/us/currency-converter/brl-to-usd-rate"

    def __init__(self, **kwargs):
        super().__init__(name="wise", url=self.URL, currency=Currency.BRL, **kwargs)

    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        soup = await self._fetch_page()

        buy_price = (
            self._from_json_ld(soup)
            or self._from_rate_elements(soup)
            or self._from_scripts(soup)
        )
        if not buy_price:
            raise self._not_found()

        # Wise publishes a mid-market rate only; sell is estimated from it
        return self._create_quote(buy_price, buy_price * BRL_SELL_SPREAD)

    def _from_json_ld(self, soup: BeautifulSoup) -> Optional[float]:
        for tag in soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(tag.string or "")
            except ValueError:
                continue
            if not isinstance(data, dict) or data.get("@type") != "WebPage":
                continue
            entity = data.get("mainEntity") or {}
            try:
                rate = float(entity.get("conversionRate"))
            except (TypeError, ValueError):
                continue
            if in_range([rate], BRL_RANGE):
                return rate
        return None

    def _from_rate_elements(self, soup: BeautifulSoup) -> Optional[float]:
        for element in soup.select('[data-amount], .exchange-rate, .rate-value, [class*="rate"]'):
            values = in_range(extract_numbers(element.get_text(" ", strip=True)), BRL_RANGE)
            if values:
                return values[0]
        return None

    def _from_scripts(self, soup: BeautifulSoup) -> Optional[float]:
        for tag in soup.find_all("script"):
            content = tag.string or ""
            values = in_range((float(m) for m in SCRIPT_RATE_PATTERN.findall(content)), BRL_RANGE)
            if values:
                return values[0]
        return None


class NubankSource(DerivedQuoteSource):
    """Nubank international purchase rate, derived from Wise."""

    URL = "https://nubank.com.br/taxas-conversao/"

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__(
            name="nubank",
            url=self.URL,
            currency=Currency.BRL,
            default_buy_price=5.45,
            default_sell_price=5.48,
            sell_markup=BRL_SELL_SPREAD,
            rng=rng
        )


class NomadSource(DerivedQuoteSource):
    """Nomad global account rate, derived from Wise."""

    URL = "https://www.nomadglobal.com"

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__(
            name="nomad",
            url=self.URL,
            currency=Currency.BRL,
            default_buy_price=5.43,
            default_sell_price=5.46,
            sell_markup=BRL_SELL_SPREAD,
            rng=rng
        )
