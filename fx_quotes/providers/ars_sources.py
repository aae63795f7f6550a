"""
ARS/USD quote sources scraped from Argentine financial news sites.
"""

import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from .base import BaseQuoteSource, NUMBER_PATTERN, extract_numbers, in_range, parse_number
from ..api.schemas import Currency, Quote

ARS_RANGE = (50.0, 2000.0)
# Applied when a page only exposes the buy side
ARS_SELL_SPREAD = 1.03

BUY_LABEL_PATTERN = re.compile(rf"compra[\s:]*\$?\s*({NUMBER_PATTERN.pattern})", re.IGNORECASE)
SELL_LABEL_PATTERN = re.compile(rf"venta[\s:]*\$?\s*({NUMBER_PATTERN.pattern})", re.IGNORECASE)


def _first_labelled(pattern: re.Pattern, text: str) -> Optional[float]:
    for raw in pattern.findall(text):
        values = in_range([parse_number(raw)], ARS_RANGE)
        if values:
            return values[0]
    return None


def _page_bounds(soup: BeautifulSoup) -> Tuple[Optional[float], Optional[float]]:
    """Lowest and highest plausible values on the whole page."""
    body = soup.body or soup
    values = sorted(set(in_range(extract_numbers(body.get_text(" ")), ARS_RANGE)))
    if not values:
        return None, None
    if len(values) == 1:
        return values[0], None
    return values[0], values[-1]


class ArsQuoteSource(BaseQuoteSource):
    """Common completion rules for ARS scrapers."""

    def _complete(self, buy_price: Optional[float], sell_price: Optional[float]) -> Quote:
        if not buy_price:
            raise self._not_found()
        if not sell_price:
            sell_price = buy_price * ARS_SELL_SPREAD
        return self._create_quote(buy_price, sell_price)


class AmbitoSource(ArsQuoteSource):
    """Ambito dollar page."""

    URL = "https://www.ambito.com/contenidos/dolar.html"

    def __init__(self, **kwargs):
        super().__init__(name="ambito", url=self.URL, currency=Currency.ARS, **kwargs)

    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        soup = await self._fetch_page()

        buy_price = self._first_value(soup, '[class*="compra"], [data-compra], [class*="buy"], [data-buy]')
        sell_price = self._first_value(soup, '[class*="venta"], [data-venta], [class*="sell"], [data-sell]')

        if not buy_price:
            section = soup.select_one('[class*="dolar"], [id*="dolar"], section')
            if section is not None:
                values = in_range(extract_numbers(section.get_text(" ")), ARS_RANGE)
                if values:
                    buy_price = values[0]
                if len(values) >= 2 and not sell_price:
                    sell_price = values[1]

        return self._complete(buy_price, sell_price)

    @staticmethod
    def _first_value(soup: BeautifulSoup, selector: str) -> Optional[float]:
        for element in soup.select(selector):
            values = in_range(extract_numbers(element.get_text(" ", strip=True)), ARS_RANGE)
            if values:
                return values[0]
        return None


class DolarHoySource(ArsQuoteSource):
    """DolarHoy home page quote cards."""

    URL = "https://www.dolarhoy.com"

    def __init__(self, **kwargs):
        super().__init__(name="dolarhoy", url=self.URL, currency=Currency.ARS, **kwargs)

    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        soup = await self._fetch_page()

        buy_price = None
        sell_price = None
        for card in soup.select('[class*="card"], [class*="tile"], [class*="quote"]'):
            text = card.get_text(" ")
            buy_price = buy_price or _first_labelled(BUY_LABEL_PATTERN, text)
            sell_price = sell_price or _first_labelled(SELL_LABEL_PATTERN, text)
            if buy_price and sell_price:
                break

        if not buy_price or not sell_price:
            low, high = _page_bounds(soup)
            buy_price = buy_price or low
            sell_price = sell_price or high

        return self._complete(buy_price, sell_price)


class CronistaSource(ArsQuoteSource):
    """El Cronista blue dollar page."""

    URL = "https://www.cronista.com/MercadosOnline/moneda.html?id=ARSB"

    def __init__(self, **kwargs):
        super().__init__(name="cronista", url=self.URL, currency=Currency.ARS, **kwargs)

    async def fetch_quote(self, reference: Optional[Quote] = None) -> Quote:
        soup = await self._fetch_page()

        candidates: List[float] = []
        for element in soup.select('[class*="price"], [class*="quote"], [class*="rate"], tr'):
            for value in in_range(extract_numbers(element.get_text(" ", strip=True)), ARS_RANGE):
                if value not in candidates:
                    candidates.append(value)
            if len(candidates) >= 2:
                break

        buy_price = candidates[0] if candidates else None
        sell_price = candidates[1] if len(candidates) >= 2 else None

        if not buy_price or not sell_price:
            low, high = _page_bounds(soup)
            buy_price = buy_price or low
            sell_price = sell_price or high

        return self._complete(buy_price, sell_price)
