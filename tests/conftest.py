import asyncio
import os
from datetime import datetime, timedelta

# Must be set before fx_quotes builds its global engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy.orm import sessionmaker

from fx_quotes.api.schemas import Currency, Quote
from fx_quotes.core.database import build_engine, init_db
from fx_quotes.services.quote_store import QuoteStore


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class StubAggregator:
    """Returns queued results in order; repeats the last one when exhausted."""

    def __init__(self, *results, delay: float = 0.0) -> None:
        self.results = list(results)
        self.delay = delay
        self.calls = 0
        self.calls_by_currency: dict = {}

    async def aggregate(self, currency: Currency):
        self.calls += 1
        self.calls_by_currency[currency] = self.calls_by_currency.get(currency, 0) + 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return list(result)


def make_quote(buy: float, sell: float, source: str = "https://example.com") -> Quote:
    return Quote(buy_price=buy, sell_price=sell, source=source)


THREE_QUOTES = [
    make_quote(100, 102, "https://a.example"),
    make_quote(98, 101, "https://b.example"),
    make_quote(102, 103, "https://c.example"),
]


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'quotes.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return QuoteStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0))
