import asyncio
from datetime import datetime

from fx_quotes.api.schemas import Currency
from fx_quotes.services.aggregator import UnsupportedCurrencyError
from fx_quotes.services.cache import QuoteCacheService
from fx_quotes.services.quote_store import PersistenceError

from conftest import THREE_QUOTES, StubAggregator, make_quote


def make_service(store, aggregator, clock):
    return QuoteCacheService(store=store, aggregator=aggregator, ttl_seconds=60, clock=clock)


def test_first_request_refreshes_and_stores(store, clock):
    aggregator = StubAggregator(THREE_QUOTES)
    service = make_service(store, aggregator, clock)

    quotes = asyncio.run(service.get_quotes(Currency.ARS))

    assert quotes == THREE_QUOTES
    assert aggregator.calls == 1
    assert asyncio.run(store.last_fetched_at(Currency.ARS)) == clock.now
    assert not service.is_refreshing(Currency.ARS)


def test_fresh_snapshot_is_served_without_refresh(store, clock):
    registration_order = [
        make_quote(5.10, 5.13, "https://wise.example"),
        make_quote(5.12, 5.15, "https://nubank.example"),
        make_quote(5.11, 5.14, "https://nomad.example"),
    ]
    aggregator = StubAggregator(registration_order, [make_quote(1, 2, "https://other.example")])
    service = make_service(store, aggregator, clock)

    first = asyncio.run(service.get_quotes(Currency.BRL))
    clock.advance(59)
    second = asyncio.run(service.get_quotes(Currency.BRL))

    assert aggregator.calls == 1
    # A refresh answers in registration order, the stored snapshot by source
    assert [q.source for q in first] == [q.source for q in registration_order]
    assert [q.source for q in second] == [
        "https://nomad.example",
        "https://nubank.example",
        "https://wise.example",
    ]
    assert sorted(second, key=lambda q: q.source) == sorted(first, key=lambda q: q.source)


def test_stale_snapshot_triggers_refresh(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, [make_quote(97, 99, "https://a.example")])
    service = make_service(store, aggregator, clock)

    asyncio.run(service.get_quotes(Currency.ARS))
    clock.advance(60)
    quotes = asyncio.run(service.get_quotes(Currency.ARS))

    assert aggregator.calls == 2
    assert [(q.buy_price, q.source) for q in quotes] == [(97, "https://a.example")]


def test_concurrent_requests_share_one_refresh(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, delay=0.2)
    service = make_service(store, aggregator, clock)

    async def scenario():
        return await asyncio.gather(*(service.get_quotes(Currency.BRL) for _ in range(10)))

    results = asyncio.run(scenario())

    assert aggregator.calls == 1
    assert all(result is results[0] for result in results)
    assert not service.is_refreshing(Currency.BRL)


def test_refreshes_for_different_currencies_run_independently(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, delay=0.2)
    service = make_service(store, aggregator, clock)

    async def scenario():
        return await asyncio.gather(
            service.get_quotes(Currency.BRL),
            service.get_quotes(Currency.ARS),
            service.get_quotes(Currency.BRL),
        )

    asyncio.run(scenario())

    assert aggregator.calls_by_currency == {Currency.BRL: 1, Currency.ARS: 1}


def test_refresh_is_marked_in_flight(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, delay=0.2)
    service = make_service(store, aggregator, clock)

    async def scenario():
        task = asyncio.create_task(service.get_quotes(Currency.BRL))
        await asyncio.sleep(0.05)
        in_flight = service.is_refreshing(Currency.BRL)
        await task
        return in_flight

    assert asyncio.run(scenario()) is True
    assert not service.is_refreshing(Currency.BRL)


def test_total_failure_serves_stale_snapshot(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, [])
    service = make_service(store, aggregator, clock)
    asyncio.run(service.get_quotes(Currency.ARS))
    first_fetch = clock.now

    clock.advance(120)
    quotes = asyncio.run(service.get_quotes(Currency.ARS))

    assert aggregator.calls == 2
    assert [q.source for q in quotes] == [q.source for q in THREE_QUOTES]
    assert asyncio.run(store.last_fetched_at(Currency.ARS)) == first_fetch


def test_total_failure_without_snapshot_returns_empty(store, clock):
    service = make_service(store, StubAggregator([]), clock)

    assert asyncio.run(service.get_quotes(Currency.BRL)) == []
    assert asyncio.run(store.last_fetched_at(Currency.BRL)) is None


def test_stale_snapshot_keeps_retrying_after_failure(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, [])
    service = make_service(store, aggregator, clock)
    asyncio.run(service.get_quotes(Currency.ARS))
    clock.advance(120)

    asyncio.run(service.get_quotes(Currency.ARS))
    asyncio.run(service.get_quotes(Currency.ARS))

    assert aggregator.calls == 3


def test_refresh_replaces_snapshot_without_merging(store, clock):
    replacement = [make_quote(99, 100, "https://a.example"), make_quote(101, 104, "https://d.example")]
    aggregator = StubAggregator(THREE_QUOTES, replacement)
    service = make_service(store, aggregator, clock)
    asyncio.run(service.get_quotes(Currency.ARS))

    clock.advance(61)
    asyncio.run(service.get_quotes(Currency.ARS))
    clock.advance(1)
    cached = asyncio.run(service.get_quotes(Currency.ARS))

    assert aggregator.calls == 2
    assert [(q.buy_price, q.source) for q in cached] == [
        (99, "https://a.example"),
        (101, "https://d.example"),
    ]


def test_aggregation_fault_returns_to_idle_and_serves_stale(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, RuntimeError("boom"), THREE_QUOTES)
    service = make_service(store, aggregator, clock)
    asyncio.run(service.get_quotes(Currency.ARS))

    clock.advance(61)
    quotes = asyncio.run(service.get_quotes(Currency.ARS))

    assert len(quotes) == 3
    assert not service.is_refreshing(Currency.ARS)

    asyncio.run(service.get_quotes(Currency.ARS))
    assert aggregator.calls == 3


def test_unsupported_currency_fault_is_absorbed(store, clock):
    service = make_service(store, StubAggregator(UnsupportedCurrencyError("EUR")), clock)

    assert asyncio.run(service.get_quotes(Currency.BRL)) == []
    assert not service.is_refreshing(Currency.BRL)


class FailingSaveStore:
    def __init__(self, inner):
        self.inner = inner

    async def save(self, currency, quotes, fetched_at=None):
        raise PersistenceError("disk full", currency)

    async def load(self, currency):
        return await self.inner.load(currency)

    async def last_fetched_at(self, currency):
        return await self.inner.last_fetched_at(currency)


def test_save_failure_still_returns_fresh_quotes(store, clock):
    aggregator = StubAggregator(THREE_QUOTES)
    service = make_service(FailingSaveStore(store), aggregator, clock)

    quotes = asyncio.run(service.get_quotes(Currency.ARS))
    again = asyncio.run(service.get_quotes(Currency.ARS))

    assert quotes == THREE_QUOTES
    assert again == THREE_QUOTES
    # Nothing was cached, so the second request refreshed again
    assert aggregator.calls == 2


def test_cancelled_caller_does_not_cancel_shared_refresh(store, clock):
    aggregator = StubAggregator(THREE_QUOTES, delay=0.2)
    service = make_service(store, aggregator, clock)

    async def scenario():
        impatient = asyncio.create_task(service.get_quotes(Currency.BRL))
        patient = asyncio.create_task(service.get_quotes(Currency.BRL))
        await asyncio.sleep(0.05)
        impatient.cancel()
        return await patient

    quotes = asyncio.run(scenario())

    assert quotes == THREE_QUOTES
    assert aggregator.calls == 1
    assert asyncio.run(store.last_fetched_at(Currency.BRL)) == datetime(2024, 5, 1, 12, 0, 0)


class RaisingSaveStore(FailingSaveStore):
    async def save(self, currency, quotes, fetched_at=None):
        raise RuntimeError("cannot schedule new futures after shutdown")


def test_unexpected_save_error_still_returns_fresh_quotes(store, clock):
    aggregator = StubAggregator(THREE_QUOTES)
    service = make_service(RaisingSaveStore(store), aggregator, clock)

    quotes = asyncio.run(service.get_quotes(Currency.BRL))

    assert quotes == THREE_QUOTES
    assert not service.is_refreshing(Currency.BRL)


class SlowFirstReadStore(FailingSaveStore):
    """Delays the first timestamp read after it has been taken."""

    def __init__(self, inner):
        super().__init__(inner)
        self.slow_reads = 1

    async def save(self, currency, quotes, fetched_at=None):
        await self.inner.save(currency, quotes, fetched_at=fetched_at)

    async def last_fetched_at(self, currency):
        value = await self.inner.last_fetched_at(currency)
        if self.slow_reads:
            self.slow_reads -= 1
            await asyncio.sleep(0.3)
        return value


def test_late_caller_with_stale_read_joins_finished_refresh(store, clock):
    aggregator = StubAggregator(THREE_QUOTES)
    service = make_service(SlowFirstReadStore(store), aggregator, clock)

    async def scenario():
        late = asyncio.create_task(service.get_quotes(Currency.ARS))
        await asyncio.sleep(0.05)
        await service.get_quotes(Currency.ARS)
        return await late

    quotes = asyncio.run(scenario())

    assert aggregator.calls == 1
    assert [q.source for q in quotes] == [q.source for q in THREE_QUOTES]
