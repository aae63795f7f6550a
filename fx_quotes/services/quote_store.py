"""
SQL-backed snapshot store for FX Quote Aggregator.
Keeps exactly one quote snapshot per currency.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..api.schemas import Currency, Quote
from ..core.database import SessionLocal
from ..core.logging_config import create_logger
from ..core.models import QuoteRecord

logger = create_logger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the stored fetched_at column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PersistenceError(Exception):
    """Raised when a snapshot cannot be written."""

    def __init__(self, message: str, currency: Currency):
        self.message = message
        self.currency = currency
        super().__init__(self.message)


class QuoteStore:
    """Persists the latest quote snapshot per currency."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    async def save(
        self,
        currency: Currency,
        quotes: List[Quote],
        fetched_at: Optional[datetime] = None
    ) -> None:
        """
        Replace the snapshot for a currency.

        The delete and insert run in one transaction. Saving an empty quote
        list is a no-op that keeps the previous snapshot.

        Raises:
            PersistenceError: If the snapshot could not be written
        """
        if not quotes:
            logger.debug("Skipping save of empty quote set", extra={"currency": currency.value})
            return
        await asyncio.to_thread(self._save, currency, quotes, fetched_at or utcnow())

    async def load(self, currency: Currency) -> List[Quote]:
        """Get the current snapshot, or an empty list if none can be read."""
        try:
            return await asyncio.to_thread(self._load, currency)
        except SQLAlchemyError as e:
            logger.error("Failed to load quotes", extra={
                "currency": currency.value,
                "error": str(e)
            })
            return []

    async def last_fetched_at(self, currency: Currency) -> Optional[datetime]:
        """Capture time of the current snapshot, or None if unknown."""
        try:
            return await asyncio.to_thread(self._last_fetched_at, currency)
        except SQLAlchemyError as e:
            logger.error("Failed to read last fetch time", extra={
                "currency": currency.value,
                "error": str(e)
            })
            return None

    def _save(self, currency: Currency, quotes: List[Quote], fetched_at: datetime) -> None:
        try:
            with self._session_factory() as session, session.begin():
                session.execute(delete(QuoteRecord).where(QuoteRecord.currency == currency.value))
                session.add_all([
                    QuoteRecord(
                        currency=currency.value,
                        buy_price=quote.buy_price,
                        sell_price=quote.sell_price,
                        source=quote.source,
                        fetched_at=fetched_at
                    )
                    for quote in quotes
                ])
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save {currency.value} quotes: {e}", currency) from e

        logger.debug("Stored quotes", extra={
            "currency": currency.value,
            "count": len(quotes),
            "fetched_at": fetched_at.isoformat()
        })

    def _load(self, currency: Currency) -> List[Quote]:
        with self._session_factory() as session:
            rows = session.execute(
                select(QuoteRecord)
                .where(QuoteRecord.currency == currency.value)
                .order_by(QuoteRecord.fetched_at.desc(), QuoteRecord.source.asc())
            ).scalars().all()
            return [
                Quote(
                    buy_price=float(row.buy_price),
                    sell_price=float(row.sell_price),
                    source=row.source
                )
                for row in rows
            ]

    def _last_fetched_at(self, currency: Currency) -> Optional[datetime]:
        with self._session_factory() as session:
            return session.execute(
                select(func.max(QuoteRecord.fetched_at)).where(QuoteRecord.currency == currency.value)
            ).scalar()


# Global quote store instance
quote_store = QuoteStore()
