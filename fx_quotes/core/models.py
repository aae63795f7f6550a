from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base


class QuoteRecord(Base):
    """
    One source's persisted quote inside the current snapshot of a currency
    """
    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    currency = Column(String(3), nullable=False)
    buy_price = Column(Numeric(precision=10, scale=4), nullable=False)
    sell_price = Column(Numeric(precision=10, scale=4), nullable=False)
    source = Column(String(255), nullable=False)
    fetched_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("currency", "source", name="uq_quotes_currency_source"),
        Index("idx_currency_fetched", "currency", "fetched_at"),
    )

    def __repr__(self):
        return f"<QuoteRecord(currency='{self.currency}', source='{self.source}', buy_price={self.buy_price})>"
