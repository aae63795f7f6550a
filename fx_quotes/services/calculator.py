"""
Cross-source statistics over a single quote set.
"""

from typing import List, Optional, Sequence

from ..api.schemas import AverageResponse, Quote, SlippageEntry

PRECISION = 4


def calculate_average(quotes: Sequence[Quote]) -> AverageResponse:
    """Mean buy and sell price, or nulls when there is nothing to average."""
    valid_quotes = [q for q in quotes or [] if q.buy_price and q.sell_price]
    if not valid_quotes:
        return AverageResponse(average_buy_price=None, average_sell_price=None)

    average_buy = sum(q.buy_price for q in valid_quotes) / len(valid_quotes)
    average_sell = sum(q.sell_price for q in valid_quotes) / len(valid_quotes)

    return AverageResponse(
        average_buy_price=round(average_buy, PRECISION),
        average_sell_price=round(average_sell, PRECISION)
    )


def percentage_difference(value: float, average: Optional[float]) -> float:
    """(value - average) / average in percent; 0 when average is 0 or missing."""
    if not average:
        return 0.0
    return (value - average) / average * 100


def calculate_slippage(quotes: Sequence[Quote]) -> List[SlippageEntry]:
    """Per-source deviation from the cross-source average."""
    averages = calculate_average(quotes)
    if averages.average_buy_price is None or averages.average_sell_price is None:
        return []

    return [
        SlippageEntry(
            buy_price_slippage=round(percentage_difference(q.buy_price, averages.average_buy_price), PRECISION),
            sell_price_slippage=round(percentage_difference(q.sell_price, averages.average_sell_price), PRECISION),
            source=q.source
        )
        for q in quotes
    ]
