"""
FastAPI endpoints for FX Quote Aggregator Service.
"""

from typing import List, Optional, Union
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..api.schemas import (
    AverageResponse, Currency, ErrorResponse, HealthResponse, Quote, SlippageEntry
)
from ..core.config import settings
from ..core.logging_config import create_logger
from ..services.cache import QuoteCacheService, cache_service
from ..services.calculator import calculate_average, calculate_slippage

logger = create_logger(__name__)

# Create API router
router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid currency"},
    404: {"model": ErrorResponse, "description": "No quotes available"},
    500: {"model": ErrorResponse, "description": "Statistics could not be computed"},
}

CURRENCY_QUERY = Query(None, description="Currency quoted against USD", examples=["BRL", "ARS"])


def get_cache_service() -> QuoteCacheService:
    """Dependency returning the process-wide quote cache."""
    return cache_service


def _error(status_code: int, error: str, **kwargs) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, **kwargs).model_dump(exclude_none=True)
    )


def _invalid_currency(endpoint: str) -> JSONResponse:
    currencies = " or ".join(c.value for c in Currency)
    usage = " or ".join(f"/{endpoint}?currency={c.value}" for c in Currency)
    return _error(400, f"Invalid currency parameter. Must be {currencies}", usage=usage)


def _no_quotes(currency: Currency) -> JSONResponse:
    return _error(404, f"No quotes available for {currency.value}", message="Please try again later")


async def _resolve_quotes(
    endpoint: str,
    currency_param: Optional[str],
    cache: QuoteCacheService
) -> Union[List[Quote], JSONResponse]:
    """Validate the currency parameter and fetch its quote set."""
    currency = Currency.parse(currency_param)
    if currency is None:
        logger.info("Rejected request with invalid currency", extra={
            "endpoint": endpoint,
            "currency": currency_param
        })
        return _invalid_currency(endpoint)

    quotes = await cache.get_quotes(currency)
    if not quotes:
        logger.warning("No quotes available", extra={"endpoint": endpoint, "currency": currency.value})
        return _no_quotes(currency)
    return quotes


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness probe."""
    return HealthResponse(status="healthy", version=settings.app_version)


@router.get("/quotes", response_model=List[Quote], responses=ERROR_RESPONSES)
async def get_quotes(
    currency: Optional[str] = CURRENCY_QUERY,
    cache: QuoteCacheService = Depends(get_cache_service)
):
    """
    Get the quotes from every source that answered for a currency.

    Args:
        currency: BRL or ARS (case-insensitive)

    Returns:
        List of quotes with buy price, sell price and source
    """
    try:
        result = await _resolve_quotes("quotes", currency, cache)
        if isinstance(result, JSONResponse):
            return result

        logger.info("Quotes served", extra={"currency": currency.upper(), "count": len(result)})
        return result

    except Exception as e:
        logger.error("Failed to retrieve quotes", extra={"currency": currency, "error": str(e)})
        return _error(500, "Internal server error", message="Failed to fetch quotes")


@router.get("/average", response_model=AverageResponse, responses=ERROR_RESPONSES)
async def get_average(
    currency: Optional[str] = CURRENCY_QUERY,
    cache: QuoteCacheService = Depends(get_cache_service)
):
    """
    Get the average buy and sell price across sources for a currency.
    """
    try:
        result = await _resolve_quotes("average", currency, cache)
        if isinstance(result, JSONResponse):
            return result

        averages = calculate_average(result)
        if averages.average_buy_price is None or averages.average_sell_price is None:
            logger.error("Averages unavailable for non-empty quote set", extra={
                "currency": currency,
                "count": len(result)
            })
            return _error(500, "Failed to calculate averages", message="Invalid quote data")

        return averages

    except Exception as e:
        logger.error("Failed to calculate averages", extra={"currency": currency, "error": str(e)})
        return _error(500, "Internal server error", message="Failed to calculate averages")


@router.get("/slippage", response_model=List[SlippageEntry], responses=ERROR_RESPONSES)
async def get_slippage(
    currency: Optional[str] = CURRENCY_QUERY,
    cache: QuoteCacheService = Depends(get_cache_service)
):
    """
    Get each source's percentage deviation from the average for a currency.
    """
    try:
        result = await _resolve_quotes("slippage", currency, cache)
        if isinstance(result, JSONResponse):
            return result

        slippage = calculate_slippage(result)
        if not slippage:
            logger.error("Slippage unavailable for non-empty quote set", extra={
                "currency": currency,
                "count": len(result)
            })
            return _error(500, "Failed to calculate slippage", message="Invalid quote data")

        return slippage

    except Exception as e:
        logger.error("Failed to calculate slippage", extra={"currency": currency, "error": str(e)})
        return _error(500, "Internal server error", message="Failed to calculate slippage")
