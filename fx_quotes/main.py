"""
Main FastAPI application for FX Quote Aggregator Service.
Includes lifespan management for database and source initialization.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import time

from fx_quotes.api.endpoints import router as api_router
from fx_quotes.api.schemas import ApiDescription, Currency, ErrorResponse
from fx_quotes.core.config import settings
from fx_quotes.core.database import engine, init_db
from fx_quotes.core.logging_config import setup_logging, create_logger
from fx_quotes.services.aggregator import aggregator_service

# Setup logging first
setup_logging()
logger = create_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    The service cannot start without its database.
    """
    logger.info("Starting FX Quote Aggregator Service", extra={
        "version": settings.app_version,
        "debug": settings.debug
    })

    try:
        init_db()
        await aggregator_service.initialize()
        logger.info("FX Quote Aggregator Service started successfully", extra={"port": settings.port})

    except Exception as e:
        logger.error("Failed to start FX Quote Aggregator Service", extra={"error": str(e)})
        raise

    yield  # Application is running

    logger.info("Shutting down FX Quote Aggregator Service")

    try:
        await aggregator_service.shutdown()
        engine.dispose()
        logger.info("FX Quote Aggregator Service shutdown completed")

    except Exception as e:
        logger.error("Error during service shutdown", extra={"error": str(e)})


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Aggregates BRL and ARS exchange-rate quotes from multiple sources",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests and responses."""
    start_time = time.time()

    try:
        response = await call_next(request)

    except Exception as e:
        process_time = time.time() - start_time
        logger.error("Request failed", extra={
            "method": request.method,
            "url": str(request.url),
            "error": str(e),
            "process_time": round(process_time, 4),
            "client_ip": request.client.host if request.client else None
        })
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal Server Error",
                message="An unexpected error occurred"
            ).model_dump(exclude_none=True)
        )

    process_time = time.time() - start_time
    logger.info("Request completed", extra={
        "method": request.method,
        "url": str(request.url),
        "status_code": response.status_code,
        "process_time": round(process_time, 4),
        "client_ip": request.client.host if request.client else None
    })
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Exception handlers
@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handle unknown routes with a structured response."""
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(
            error="Not Found",
            message=f"Route {request.method} {request.url.path} not found"
        ).model_dump(exclude_none=True)
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    """Handle 500 errors with structured response."""
    logger.error("Internal server error", extra={
        "path": request.url.path,
        "method": request.method,
        "error": str(exc)
    })

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            message="An unexpected error occurred"
        ).model_dump(exclude_none=True)
    )


# Include API routes
app.include_router(api_router, tags=["FX Quotes API"])


# Root endpoint
@app.get("/", response_model=ApiDescription)
async def root():
    """Describe the API."""
    return ApiDescription(
        message=settings.app_name,
        endpoints={
            name: " or ".join(f"GET /{name}?currency={c.value}" for c in Currency)
            for name in ("quotes", "average", "slippage")
        },
        supported_currencies=[c.value for c in Currency]
    )


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "fx_quotes.main:app",
        host=settings.server_host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=False
    )


if __name__ == "__main__":
    run()
