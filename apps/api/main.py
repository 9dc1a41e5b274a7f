"""
Crypto Portfolio Tracker: FastAPI Application Entry Point
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import AsyncSessionLocal, dispose_engine, sql_store_scope
from core.errors import PortfolioError
from core.logging_config import configure_logging
from core.responses import err
from feeds.coingecko_client import CoinGeckoClient
from feeds.scheduler import run_price_scheduler
from routers import coins, dashboard, prices, rebalance, transactions
from store.notifier import ChangeNotifier

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.APP_ENV)
    logger.info("api.startup", env=settings.APP_ENV, log_level=settings.LOG_LEVEL)

    notifier = ChangeNotifier()
    feed = CoinGeckoClient(
        base_url=settings.PRICE_FEED_BASE_URL,
        vs_currency=settings.PRICE_VS_CURRENCY,
        api_key=settings.PRICE_FEED_API_KEY,
        timeout=settings.PRICE_FEED_TIMEOUT_SECONDS,
    )
    app.state.notifier = notifier
    app.state.price_feed = feed
    app.state.store_scope = lambda: sql_store_scope(notifier)

    scheduler: asyncio.Task | None = None
    if settings.PRICE_REFRESH_INTERVAL_MINUTES > 0:
        scheduler = asyncio.create_task(
            run_price_scheduler(
                settings.PRICE_REFRESH_INTERVAL_MINUTES, AsyncSessionLocal, feed, notifier
            )
        )

    yield

    if scheduler is not None:
        scheduler.cancel()
        await asyncio.gather(scheduler, return_exceptions=True)
    await feed.close()
    await dispose_engine()
    logger.info("api.shutdown")


app = FastAPI(
    title="Crypto Portfolio Tracker API",
    description="API del tracker personal de portafolio cripto (coste medio, P&L y rebalanceo).",
    version="1.0.0",
    docs_url="/docs" if settings.APP_ENV != "production" else None,
    redoc_url="/redoc" if settings.APP_ENV != "production" else None,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

# ---------------------------------------------------------------------------
# Exception handlers globales: mantienen formato { data, error, meta }
# ---------------------------------------------------------------------------


@app.exception_handler(PortfolioError)
async def portfolio_error_handler(request: Request, exc: PortfolioError) -> JSONResponse:
    logger.info("api.domain_error", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=err(exc.message, code=exc.code))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=err(exc.detail),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=err(f"Error de validación: {exc.errors()}", code="invalid_input"),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=str(request.url), error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=err(f"Error interno del servidor: {type(exc).__name__}"),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(coins.router, prefix="/api/v1/coins", tags=["coins"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["transactions"])
app.include_router(dashboard.router, prefix="/api/v1/dashboard", tags=["dashboard"])
app.include_router(rebalance.router, prefix="/api/v1/rebalance", tags=["rebalance"])
app.include_router(prices.router, prefix="/api/v1/prices", tags=["prices"])


# ---------------------------------------------------------------------------
# Health check (sin auth)
# ---------------------------------------------------------------------------


@app.get("/health", tags=["health"])
async def health_check() -> dict:
    return {"status": "ok", "env": settings.APP_ENV}
