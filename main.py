import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from financeflow.config import CORS_ORIGINS, EXCHANGE_RATE_REFRESH_INTERVAL, LOG_LEVEL
from financeflow.database import dispose_engine
from financeflow.routers import (
    budgets,
    categories,
    exchange_rates,
    payment_methods,
    profile,
    tags,
    templates,
    transactions,
    transfers,
)
from financeflow.services.exchange_rates import start_periodic_refresh

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    refresh_task = None
    if EXCHANGE_RATE_REFRESH_INTERVAL > 0:
        # Keep a reference so the task is not garbage collected
        refresh_task = asyncio.create_task(start_periodic_refresh(EXCHANGE_RATE_REFRESH_INTERVAL))
    else:
        logger.info("Background exchange rate refresh disabled")

    yield

    logger.info("Shutting down background tasks...")
    if refresh_task:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            logger.info("Exchange rate refresh task cancelled")

    await dispose_engine()


# --- FastAPI Initialization ---
app = FastAPI(title="FinanceFlow API", lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- API Routers ---
app.include_router(profile.router, prefix="/api")
app.include_router(categories.router, prefix="/api")
app.include_router(tags.router, prefix="/api")
app.include_router(payment_methods.router, prefix="/api")
app.include_router(transactions.router, prefix="/api")
app.include_router(transfers.router, prefix="/api")
app.include_router(budgets.router, prefix="/api")
app.include_router(exchange_rates.router, prefix="/api")
app.include_router(templates.router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}
