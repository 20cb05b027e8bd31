import logging
import time
from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.config import EXCHANGE_RATE_CRON_SECRET
from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.models.schemas import ManualRateCreate, RateLookup
from financeflow.services.exchange_rates import ExchangeRateService

router = APIRouter(tags=["exchange-rates"])
logger = logging.getLogger(__name__)


@router.get("/exchange-rates/rate", response_model=RateLookup)
async def get_rate(
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    on_date: date | None = Query(None, alias="date"),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    lookup = await ExchangeRateService(session).get_rate(from_currency, to_currency, on_date)
    # Keep whatever the lookup cached
    await commit_or_raise(session)
    if lookup.rate is None:
        raise HTTPException(
            status_code=404,
            detail=f"Exchange rate not available for {from_currency.upper()} to {to_currency.upper()}",
        )
    return lookup


@router.get("/exchange-rates")
async def get_all_rates(
    base: str | None = Query(None, min_length=3, max_length=3),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    base_currency = (base or profile.currency).upper()
    rates = await ExchangeRateService(session).get_all_rates(base_currency)
    return {"base_currency": base_currency, "rates": rates}


@router.post("/exchange-rates/manual", status_code=201)
async def set_manual_rate(
    data: ManualRateCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    row = await ExchangeRateService(session).set_manual_rate(data.from_currency, data.to_currency, data.rate)
    await commit_or_raise(session)
    return {
        "from_currency": row.from_currency,
        "to_currency": row.to_currency,
        "rate": row.rate,
        "date": row.date,
        "source": row.source,
    }


@router.get("/cron/refresh-rates")
async def refresh_rates(
    authorization: str | None = Header(None),
    session: AsyncSession = Depends(get_session),
):
    """Scheduled refresh of every cached pair. Called by an external scheduler."""
    if not EXCHANGE_RATE_CRON_SECRET:
        logger.error("EXCHANGE_RATE_CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Server misconfiguration")

    if authorization != f"Bearer {EXCHANGE_RATE_CRON_SECRET}":
        logger.warning("Unauthorized cron request")
        raise HTTPException(status_code=401, detail="Unauthorized")

    started = time.monotonic()
    logger.info("Starting scheduled exchange rate refresh...")

    service = ExchangeRateService(session)
    marked_stale = await service.mark_stale_rates()
    refreshed = await service.refresh_all_rates()
    cleaned_up = await service.cleanup_old_rates()
    await commit_or_raise(session)

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"Exchange rate refresh completed in {duration_ms}ms")

    return {
        "success": True,
        "message": "Exchange rates refreshed successfully",
        "timestamp": datetime.now(UTC).isoformat(),
        "duration_ms": duration_ms,
        "refreshed": refreshed,
        "marked_stale": marked_stale,
        "cleaned_up": cleaned_up,
    }
