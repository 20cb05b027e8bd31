import asyncio
import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, InvalidOperation

import httpx
from sqlalchemy import and_, delete, desc, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.config import EXCHANGE_RATE_API_URL, EXCHANGE_RATE_CACHE_TTL_HOURS
from financeflow.constants import FALLBACK_RATE_CURRENCIES, RATE_API_PROVIDER, RATE_RETENTION_DAYS
from financeflow.database import async_session_maker
from financeflow.models.schemas import RateLookup
from financeflow.models.sql import ExchangeRateDB, PaymentMethodDB

logger = logging.getLogger(__name__)

RATE_PRECISION = Decimal("0.00000001")


def _quantize_rate(value: Decimal) -> Decimal | None:
    rate = value.quantize(RATE_PRECISION)
    return rate if rate > 0 else None


class ExchangeRateService:
    """
    Database-backed exchange rate cache.

    Rows are fresh until ``expires_at``; after that they are marked stale and only
    used when the external API cannot be reached. Manual rates never expire.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=EXCHANGE_RATE_CACHE_TTL_HOURS)

    async def get_rate(self, from_currency: str, to_currency: str, on_date: date | None = None) -> RateLookup:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return RateLookup(rate=Decimal("1"), source="fresh")

        now = datetime.now(UTC)
        target_date = on_date or now.date()

        fresh = await self._find_fresh(from_currency, to_currency, target_date, now)
        if fresh:
            return RateLookup(
                rate=fresh.rate, source="fresh", fetched_at=fresh.last_fetched_at, expires_at=fresh.expires_at
            )

        stale = await self._find_stale(from_currency, to_currency, target_date)

        api_rate = await self._fetch_rate_from_api(from_currency, to_currency)
        if api_rate is not None:
            try:
                await self._store_rate(from_currency, to_currency, api_rate, now)
            except SQLAlchemyError as e:
                logger.error(f"Failed to cache rate {from_currency}->{to_currency}: {e}")
            return RateLookup(rate=api_rate, source="api", fetched_at=now, expires_at=now + self.ttl)

        if stale:
            await self._record_fetch_error(stale)
            logger.warning(
                f"Using stale exchange rate {from_currency}->{to_currency} = {stale.rate} "
                f"(fetched at {stale.last_fetched_at})"
            )
            return RateLookup(
                rate=stale.rate, source="stale", fetched_at=stale.last_fetched_at, expires_at=stale.expires_at
            )

        return RateLookup(rate=None, source="not_found")

    async def _find_fresh(self, from_currency: str, to_currency: str, target_date: date, now: datetime):
        stmt = (
            select(ExchangeRateDB)
            .where(
                ExchangeRateDB.from_currency == from_currency,
                ExchangeRateDB.to_currency == to_currency,
                ExchangeRateDB.date <= target_date,
                or_(
                    ExchangeRateDB.expires_at > now,
                    and_(ExchangeRateDB.source == "MANUAL", ExchangeRateDB.expires_at.is_(None)),
                ),
            )
            .order_by(desc(ExchangeRateDB.date))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_stale(self, from_currency: str, to_currency: str, target_date: date):
        stmt = (
            select(ExchangeRateDB)
            .where(
                ExchangeRateDB.from_currency == from_currency,
                ExchangeRateDB.to_currency == to_currency,
                ExchangeRateDB.date <= target_date,
                ExchangeRateDB.is_stale == True,  # noqa: E712
            )
            .order_by(desc(ExchangeRateDB.date), desc(ExchangeRateDB.last_fetched_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _fetch_rates_from_api(self) -> dict | None:
        """Returns the USD-based rate table from the provider, or None on any failure."""
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(EXCHANGE_RATE_API_URL, headers={"Accept": "application/json"}, timeout=5.0)
            if resp.status_code != 200:
                logger.error(f"Exchange rate API request failed: {resp.status_code}")
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Network error fetching exchange rates: {e}")
            return None

        if data.get("result") != "success" or not data.get("rates"):
            logger.error("Exchange rate API returned error or invalid data")
            return None

        rates = dict(data["rates"])
        rates.setdefault("USD", 1)
        return rates

    @staticmethod
    def _cross_rate(rates: dict, from_currency: str, to_currency: str) -> Decimal | None:
        # Table is USD based: rates[X] is the price of 1 USD in X
        from_per_usd = rates.get(from_currency)
        to_per_usd = rates.get(to_currency)
        if not from_per_usd or not to_per_usd:
            return None
        try:
            return _quantize_rate(Decimal(str(to_per_usd)) / Decimal(str(from_per_usd)))
        except (InvalidOperation, ZeroDivisionError):
            return None

    async def _fetch_rate_from_api(self, from_currency: str, to_currency: str) -> Decimal | None:
        rates = await self._fetch_rates_from_api()
        if rates is None:
            return None
        return self._cross_rate(rates, from_currency, to_currency)

    async def _upsert_rate(self, values: dict, keep_manual: bool):
        stmt = pg_insert(ExchangeRateDB).values(**values)
        update_cols = {k: v for k, v in values.items() if k not in ("from_currency", "to_currency", "date")}
        update_cols["updated_at"] = datetime.now(UTC)
        stmt = stmt.on_conflict_do_update(
            index_elements=["from_currency", "to_currency", "date"],
            set_=update_cols,
            # An API refresh never overwrites a rate the user entered by hand
            where=(ExchangeRateDB.source != "MANUAL") if keep_manual else None,
        )
        await self.session.execute(stmt)

    async def _store_rate(self, from_currency: str, to_currency: str, rate: Decimal, now: datetime | None = None):
        """Caches the rate and its inverse for today."""
        now = now or datetime.now(UTC)
        common = {
            "date": now.date(),
            "source": "API",
            "api_provider": RATE_API_PROVIDER,
            "last_fetched_at": now,
            "expires_at": now + self.ttl,
            "is_stale": False,
            "fetch_error_count": 0,
        }
        async with self.session.begin_nested():
            await self._upsert_rate(
                {"from_currency": from_currency, "to_currency": to_currency, "rate": rate, **common}, keep_manual=True
            )
            inverse = _quantize_rate(Decimal("1") / rate)
            if inverse is not None:
                await self._upsert_rate(
                    {"from_currency": to_currency, "to_currency": from_currency, "rate": inverse, **common},
                    keep_manual=True,
                )

    async def _record_fetch_error(self, row: ExchangeRateDB):
        await self.session.execute(
            update(ExchangeRateDB)
            .where(ExchangeRateDB.id == row.id)
            .values(fetch_error_count=ExchangeRateDB.fetch_error_count + 1)
        )

    async def get_active_currencies(self) -> list[str]:
        stmt = select(PaymentMethodDB.currency).where(PaymentMethodDB.is_active == True).distinct()  # noqa: E712
        result = await self.session.execute(stmt)
        return sorted(result.scalars().all())

    async def refresh_all_rates(self, currencies: list[str] | None = None) -> int:
        """
        Fetches and caches every pair between the given currencies (by default the
        currencies of all active payment methods, plus USD). Returns the number of
        pairs stored.
        """
        target = [c.upper() for c in currencies or []]
        if not target:
            try:
                target = await self.get_active_currencies()
            except SQLAlchemyError as e:
                logger.error(f"Failed to get active currencies: {e}")
                target = []
            if not target:
                target = list(FALLBACK_RATE_CURRENCIES)
        if "USD" not in target:
            target.append("USD")

        logger.info(f"Refreshing rates for currencies: {', '.join(target)}")

        rates = await self._fetch_rates_from_api()
        refreshed = 0
        if rates is not None:
            now = datetime.now(UTC)
            for from_currency in target:
                for to_currency in target:
                    if from_currency == to_currency:
                        continue
                    rate = self._cross_rate(rates, from_currency, to_currency)
                    if rate is None:
                        logger.warning(f"No rate for {from_currency}->{to_currency} in API response")
                        continue
                    await self._store_rate(from_currency, to_currency, rate, now)
                    refreshed += 1

        await self.mark_stale_rates()
        logger.info(f"Rate refresh completed: {refreshed} pairs stored")
        return refreshed

    async def mark_stale_rates(self) -> int:
        stmt = (
            update(ExchangeRateDB)
            .where(
                ExchangeRateDB.expires_at <= datetime.now(UTC),
                ExchangeRateDB.is_stale == False,  # noqa: E712
                ExchangeRateDB.source != "STUB",
            )
            .values(is_stale=True)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def cleanup_old_rates(self) -> int:
        cutoff = datetime.now(UTC).date() - timedelta(days=RATE_RETENTION_DAYS)
        stmt = delete(ExchangeRateDB).where(
            ExchangeRateDB.date < cutoff,
            ExchangeRateDB.source.not_in(["MANUAL", "STUB"]),
            ExchangeRateDB.is_stale == True,  # noqa: E712
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def is_cache_valid(self, from_currency: str, to_currency: str) -> bool:
        now = datetime.now(UTC)
        row = await self._find_fresh(from_currency.upper(), to_currency.upper(), now.date(), now)
        return row is not None

    async def get_all_rates(self, base_currency: str) -> dict[str, Decimal]:
        """Returns the freshest cached rate from ``base_currency`` to every other currency."""
        now = datetime.now(UTC)
        stmt = (
            select(ExchangeRateDB.to_currency, ExchangeRateDB.rate)
            .where(
                ExchangeRateDB.from_currency == base_currency.upper(),
                ExchangeRateDB.date <= now.date(),
                or_(
                    ExchangeRateDB.expires_at > now,
                    and_(ExchangeRateDB.source == "MANUAL", ExchangeRateDB.expires_at.is_(None)),
                ),
            )
            .order_by(desc(ExchangeRateDB.date))
        )
        result = await self.session.execute(stmt)

        rates = {}
        for to_currency, rate in result.all():
            rates.setdefault(to_currency, rate)
        return rates

    async def set_manual_rate(self, from_currency: str, to_currency: str, rate: Decimal) -> ExchangeRateDB:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        today = datetime.now(UTC).date()
        await self._upsert_rate(
            {
                "from_currency": from_currency,
                "to_currency": to_currency,
                "rate": _quantize_rate(Decimal(rate)),
                "date": today,
                "source": "MANUAL",
                "api_provider": None,
                "last_fetched_at": None,
                "expires_at": None,
                "is_stale": False,
                "fetch_error_count": 0,
            },
            keep_manual=False,
        )
        logger.info(f"Manual rate set: {from_currency}->{to_currency} = {rate}")

        stmt = (
            select(ExchangeRateDB)
            .where(
                ExchangeRateDB.from_currency == from_currency,
                ExchangeRateDB.to_currency == to_currency,
                ExchangeRateDB.date == today,
            )
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one()


async def start_periodic_refresh(interval: int):
    """Refreshes all cached rates every ``interval`` seconds until cancelled."""
    logger.info("Starting background exchange rate refresh task...")
    while True:
        try:
            async with async_session_maker() as session:
                service = ExchangeRateService(session)
                await service.refresh_all_rates()
                await service.cleanup_old_rates()
                await session.commit()
        except Exception as e:
            logger.error(f"Error in periodic rate refresh: {e}")

        await asyncio.sleep(interval)
