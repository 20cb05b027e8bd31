import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.services.exchange_rates import ExchangeRateService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_base_amount(native_amount, exchange_rate) -> Decimal:
    """Native amount converted with the given rate, rounded half-up to cents."""
    return round_money(Decimal(native_amount) * Decimal(exchange_rate))


def validate_amount_calculation(native_amount, exchange_rate, base_amount, tolerance=CENT) -> bool:
    expected = calculate_base_amount(native_amount, exchange_rate)
    return abs(expected - Decimal(base_amount)) <= tolerance


async def get_exchange_rate(
    session: AsyncSession, from_currency: str, to_currency: str, on_date: date | None = None
) -> Decimal | None:
    if from_currency.upper() == to_currency.upper():
        return Decimal("1")

    result = await ExchangeRateService(session).get_rate(from_currency, to_currency, on_date)

    if result.source == "stale":
        logger.warning(
            f"Converting {from_currency}->{to_currency} with stale rate {result.rate} fetched at {result.fetched_at}"
        )
    return result.rate


async def convert_amount(
    session: AsyncSession, amount, from_currency: str, to_currency: str, on_date: date | None = None
) -> Decimal | None:
    rate = await get_exchange_rate(session, from_currency, to_currency, on_date)
    if rate is None:
        return None
    return calculate_base_amount(amount, rate)
