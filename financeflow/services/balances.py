import calendar
import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import case, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.models.sql import PaymentMethodDB, TransactionDB
from financeflow.services.currency import round_money
from financeflow.services.exchange_rates import ExchangeRateService

logger = logging.getLogger(__name__)

# Native-currency signed amount: expenses subtract, income adds, transfers carry their stored sign
SIGNED_NATIVE_AMOUNT = case(
    (TransactionDB.type == "expense", -func.coalesce(TransactionDB.native_amount, TransactionDB.amount)),
    else_=func.coalesce(TransactionDB.native_amount, TransactionDB.amount),
)


def month_bounds(day: date) -> tuple[date, date]:
    start = day.replace(day=1)
    end = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    return start, end


class BalanceService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_balance(self, user_id: str) -> dict:
        """
        Income minus expenses in the base currency. Transfers move money between
        the user's own accounts and are left out.
        """
        stmt = select(
            func.coalesce(func.sum(case((TransactionDB.type == "income", TransactionDB.amount), else_=0)), 0),
            func.coalesce(func.sum(case((TransactionDB.type == "expense", TransactionDB.amount), else_=0)), 0),
        ).where(TransactionDB.user_id == user_id, TransactionDB.type != "transfer")

        income, expense = (await self.session.execute(stmt)).one()
        return {"balance": income - expense, "income": income, "expense": expense}

    async def get_payment_method_balance(self, payment_method_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(SIGNED_NATIVE_AMOUNT), 0)).where(
            TransactionDB.payment_method_id == payment_method_id
        )
        result = await self.session.execute(stmt)
        return Decimal(result.scalar_one())

    async def get_payment_method_balances(self, user_id: str) -> dict[int, Decimal]:
        """Native balance of every payment method the user has recorded transactions on."""
        stmt = (
            select(TransactionDB.payment_method_id, func.sum(SIGNED_NATIVE_AMOUNT))
            .where(TransactionDB.user_id == user_id)
            .group_by(TransactionDB.payment_method_id)
        )
        result = await self.session.execute(stmt)
        return {pm_id: Decimal(total or 0) for pm_id, total in result.all()}

    async def _active_payment_methods(self, user_id: str) -> list[PaymentMethodDB]:
        stmt = (
            select(PaymentMethodDB)
            .where(PaymentMethodDB.user_id == user_id, PaymentMethodDB.is_active == True)  # noqa: E712
            .order_by(desc(PaymentMethodDB.is_default), PaymentMethodDB.name)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_balances_by_currency(self, user_id: str) -> dict:
        payment_methods = await self._active_payment_methods(user_id)
        balances = await self.get_payment_method_balances(user_id)

        grouped = {}
        for pm in payment_methods:
            balance = balances.get(pm.id, Decimal("0"))
            bucket = grouped.setdefault(pm.currency, {"total": Decimal("0"), "payment_methods": []})
            bucket["total"] += balance
            bucket["payment_methods"].append(
                {"id": pm.id, "name": pm.name, "color": pm.color, "is_default": pm.is_default, "balance": balance}
            )
        return grouped

    async def get_total_balance_in_base(self, user_id: str, base_currency: str) -> dict:
        payment_methods = await self._active_payment_methods(user_id)
        balances = await self.get_payment_method_balances(user_id)
        rates = ExchangeRateService(self.session)

        total = Decimal("0")
        breakdown = []
        for pm in payment_methods:
            native = balances.get(pm.id, Decimal("0"))
            rate = Decimal("1")
            if pm.currency != base_currency:
                lookup = await rates.get_rate(pm.currency, base_currency)
                rate = lookup.rate
            if rate is None:
                logger.warning(f"No exchange rate for {pm.currency}->{base_currency}, using unconverted balance")
                converted = native
            else:
                converted = round_money(native * rate)
            total += converted
            breakdown.append(
                {
                    "payment_method_id": pm.id,
                    "payment_method_name": pm.name,
                    "currency": pm.currency,
                    "native_balance": native,
                    "converted_balance": converted,
                    "exchange_rate": rate,
                }
            )

        return {"total": round_money(total), "base_currency": base_currency, "breakdown": breakdown}

    async def get_payment_method_details(self, user_id: str, base_currency: str) -> list[dict]:
        payment_methods = await self._active_payment_methods(user_id)
        if not payment_methods:
            return []

        balances = await self.get_payment_method_balances(user_id)

        stats_stmt = (
            select(TransactionDB.payment_method_id, func.count(), func.max(TransactionDB.date))
            .where(TransactionDB.user_id == user_id)
            .group_by(TransactionDB.payment_method_id)
        )
        stats = {pm_id: (count, last) for pm_id, count, last in (await self.session.execute(stats_stmt)).all()}

        rates = ExchangeRateService(self.session)
        now = datetime.now(UTC)
        details = []
        for pm in payment_methods:
            native = balances.get(pm.id, Decimal("0"))
            rate, converted = Decimal("1"), native
            rate_date, rate_source, is_stale = None, None, False

            if pm.currency != base_currency:
                lookup = await rates.get_rate(pm.currency, base_currency)
                if lookup.rate is not None:
                    rate = lookup.rate
                    converted = round_money(native * rate)
                    rate_date = lookup.fetched_at
                    rate_source = lookup.source
                    is_stale = lookup.source == "stale"
                    if lookup.fetched_at and now - lookup.fetched_at > timedelta(hours=24):
                        is_stale = True
                else:
                    logger.warning(f"No exchange rate available for {pm.currency} to {base_currency}")

            count, last_date = stats.get(pm.id, (0, None))
            details.append(
                {
                    "id": pm.id,
                    "name": pm.name,
                    "currency": pm.currency,
                    "card_type": pm.card_type,
                    "color": pm.color,
                    "is_default": pm.is_default,
                    "native_balance": native,
                    "converted_balance": converted,
                    "base_currency": base_currency,
                    "exchange_rate": rate,
                    "rate_date": rate_date,
                    "rate_source": rate_source,
                    "is_rate_stale": is_stale,
                    "last_transaction_date": last_date,
                    "transaction_count": count,
                }
            )
        return details

    async def get_expenses_for_period(self, user_id: str, period: date) -> dict:
        start, end = month_bounds(period)
        stmt = select(func.coalesce(func.sum(func.abs(TransactionDB.amount)), 0), func.count()).where(
            TransactionDB.user_id == user_id,
            TransactionDB.type == "expense",
            TransactionDB.date >= start,
            TransactionDB.date <= end,
        )
        total, count = (await self.session.execute(stmt)).one()
        return {"total_expenses": round_money(total), "transaction_count": count, "period_start": start, "period_end": end}
