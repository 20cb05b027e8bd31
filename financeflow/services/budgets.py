from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.models.sql import BudgetDB, PaymentMethodDB, TransactionDB, transaction_tags
from financeflow.services.balances import month_bounds

HUNDRED = Decimal("100")


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) / Decimal(whole) * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def budget_name(budget: BudgetDB) -> str:
    if budget.category is not None:
        return budget.category.name
    return f"#{budget.tag.name}" if budget.tag is not None else "Budget"


class BudgetService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _spent_query(self, budget: BudgetDB, *columns):
        """EXPENSE transactions counting against the budget within its month."""
        start, end = month_bounds(budget.period)
        stmt = select(*columns).select_from(TransactionDB).where(
            TransactionDB.user_id == budget.user_id,
            TransactionDB.type == "expense",
            TransactionDB.date >= start,
            TransactionDB.date <= end,
        )
        if budget.category_id is not None:
            stmt = stmt.where(TransactionDB.category_id == budget.category_id)
        else:
            stmt = stmt.join(transaction_tags, transaction_tags.c.transaction_id == TransactionDB.id).where(
                transaction_tags.c.tag_id == budget.tag_id
            )
        return stmt

    async def get_spent(self, budget: BudgetDB) -> Decimal:
        stmt = self._spent_query(budget, func.coalesce(func.sum(TransactionDB.amount), 0))
        result = await self.session.execute(stmt)
        return Decimal(result.scalar_one())

    async def get_progress(self, budget: BudgetDB) -> dict:
        spent = await self.get_spent(budget)
        start, end = month_bounds(budget.period)
        return {
            "budget_id": budget.id,
            "budget_name": budget_name(budget),
            "target_type": "category" if budget.category_id is not None else "tag",
            "category_id": budget.category_id,
            "tag_id": budget.tag_id,
            "budget_amount": budget.amount,
            "spent_amount": spent,
            "spent_percentage": _percentage(spent, budget.amount),
            "is_overspent": spent > budget.amount,
            "period_start": start,
            "period_end": end,
        }

    async def list_progress(self, user_id: str, period: date | None = None) -> list[dict]:
        stmt = select(BudgetDB).where(BudgetDB.user_id == user_id)
        if period is not None:
            stmt = stmt.where(BudgetDB.period == period.replace(day=1))
        stmt = stmt.order_by(desc(BudgetDB.period), BudgetDB.id)

        budgets = (await self.session.execute(stmt)).scalars().all()
        return [await self.get_progress(budget) for budget in budgets]

    async def get_breakdown(self, budget: BudgetDB) -> dict:
        """Spending against the budget grouped by payment method, largest first."""
        total = func.sum(TransactionDB.amount).label("total")
        stmt = (
            self._spent_query(
                budget,
                PaymentMethodDB.id,
                PaymentMethodDB.name,
                PaymentMethodDB.currency,
                PaymentMethodDB.color,
                total,
                func.count(TransactionDB.id),
            )
            .join(PaymentMethodDB, TransactionDB.payment_method_id == PaymentMethodDB.id)
            .group_by(PaymentMethodDB.id, PaymentMethodDB.name, PaymentMethodDB.currency, PaymentMethodDB.color)
            .order_by(desc("total"))
        )
        rows = (await self.session.execute(stmt)).all()

        items = []
        total_spent = Decimal("0")
        for pm_id, name, currency, color, amount, count in rows:
            amount = Decimal(amount or 0)
            total_spent += amount
            items.append(
                {
                    "payment_method_id": pm_id,
                    "payment_method_name": name,
                    "payment_method_currency": currency,
                    "payment_method_color": color,
                    "amount": amount,
                    "transaction_count": count,
                    "percentage": _percentage(amount, budget.amount),
                }
            )

        return {
            "budget_id": budget.id,
            "budget_name": budget_name(budget),
            "budget_amount": budget.amount,
            "total_spent": total_spent,
            "payment_methods": items,
        }
