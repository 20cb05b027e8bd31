import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.constants import FALLBACK_PAYMENT_METHOD_COLOR, FALLBACK_PAYMENT_METHOD_NAME
from financeflow.database import flush_or_raise
from financeflow.errors import FinanceError, NotFoundError
from financeflow.models.schemas import TransactionCreate, TransactionUpdate
from financeflow.models.sql import CategoryDB, PaymentMethodDB, ProfileDB, TagDB, TransactionDB, transaction_tags
from financeflow.services.currency import calculate_base_amount, get_exchange_rate

logger = logging.getLogger(__name__)

ZERO_AMOUNT_MESSAGE = "Amount is too small: it converts to 0.00 {currency}. Please enter a larger amount."


class TransactionService:
    """Income and expense bookkeeping with conversion into the profile's base currency."""

    def __init__(self, session: AsyncSession, profile: ProfileDB):
        self.session = session
        self.profile = profile

    @property
    def user_id(self) -> str:
        return self.profile.id

    async def get(self, tx_id: int) -> TransactionDB | None:
        stmt = (
            select(TransactionDB)
            .where(TransactionDB.id == tx_id, TransactionDB.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _check_category(self, category_id: int) -> CategoryDB:
        category = await self.session.get(CategoryDB, category_id)
        if not category or category.user_id != self.user_id:
            raise FinanceError("Invalid category. Please select a valid category.")
        return category

    async def load_tags(self, tag_ids: list[int]) -> list[TagDB]:
        if not tag_ids:
            return []
        unique_ids = set(tag_ids)
        stmt = select(TagDB).where(TagDB.user_id == self.user_id, TagDB.id.in_(unique_ids))
        tags = list((await self.session.execute(stmt)).scalars().all())
        if len(tags) != len(unique_ids):
            raise FinanceError("Invalid tags. Please select valid tags.")
        return tags

    async def _get_payment_method(self, payment_method_id: int) -> PaymentMethodDB:
        payment_method = await self.session.get(PaymentMethodDB, payment_method_id)
        if not payment_method or payment_method.user_id != self.user_id:
            raise FinanceError("Invalid payment method. Please select a valid payment method.")
        if not payment_method.is_active:
            raise FinanceError("Cannot use an archived payment method. Please activate it in Settings.")
        return payment_method

    async def resolve_payment_method(self, payment_method_id: int | None) -> PaymentMethodDB:
        """
        Picks the payment method for a new transaction: the requested one, else the
        active default, else any active method. A user with no active methods gets a
        "Cash/Wallet" in the base currency.
        """
        if payment_method_id is not None:
            return await self._get_payment_method(payment_method_id)

        stmt = (
            select(PaymentMethodDB)
            .where(PaymentMethodDB.user_id == self.user_id, PaymentMethodDB.is_active == True)  # noqa: E712
            .order_by(desc(PaymentMethodDB.is_default), PaymentMethodDB.created_at, PaymentMethodDB.id)
            .limit(1)
        )
        payment_method = (await self.session.execute(stmt)).scalar_one_or_none()
        if payment_method:
            return payment_method

        logger.info(f"Creating fallback payment method for user {self.user_id}")
        stmt = select(PaymentMethodDB).where(
            PaymentMethodDB.user_id == self.user_id, PaymentMethodDB.is_default == True  # noqa: E712
        )
        for previous_default in (await self.session.execute(stmt)).scalars():
            previous_default.is_default = False

        payment_method = PaymentMethodDB(
            user_id=self.user_id,
            name=FALLBACK_PAYMENT_METHOD_NAME,
            currency=self.profile.currency,
            is_default=True,
            is_active=True,
            color=FALLBACK_PAYMENT_METHOD_COLOR,
        )
        self.session.add(payment_method)
        await flush_or_raise(self.session, "Could not create a default payment method. Please try again.")
        return payment_method

    async def _conversion_rate(self, currency: str, tx_date: date, manual_rate: Decimal | None) -> Decimal:
        base_currency = self.profile.currency
        if currency == base_currency:
            return Decimal("1")
        if manual_rate is not None:
            return manual_rate

        rate = await get_exchange_rate(self.session, currency, base_currency, tx_date)
        if rate is None:
            raise FinanceError(
                f"Exchange rate not available for {currency} to {base_currency}. "
                "Please provide a manual rate or try again later."
            )
        return rate

    def _apply_conversion(self, tx: TransactionDB, native_amount: Decimal, rate: Decimal):
        amount = calculate_base_amount(native_amount, rate)
        if amount <= 0:
            raise FinanceError(ZERO_AMOUNT_MESSAGE.format(currency=self.profile.currency))
        tx.native_amount = native_amount
        tx.exchange_rate = rate
        tx.amount = amount
        tx.base_currency = self.profile.currency

    async def create(
        self,
        data: TransactionCreate,
        extra_tags: list[TagDB] | None = None,
    ) -> TransactionDB:
        await self._check_category(data.category_id)
        tags = await self.load_tags(data.tag_ids)
        for tag in extra_tags or []:
            if tag not in tags:
                tags.append(tag)

        payment_method = await self.resolve_payment_method(data.payment_method_id)
        rate = await self._conversion_rate(payment_method.currency, data.date, data.manual_exchange_rate)

        tx = TransactionDB(
            user_id=self.user_id,
            type=data.type,
            category_id=data.category_id,
            payment_method_id=payment_method.id,
            date=data.date,
            description=data.description or None,
            tags=tags,
        )
        self._apply_conversion(tx, data.amount, rate)

        self.session.add(tx)
        await flush_or_raise(self.session)
        return tx

    async def update(self, tx_id: int, data: TransactionUpdate) -> TransactionDB:
        tx = await self.get(tx_id)
        if not tx:
            raise NotFoundError("Transaction not found or you do not have permission to update it.")
        if tx.type == "transfer":
            raise FinanceError("Transfers cannot be edited. Delete the transfer and create a new one.")

        fields = data.model_dump(exclude_unset=True)

        if fields.get("category_id") is not None:
            await self._check_category(data.category_id)
            tx.category_id = data.category_id
        if data.type is not None:
            tx.type = data.type
        if data.date is not None:
            tx.date = data.date
        if "description" in fields:
            tx.description = data.description or None
        if data.tag_ids is not None:
            tx.tags = await self.load_tags(data.tag_ids)

        recalculate = any(fields.get(k) is not None for k in ("amount", "payment_method_id", "manual_exchange_rate"))
        if recalculate:
            if data.payment_method_id is not None and data.payment_method_id != tx.payment_method_id:
                payment_method = await self._get_payment_method(data.payment_method_id)
                tx.payment_method_id = payment_method.id
            else:
                payment_method = await self.session.get(PaymentMethodDB, tx.payment_method_id)

            native_amount = data.amount if data.amount is not None else (tx.native_amount or tx.amount)
            rate = await self._conversion_rate(payment_method.currency, tx.date, data.manual_exchange_rate)
            self._apply_conversion(tx, native_amount, rate)

        await flush_or_raise(self.session)
        return tx

    async def delete(self, tx_id: int):
        tx = await self.get(tx_id)
        if not tx:
            raise NotFoundError("Transaction not found or you do not have permission to delete it.")

        ids = [tx.id]
        if tx.linked_transaction_id:
            ids.append(tx.linked_transaction_id)
        # Both sides of a transfer go together
        await self.session.execute(
            delete(TransactionDB).where(TransactionDB.id.in_(ids), TransactionDB.user_id == self.user_id)
        )

    async def list_transactions(
        self,
        type: str | None = None,
        category_id: int | None = None,
        payment_method_id: int | None = None,
        tag_ids: list[int] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TransactionDB]:
        stmt = self._filtered(type, category_id, payment_method_id, tag_ids, date_from, date_to)
        stmt = (
            stmt.order_by(desc(TransactionDB.date), desc(TransactionDB.created_at), desc(TransactionDB.id))
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, **filters) -> int:
        sub = self._filtered(**filters).with_only_columns(TransactionDB.id).subquery()
        result = await self.session.execute(select(func.count()).select_from(sub))
        return result.scalar_one()

    def _filtered(
        self,
        type: str | None = None,
        category_id: int | None = None,
        payment_method_id: int | None = None,
        tag_ids: list[int] | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ):
        stmt = select(TransactionDB).where(TransactionDB.user_id == self.user_id)
        if type:
            stmt = stmt.where(TransactionDB.type == type.lower())
        if category_id is not None:
            stmt = stmt.where(TransactionDB.category_id == category_id)
        if payment_method_id is not None:
            stmt = stmt.where(TransactionDB.payment_method_id == payment_method_id)
        if date_from is not None:
            stmt = stmt.where(TransactionDB.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(TransactionDB.date <= date_to)
        if tag_ids:
            # Transaction must carry every requested tag
            wanted = set(tag_ids)
            tagged = (
                select(transaction_tags.c.transaction_id)
                .where(transaction_tags.c.tag_id.in_(wanted))
                .group_by(transaction_tags.c.transaction_id)
                .having(func.count(func.distinct(transaction_tags.c.tag_id)) == len(wanted))
            )
            stmt = stmt.where(TransactionDB.id.in_(tagged))
        return stmt
