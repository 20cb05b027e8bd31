import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.database import flush_or_raise
from financeflow.errors import FinanceError, NotFoundError
from financeflow.models.schemas import TransferCreate
from financeflow.models.sql import PaymentMethodDB, ProfileDB, TransactionDB
from financeflow.services.currency import calculate_base_amount, get_exchange_rate

logger = logging.getLogger(__name__)


def pair_exchange_rate(withdrawal: TransactionDB, deposit: TransactionDB) -> Decimal:
    """Effective source->destination rate of a stored transfer."""
    source = abs(withdrawal.native_amount or withdrawal.amount)
    destination = abs(deposit.native_amount or deposit.amount)
    if not source:
        return Decimal("1")
    return (destination / source).quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)


class TransferService:
    """
    A transfer is two linked ``transfer`` rows: a withdrawal on the source method
    stored with negative amounts, and a deposit on the destination stored positive.
    """

    def __init__(self, session: AsyncSession, profile: ProfileDB):
        self.session = session
        self.profile = profile

    async def _rate(self, from_currency: str, to_currency: str, on_date) -> Decimal:
        rate = await get_exchange_rate(self.session, from_currency, to_currency, on_date)
        if rate is None:
            raise FinanceError(
                f"Exchange rate not available for {from_currency} to {to_currency}. Please try again later."
            )
        return rate

    async def create(self, data: TransferCreate) -> dict:
        user_id = self.profile.id
        base_currency = self.profile.currency

        stmt = select(PaymentMethodDB).where(
            PaymentMethodDB.user_id == user_id,
            PaymentMethodDB.id.in_([data.source_payment_method_id, data.destination_payment_method_id]),
        )
        found = {pm.id: pm for pm in (await self.session.execute(stmt)).scalars()}
        source = found.get(data.source_payment_method_id)
        destination = found.get(data.destination_payment_method_id)

        if not source or not destination:
            raise FinanceError("One or both payment methods not found. Please select valid payment methods.")
        if not source.is_active or not destination.is_active:
            raise FinanceError("One or both payment methods are inactive. Please activate them in Settings.")

        source_amount = data.amount
        exchange_rate = Decimal("1")
        destination_amount = source_amount
        if source.currency != destination.currency:
            exchange_rate = await self._rate(source.currency, destination.currency, data.date)
            destination_amount = calculate_base_amount(source_amount, exchange_rate)

        source_rate_to_base = await self._rate(source.currency, base_currency, data.date)
        destination_rate_to_base = await self._rate(destination.currency, base_currency, data.date)
        withdrawal_base = calculate_base_amount(source_amount, source_rate_to_base)
        deposit_base = calculate_base_amount(destination_amount, destination_rate_to_base)
        if not destination_amount or not withdrawal_base or not deposit_base:
            raise FinanceError("Transfer amount is too small to convert. Please enter a larger amount.")

        withdrawal = TransactionDB(
            user_id=user_id,
            type="transfer",
            category_id=None,
            payment_method_id=source.id,
            native_amount=-source_amount,
            amount=-withdrawal_base,
            exchange_rate=source_rate_to_base,
            base_currency=base_currency,
            date=data.date,
            description=data.description or f"Transfer to {destination.name}",
        )
        deposit = TransactionDB(
            user_id=user_id,
            type="transfer",
            category_id=None,
            payment_method_id=destination.id,
            native_amount=destination_amount,
            amount=deposit_base,
            exchange_rate=destination_rate_to_base,
            base_currency=base_currency,
            date=data.date,
            description=data.description or f"Transfer from {source.name}",
        )

        # The caller commits; any failure before that discards both rows
        self.session.add_all([withdrawal, deposit])
        await flush_or_raise(self.session)
        withdrawal.linked_transaction_id = deposit.id
        deposit.linked_transaction_id = withdrawal.id
        await flush_or_raise(self.session)

        logger.info(
            f"Transfer {source_amount} {source.currency} -> {destination_amount} {destination.currency} "
            f"for user {user_id}"
        )
        return {
            "source_transaction_id": withdrawal.id,
            "destination_transaction_id": deposit.id,
            "exchange_rate": exchange_rate,
        }

    async def _get_transfer_row(self, tx_id: int) -> TransactionDB:
        stmt = (
            select(TransactionDB)
            .where(TransactionDB.id == tx_id, TransactionDB.user_id == self.profile.id)
            .execution_options(populate_existing=True)
        )
        tx = (await self.session.execute(stmt)).scalar_one_or_none()
        if not tx:
            raise NotFoundError("Transfer not found or you do not have permission to access it.")
        if tx.type != "transfer":
            raise FinanceError("This transaction is not a transfer.")
        return tx

    async def delete(self, tx_id: int):
        tx = await self._get_transfer_row(tx_id)
        ids = [tx.id] + ([tx.linked_transaction_id] if tx.linked_transaction_id else [])
        await self.session.execute(
            delete(TransactionDB).where(TransactionDB.id.in_(ids), TransactionDB.user_id == self.profile.id)
        )

    async def get(self, tx_id: int) -> dict:
        tx = await self._get_transfer_row(tx_id)
        linked = None
        if tx.linked_transaction_id:
            stmt = (
                select(TransactionDB)
                .where(TransactionDB.id == tx.linked_transaction_id)
                .execution_options(populate_existing=True)
            )
            linked = (await self.session.execute(stmt)).scalar_one_or_none()
        if not linked:
            raise NotFoundError("Linked transfer transaction not found.")

        withdrawal, deposit = (tx, linked) if tx.amount < 0 else (linked, tx)
        return {"withdrawal": withdrawal, "deposit": deposit, "exchange_rate": pair_exchange_rate(withdrawal, deposit)}

    async def list_transfers(self, limit: int = 50, offset: int = 0) -> list[dict]:
        # Pairs are keyed by their withdrawal side
        stmt = (
            select(TransactionDB)
            .where(
                TransactionDB.user_id == self.profile.id,
                TransactionDB.type == "transfer",
                TransactionDB.amount < 0,
            )
            .order_by(desc(TransactionDB.date), desc(TransactionDB.created_at), desc(TransactionDB.id))
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        withdrawals = list((await self.session.execute(stmt)).scalars().all())

        linked_ids = [w.linked_transaction_id for w in withdrawals if w.linked_transaction_id]
        deposits = {}
        if linked_ids:
            stmt = (
                select(TransactionDB)
                .where(TransactionDB.id.in_(linked_ids))
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            deposits = {d.id: d for d in result.scalars()}

        pairs = []
        for withdrawal in withdrawals:
            deposit = deposits.get(withdrawal.linked_transaction_id)
            if deposit is None:
                logger.warning(f"Transfer {withdrawal.id} has no linked deposit")
                continue
            pairs.append(
                {"withdrawal": withdrawal, "deposit": deposit, "exchange_rate": pair_exchange_rate(withdrawal, deposit)}
            )
        return pairs
