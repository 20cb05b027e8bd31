import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.errors import ConflictError
from financeflow.models.schemas import PaymentMethod, PaymentMethodCreate, PaymentMethodUpdate, Transaction
from financeflow.models.sql import PaymentMethodDB, TransactionDB
from financeflow.services.balances import BalanceService
from financeflow.services.transactions import TransactionService

router = APIRouter(tags=["payment-methods"])
logger = logging.getLogger(__name__)

DUPLICATE_NAME = "A payment method with this name already exists"


async def _get_owned(session: AsyncSession, pm_id: int, user_id: str) -> PaymentMethodDB:
    stmt = select(PaymentMethodDB).where((PaymentMethodDB.id == pm_id) & (PaymentMethodDB.user_id == user_id))
    payment_method = (await session.execute(stmt)).scalar_one_or_none()
    if not payment_method:
        raise HTTPException(status_code=404, detail="Payment method not found or access denied")
    return payment_method


async def _clear_default(session: AsyncSession, user_id: str, keep_id: int | None = None):
    stmt = update(PaymentMethodDB).where(
        (PaymentMethodDB.user_id == user_id) & (PaymentMethodDB.is_default == True)  # noqa: E712
    )
    if keep_id is not None:
        stmt = stmt.where(PaymentMethodDB.id != keep_id)
    await session.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))


async def _name_taken(session: AsyncSession, user_id: str, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(PaymentMethodDB.id).where((PaymentMethodDB.user_id == user_id) & (PaymentMethodDB.name == name))
    if exclude_id is not None:
        stmt = stmt.where(PaymentMethodDB.id != exclude_id)
    return (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None


async def _with_balance(session: AsyncSession, payment_method: PaymentMethodDB) -> PaymentMethod:
    out = PaymentMethod.model_validate(payment_method)
    out.balance = await BalanceService(session).get_payment_method_balance(payment_method.id)
    return out


@router.post("/payment-methods", response_model=PaymentMethod, status_code=201)
async def create_payment_method(
    data: PaymentMethodCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    if await _name_taken(session, profile.id, data.name):
        raise ConflictError(DUPLICATE_NAME)

    if data.is_default:
        await _clear_default(session, profile.id)

    payment_method = PaymentMethodDB(
        user_id=profile.id,
        name=data.name,
        currency=data.currency,
        card_type=data.card_type,
        color=data.color,
        is_default=data.is_default,
        is_active=True,
    )
    session.add(payment_method)
    await commit_or_raise(session, DUPLICATE_NAME)
    await session.refresh(payment_method)
    return payment_method


@router.get("/payment-methods", response_model=List[PaymentMethod])
async def get_payment_methods(
    is_active: bool | None = None,
    currency: str | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(PaymentMethodDB).where(PaymentMethodDB.user_id == profile.id)
    if is_active is not None:
        stmt = stmt.where(PaymentMethodDB.is_active == is_active)
    if currency:
        stmt = stmt.where(PaymentMethodDB.currency == currency.upper())
    stmt = stmt.order_by(desc(PaymentMethodDB.is_default), PaymentMethodDB.name).limit(limit).offset(offset)

    result = await session.execute(stmt)
    return result.scalars().all()


@router.get("/payment-methods/balances")
async def get_balances_by_currency(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await BalanceService(session).get_balances_by_currency(profile.id)


@router.get("/payment-methods/details")
async def get_payment_method_details(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    details = await BalanceService(session).get_payment_method_details(profile.id, profile.currency)
    # Rates fetched while converting stay cached
    await commit_or_raise(session)
    return details


@router.get("/payment-methods/default", response_model=PaymentMethod | None)
async def get_default_payment_method(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    stmt = select(PaymentMethodDB).where(
        (PaymentMethodDB.user_id == profile.id)
        & (PaymentMethodDB.is_default == True)  # noqa: E712
        & (PaymentMethodDB.is_active == True)  # noqa: E712
    )
    return (await session.execute(stmt)).scalar_one_or_none()


@router.get("/payment-methods/{pm_id}", response_model=PaymentMethod)
async def get_payment_method(pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    payment_method = await _get_owned(session, pm_id, profile.id)
    return await _with_balance(session, payment_method)


@router.patch("/payment-methods/{pm_id}", response_model=PaymentMethod)
async def update_payment_method(
    pm_id: int,
    data: PaymentMethodUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    payment_method = await _get_owned(session, pm_id, profile.id)

    if data.currency is not None:
        raise HTTPException(status_code=400, detail="Currency cannot be changed after creation")

    fields = data.model_dump(exclude_unset=True)

    if data.name is not None and data.name != payment_method.name:
        if await _name_taken(session, profile.id, data.name, exclude_id=pm_id):
            raise ConflictError(DUPLICATE_NAME)
        payment_method.name = data.name
    if "card_type" in fields:
        payment_method.card_type = data.card_type
    if "color" in fields:
        payment_method.color = data.color
    if data.is_default is not None:
        if data.is_default and not payment_method.is_active:
            raise HTTPException(status_code=400, detail="Cannot set archived payment method as default")
        if data.is_default:
            await _clear_default(session, profile.id, keep_id=pm_id)
        payment_method.is_default = data.is_default

    await commit_or_raise(session, DUPLICATE_NAME)
    await session.refresh(payment_method)
    return await _with_balance(session, payment_method)


@router.post("/payment-methods/{pm_id}/archive", response_model=PaymentMethod)
async def archive_payment_method(
    pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    payment_method = await _get_owned(session, pm_id, profile.id)
    if not payment_method.is_active:
        raise HTTPException(status_code=400, detail="Payment method is already archived")

    payment_method.is_active = False
    payment_method.is_default = False
    await commit_or_raise(session)
    logger.info(f"Payment method {pm_id} archived by user {profile.id}")
    await session.refresh(payment_method)
    return payment_method


@router.post("/payment-methods/{pm_id}/activate", response_model=PaymentMethod)
async def activate_payment_method(
    pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    payment_method = await _get_owned(session, pm_id, profile.id)
    if payment_method.is_active:
        raise HTTPException(status_code=400, detail="Payment method is already active")

    payment_method.is_active = True
    await commit_or_raise(session)
    await session.refresh(payment_method)
    return payment_method


@router.post("/payment-methods/{pm_id}/default", response_model=PaymentMethod)
async def set_default_payment_method(
    pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    payment_method = await _get_owned(session, pm_id, profile.id)
    if not payment_method.is_active:
        raise HTTPException(status_code=400, detail="Cannot set archived payment method as default")

    await _clear_default(session, profile.id, keep_id=pm_id)
    payment_method.is_default = True
    await commit_or_raise(session)
    await session.refresh(payment_method)
    return payment_method


@router.delete("/payment-methods/{pm_id}")
async def delete_payment_method(
    pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    payment_method = await _get_owned(session, pm_id, profile.id)

    tx_count = await session.scalar(
        select(func.count()).select_from(TransactionDB).where(TransactionDB.payment_method_id == pm_id)
    )
    if tx_count:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Cannot delete payment method with {tx_count} transaction(s). "
                "Archive it instead to preserve transaction history."
            ),
        )

    await session.delete(payment_method)
    await commit_or_raise(session)
    return {"status": "deleted"}


@router.get("/payment-methods/{pm_id}/balance")
async def get_payment_method_balance(
    pm_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    payment_method = await _get_owned(session, pm_id, profile.id)
    balance = await BalanceService(session).get_payment_method_balance(pm_id)
    return {"payment_method_id": pm_id, "currency": payment_method.currency, "balance": balance}


@router.get("/payment-methods/{pm_id}/transactions")
async def get_payment_method_transactions(
    pm_id: int,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    payment_method = await _get_owned(session, pm_id, profile.id)
    service = TransactionService(session, profile)

    transactions = await service.list_transactions(payment_method_id=pm_id, limit=limit, offset=offset)
    total_count = await service.count(payment_method_id=pm_id)

    return {
        "transactions": [Transaction.model_validate(tx) for tx in transactions],
        "total_count": total_count,
        "payment_method": {"id": payment_method.id, "name": payment_method.name, "currency": payment_method.currency},
    }
