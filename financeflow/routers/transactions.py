from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.models.schemas import Transaction, TransactionCreate, TransactionUpdate, parse_period
from financeflow.services.balances import BalanceService
from financeflow.services.transactions import TransactionService

router = APIRouter(tags=["transactions"])


@router.get("/transactions", response_model=list[Transaction])
async def get_transactions(
    type: str | None = None,
    category_id: int | None = None,
    payment_method_id: int | None = None,
    tag_ids: list[int] | None = Query(None),
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    service = TransactionService(session, profile)
    return await service.list_transactions(
        type=type,
        category_id=category_id,
        payment_method_id=payment_method_id,
        tag_ids=tag_ids,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


@router.get("/transactions/balance")
async def get_balance(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await BalanceService(session).get_user_balance(profile.id)


@router.get("/transactions/balance/total")
async def get_total_balance(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    result = await BalanceService(session).get_total_balance_in_base(profile.id, profile.currency)
    await commit_or_raise(session)
    return result


@router.get("/transactions/expenses")
async def get_expenses_for_period(
    period: str, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    try:
        month = parse_period(period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return await BalanceService(session).get_expenses_for_period(profile.id, month)


@router.get("/transactions/{tx_id}", response_model=Transaction)
async def get_transaction(tx_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    tx = await TransactionService(session, profile).get(tx_id)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return tx


@router.post("/transactions", response_model=Transaction, status_code=201)
async def add_transaction(
    tx: TransactionCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    service = TransactionService(session, profile)
    new_tx = await service.create(tx)
    await commit_or_raise(session)
    return await service.get(new_tx.id)


@router.patch("/transactions/{tx_id}", response_model=Transaction)
async def update_transaction(
    tx_id: int,
    update_data: TransactionUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    service = TransactionService(session, profile)
    await service.update(tx_id, update_data)
    await commit_or_raise(session)
    return await service.get(tx_id)


@router.delete("/transactions/{tx_id}")
async def delete_transaction(tx_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    await TransactionService(session, profile).delete(tx_id)
    await commit_or_raise(session)
    return {"status": "deleted"}
