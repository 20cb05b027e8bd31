from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.errors import ConflictError
from financeflow.models.schemas import Budget, BudgetBreakdown, BudgetCreate, BudgetProgress, BudgetUpdate, parse_period
from financeflow.models.sql import BudgetDB, CategoryDB, TagDB
from financeflow.services.budgets import BudgetService

router = APIRouter(tags=["budgets"])

DUPLICATE_BUDGET = "A budget already exists for this category or tag in the specified period."


def _period_param(period: str | None):
    if period is None:
        return None
    try:
        return parse_period(period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


async def _get_owned(session: AsyncSession, budget_id: int, user_id: str) -> BudgetDB:
    stmt = (
        select(BudgetDB)
        .where((BudgetDB.id == budget_id) & (BudgetDB.user_id == user_id))
        .execution_options(populate_existing=True)
    )
    budget = (await session.execute(stmt)).scalar_one_or_none()
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found or access denied")
    return budget


async def _duplicate_exists(session: AsyncSession, user_id: str, budget: BudgetDB | BudgetCreate, period) -> bool:
    stmt = select(BudgetDB.id).where((BudgetDB.user_id == user_id) & (BudgetDB.period == period))
    if budget.category_id is not None:
        stmt = stmt.where(BudgetDB.category_id == budget.category_id)
    else:
        stmt = stmt.where(BudgetDB.tag_id == budget.tag_id)
    if isinstance(budget, BudgetDB):
        stmt = stmt.where(BudgetDB.id != budget.id)
    return (await session.execute(stmt.limit(1))).scalar_one_or_none() is not None


@router.post("/budgets", response_model=Budget, status_code=201)
async def create_budget(
    data: BudgetCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    if data.category_id is not None:
        target = await session.get(CategoryDB, data.category_id)
    else:
        target = await session.get(TagDB, data.tag_id)
    if not target or target.user_id != profile.id:
        raise HTTPException(status_code=400, detail="Invalid category or tag. Please select a valid one.")

    if await _duplicate_exists(session, profile.id, data, data.period):
        raise ConflictError(DUPLICATE_BUDGET)

    budget = BudgetDB(
        user_id=profile.id, category_id=data.category_id, tag_id=data.tag_id, amount=data.amount, period=data.period
    )
    session.add(budget)
    await commit_or_raise(session, DUPLICATE_BUDGET)
    return await _get_owned(session, budget.id, profile.id)


@router.get("/budgets", response_model=list[Budget])
async def get_budgets(
    category_id: int | None = None,
    tag_id: int | None = None,
    period: str | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(BudgetDB).where(BudgetDB.user_id == profile.id)
    if category_id is not None:
        stmt = stmt.where(BudgetDB.category_id == category_id)
    if tag_id is not None:
        stmt = stmt.where(BudgetDB.tag_id == tag_id)
    month = _period_param(period)
    if month is not None:
        stmt = stmt.where(BudgetDB.period == month)
    stmt = stmt.order_by(desc(BudgetDB.period), BudgetDB.id).limit(limit).offset(offset)

    result = await session.execute(stmt)
    return result.scalars().all()


@router.get("/budgets/progress", response_model=list[BudgetProgress])
async def get_budget_progress(
    period: str | None = None, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    return await BudgetService(session).list_progress(profile.id, _period_param(period))


@router.get("/budgets/{budget_id}", response_model=Budget)
async def get_budget(budget_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await _get_owned(session, budget_id, profile.id)


@router.get("/budgets/{budget_id}/progress", response_model=BudgetProgress)
async def get_single_budget_progress(
    budget_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    budget = await _get_owned(session, budget_id, profile.id)
    return await BudgetService(session).get_progress(budget)


@router.get("/budgets/{budget_id}/breakdown", response_model=BudgetBreakdown)
async def get_budget_breakdown(
    budget_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    budget = await _get_owned(session, budget_id, profile.id)
    return await BudgetService(session).get_breakdown(budget)


@router.patch("/budgets/{budget_id}", response_model=Budget)
async def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    budget = await _get_owned(session, budget_id, profile.id)

    if data.period is not None and data.period != budget.period:
        if await _duplicate_exists(session, profile.id, budget, data.period):
            raise ConflictError(DUPLICATE_BUDGET)
        budget.period = data.period
    if data.amount is not None:
        budget.amount = data.amount

    await commit_or_raise(session, DUPLICATE_BUDGET)
    return await _get_owned(session, budget_id, profile.id)


@router.delete("/budgets/{budget_id}")
async def delete_budget(budget_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    budget = await _get_owned(session, budget_id, profile.id)
    await session.delete(budget)
    await commit_or_raise(session)
    return {"status": "deleted"}
