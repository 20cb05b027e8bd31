from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.errors import ConflictError
from financeflow.models.schemas import Category, CategoryCreate, CategoryUpdate
from financeflow.models.sql import BudgetDB, CategoryDB, TransactionDB

router = APIRouter(tags=["categories"])

DUPLICATE_NAME = "A category with this name already exists."


async def _get_owned(session: AsyncSession, cat_id: int, user_id: str) -> CategoryDB:
    stmt = select(CategoryDB).where((CategoryDB.id == cat_id) & (CategoryDB.user_id == user_id))
    result = await session.execute(stmt)
    category = result.scalar_one_or_none()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found or access denied")
    return category


async def _name_taken(session: AsyncSession, user_id: str, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(CategoryDB.id).where((CategoryDB.user_id == user_id) & (CategoryDB.name == name))
    if exclude_id is not None:
        stmt = stmt.where(CategoryDB.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


@router.get("/categories", response_model=List[Category])
async def get_categories(
    type: str = Query(None), profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    stmt = select(CategoryDB).where(CategoryDB.user_id == profile.id)
    if type:
        stmt = stmt.where(CategoryDB.type == type.lower())
    stmt = stmt.order_by(CategoryDB.name)

    result = await session.execute(stmt)
    return result.scalars().all()


@router.get("/categories/{cat_id}", response_model=Category)
async def get_category(cat_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await _get_owned(session, cat_id, profile.id)


@router.post("/categories", response_model=Category, status_code=201)
async def add_category(
    category: CategoryCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    if await _name_taken(session, profile.id, category.name):
        raise ConflictError(DUPLICATE_NAME)

    new_category = CategoryDB(user_id=profile.id, name=category.name, color=category.color, type=category.type)
    session.add(new_category)
    await commit_or_raise(session, DUPLICATE_NAME)
    await session.refresh(new_category)
    return new_category


@router.patch("/categories/{cat_id}", response_model=Category)
async def update_category(
    cat_id: int,
    category_data: CategoryUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    category = await _get_owned(session, cat_id, profile.id)

    if category_data.name is not None and category_data.name != category.name:
        if await _name_taken(session, profile.id, category_data.name, exclude_id=cat_id):
            raise ConflictError(DUPLICATE_NAME)
        category.name = category_data.name
    if category_data.color is not None:
        category.color = category_data.color
    if category_data.type is not None:
        category.type = category_data.type

    await commit_or_raise(session, DUPLICATE_NAME)
    await session.refresh(category)
    return category


@router.delete("/categories/{cat_id}")
async def delete_category(cat_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    category = await _get_owned(session, cat_id, profile.id)

    tx_count = await session.scalar(
        select(func.count()).select_from(TransactionDB).where(TransactionDB.category_id == cat_id)
    )
    if tx_count:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete category that is used in transactions. Please reassign transactions first.",
        )

    budget_count = await session.scalar(select(func.count()).select_from(BudgetDB).where(BudgetDB.category_id == cat_id))
    if budget_count:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete category that is used in budgets. Please delete related budgets first.",
        )

    await session.delete(category)
    await commit_or_raise(session)
    return {"status": "deleted"}


@router.get("/categories/{cat_id}/check")
async def check_category_usage(
    cat_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    await _get_owned(session, cat_id, profile.id)

    stmt = (
        select(func.count())
        .select_from(TransactionDB)
        .where((TransactionDB.category_id == cat_id) & (TransactionDB.user_id == profile.id))
    )
    result = await session.execute(stmt)
    count = result.scalar_one()

    return {"transaction_count": count}
