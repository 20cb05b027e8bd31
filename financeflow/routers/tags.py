from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.errors import ConflictError
from financeflow.models.schemas import Tag, TagCreate
from financeflow.models.sql import BudgetDB, TagDB

router = APIRouter(tags=["tags"])


async def _get_owned(session: AsyncSession, tag_id: int, user_id: str) -> TagDB:
    result = await session.execute(select(TagDB).where((TagDB.id == tag_id) & (TagDB.user_id == user_id)))
    tag = result.scalar_one_or_none()
    if not tag:
        raise HTTPException(status_code=404, detail="Tag not found or access denied")
    return tag


async def _find_by_name(session: AsyncSession, user_id: str, name: str) -> TagDB | None:
    result = await session.execute(select(TagDB).where((TagDB.user_id == user_id) & (TagDB.name == name)))
    return result.scalar_one_or_none()


@router.get("/tags", response_model=List[Tag])
async def get_tags(profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    result = await session.execute(select(TagDB).where(TagDB.user_id == profile.id).order_by(TagDB.name))
    return result.scalars().all()


@router.get("/tags/{tag_id}", response_model=Tag)
async def get_tag(tag_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await _get_owned(session, tag_id, profile.id)


@router.post("/tags", response_model=Tag)
async def add_tag(tag: TagCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    """Returns the existing tag when one with the same name is already there."""
    existing = await _find_by_name(session, profile.id, tag.name)
    if existing:
        return existing

    new_tag = TagDB(user_id=profile.id, name=tag.name)
    session.add(new_tag)
    await commit_or_raise(session)
    await session.refresh(new_tag)
    return new_tag


@router.patch("/tags/{tag_id}", response_model=Tag)
async def update_tag(
    tag_id: int, tag_data: TagCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    tag = await _get_owned(session, tag_id, profile.id)

    if tag_data.name != tag.name:
        if await _find_by_name(session, profile.id, tag_data.name):
            raise ConflictError("A tag with this name already exists.")
        tag.name = tag_data.name
        await commit_or_raise(session, "A tag with this name already exists.")
        await session.refresh(tag)

    return tag


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    tag = await _get_owned(session, tag_id, profile.id)

    budget_count = await session.scalar(select(func.count()).select_from(BudgetDB).where(BudgetDB.tag_id == tag_id))
    if budget_count:
        raise HTTPException(
            status_code=400, detail="Cannot delete tag that is used in budgets. Please delete related budgets first."
        )

    # Links to transactions and templates go with it
    await session.delete(tag)
    await commit_or_raise(session)
    return {"status": "deleted"}
