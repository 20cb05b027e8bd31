from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.models.schemas import TransferCreate, TransferCreated, TransferPair
from financeflow.services.transfers import TransferService

router = APIRouter(tags=["transfers"])


@router.post("/transfers", response_model=TransferCreated, status_code=201)
async def create_transfer(
    data: TransferCreate, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)
):
    created = await TransferService(session, profile).create(data)
    await commit_or_raise(session)
    return created


@router.get("/transfers", response_model=list[TransferPair])
async def get_transfers(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    return await TransferService(session, profile).list_transfers(limit=limit, offset=offset)


@router.get("/transfers/{tx_id}", response_model=TransferPair)
async def get_transfer(tx_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    return await TransferService(session, profile).get(tx_id)


@router.delete("/transfers/{tx_id}")
async def delete_transfer(tx_id: int, profile=Depends(get_profile), session: AsyncSession = Depends(get_session)):
    """Deleting either side removes the whole transfer."""
    await TransferService(session, profile).delete(tx_id)
    await commit_or_raise(session)
    return {"status": "deleted"}
