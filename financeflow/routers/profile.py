import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.database import commit_or_raise
from financeflow.dependencies import get_profile, get_session
from financeflow.models.schemas import Profile, ProfileCurrencyUpdate

router = APIRouter(tags=["profile"])
logger = logging.getLogger(__name__)


@router.get("/profile", response_model=Profile)
async def get_user_profile(profile=Depends(get_profile)):
    return profile


@router.patch("/profile/currency", response_model=Profile)
async def update_base_currency(
    settings: ProfileCurrencyUpdate,
    profile=Depends(get_profile),
    session: AsyncSession = Depends(get_session),
):
    """
    Changes the reporting currency. Stored transactions keep the base amounts
    they were recorded with; new ones convert into the new currency.
    """
    if profile.currency == settings.currency:
        return profile

    profile.currency = settings.currency
    await commit_or_raise(session)
    await session.refresh(profile)
    logger.info(f"Profile {profile.id} base currency set to {profile.currency}")
    return profile
