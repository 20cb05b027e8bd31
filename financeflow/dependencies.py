import hashlib
import hmac
import logging
import urllib.parse
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from financeflow.config import AUTH_SECRET
from financeflow.constants import DEFAULT_CATEGORIES, DEFAULT_CURRENCY
from financeflow.database import async_session_maker
from financeflow.models.sql import CategoryDB, ProfileDB

logger = logging.getLogger(__name__)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


def sign_token_payload(payload: dict, secret: str) -> str:
    """HMAC-SHA256 over the alphabetically sorted ``key=value`` lines of the payload."""
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(payload.items()))
    return hmac.new(secret.encode(), data_check_string.encode(), hashlib.sha256).hexdigest()


async def verify_user_token(x_auth_token: str = Header(None, alias="X-Auth-Token")):
    if not x_auth_token:
        raise HTTPException(status_code=401, detail="Missing auth header")

    if not AUTH_SECRET:
        logger.error("AUTH_SECRET is missing on server")
        raise HTTPException(status_code=500, detail="Server config error")

    parsed_data = dict(urllib.parse.parse_qsl(x_auth_token))
    received_hash = parsed_data.pop("hash", None)
    if not received_hash or not parsed_data.get("user_id"):
        raise HTTPException(status_code=401, detail="Invalid authentication data")

    calculated_hash = sign_token_payload(parsed_data, AUTH_SECRET)
    if not hmac.compare_digest(calculated_hash, received_hash):
        logger.warning("Auth token hash mismatch")
        raise HTTPException(status_code=403, detail="Data integrity check failed")

    user_data = dict(parsed_data)
    user_data["id"] = user_data.pop("user_id")
    return user_data


async def ensure_profile(session: AsyncSession, user_id: str) -> ProfileDB:
    """Creates the profile on first use and seeds the default categories."""
    insert_stmt = (
        pg_insert(ProfileDB)
        .values(id=user_id, currency=DEFAULT_CURRENCY)
        .on_conflict_do_nothing(index_elements=["id"])
        .returning(ProfileDB.id)
    )
    created = (await session.execute(insert_stmt)).scalar_one_or_none()

    if created:
        seed_stmt = (
            pg_insert(CategoryDB)
            .values([{**cat, "user_id": user_id} for cat in DEFAULT_CATEGORIES])
            .on_conflict_do_nothing(index_elements=["user_id", "name"])
        )
        await session.execute(seed_stmt)
        await session.commit()
        logger.info(f"Created profile {user_id} with default categories")

    result = await session.execute(select(ProfileDB).where(ProfileDB.id == user_id))
    return result.scalar_one()


async def get_profile(
    user=Depends(verify_user_token), session: AsyncSession = Depends(get_session)
) -> ProfileDB:
    return await ensure_profile(session, user["id"])
