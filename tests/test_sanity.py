import pytest
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from financeflow.database import flush_or_raise
from financeflow.errors import ConflictError
from financeflow.models.sql import ProfileDB


@pytest.mark.asyncio
async def test_database_connection(session):
    result = await session.execute(text("SELECT 1"))
    assert result.scalar() == 1


@pytest.mark.asyncio
async def test_tables_exist(session):
    # Should not raise ProgrammingError if table exists
    result = await session.get(ProfileDB, "non-existent-id")
    assert result is None


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_flush_conflict_becomes_409(mocker):
    session = mocker.AsyncMock()
    session.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

    with pytest.raises(ConflictError) as exc_info:
        await flush_or_raise(session, "Could not create a default payment method. Please try again.")

    assert exc_info.value.status_code == 409
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_flush_constraint_without_conflict_message_is_500(mocker):
    session = mocker.AsyncMock()
    session.flush.side_effect = IntegrityError("INSERT", {}, Exception("check constraint"))

    with pytest.raises(HTTPException) as exc_info:
        await flush_or_raise(session)

    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "Database error"
    session.rollback.assert_awaited_once()
