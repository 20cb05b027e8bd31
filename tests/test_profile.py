import urllib.parse

import pytest
from sqlalchemy import func, select

from financeflow.constants import DEFAULT_CATEGORIES
from financeflow.dependencies import sign_token_payload, verify_user_token
from financeflow.models.sql import CategoryDB
from main import app

MOCK_USER = {"id": "12345"}
SECRET = "test-secret"


def make_token(payload: dict, secret: str = SECRET) -> str:
    return urllib.parse.urlencode({**payload, "hash": sign_token_payload(payload, secret)})


@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/api/profile")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_tampered_token_rejected(client, mocker):
    mocker.patch("financeflow.dependencies.AUTH_SECRET", SECRET)
    token = make_token({"user_id": "42", "auth_date": "1700000000"}, secret="other-secret")

    response = await client.get("/api/profile", headers={"X-Auth-Token": token})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_signed_token_creates_profile(client, session, mocker):
    mocker.patch("financeflow.dependencies.AUTH_SECRET", SECRET)
    token = make_token({"user_id": "42", "auth_date": "1700000000"})

    response = await client.get("/api/profile", headers={"X-Auth-Token": token})

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["id"] == "42"
    assert data["currency"] == "USD"

    seeded = await session.scalar(select(func.count()).select_from(CategoryDB).where(CategoryDB.user_id == "42"))
    assert seeded == len(DEFAULT_CATEGORIES)


@pytest.mark.asyncio
async def test_profile_seeding_runs_once(client, session):
    app.dependency_overrides[verify_user_token] = lambda: MOCK_USER

    await client.get("/api/profile")
    await client.get("/api/profile")

    seeded = await session.scalar(
        select(func.count()).select_from(CategoryDB).where(CategoryDB.user_id == MOCK_USER["id"])
    )
    assert seeded == len(DEFAULT_CATEGORIES)


@pytest.mark.asyncio
async def test_update_base_currency(client):
    app.dependency_overrides[verify_user_token] = lambda: MOCK_USER

    response = await client.patch("/api/profile/currency", json={"currency": "eur"})
    assert response.status_code == 200
    assert response.json()["currency"] == "EUR"

    response = await client.patch("/api/profile/currency", json={"currency": "XYZ"})
    assert response.status_code == 422
