import pytest

from financeflow.dependencies import verify_user_token
from main import app

MOCK_USER = {"id": "12345"}


@pytest.fixture(autouse=True)
def auth():
    app.dependency_overrides[verify_user_token] = lambda: MOCK_USER


@pytest.mark.asyncio
async def test_default_categories_listed(client):
    response = await client.get("/api/categories", params={"type": "income"})

    assert response.status_code == 200
    names = [c["name"] for c in response.json()]
    assert names == ["Freelance", "Investments", "Other Income", "Salary"]


@pytest.mark.asyncio
async def test_create_category_and_duplicate(client):
    payload = {"name": "  Pets ", "type": "expense", "color": "#123ABC"}

    response = await client.post("/api/categories", json=payload)
    assert response.status_code == 201, response.text
    assert response.json()["name"] == "Pets"

    response = await client.post("/api/categories", json=payload)
    assert response.status_code == 409
    assert response.json()["detail"] == "A category with this name already exists."


@pytest.mark.asyncio
async def test_create_category_validation(client):
    response = await client.post("/api/categories", json={"name": "Bad", "type": "expense", "color": "red"})
    assert response.status_code == 422

    response = await client.post("/api/categories", json={"name": "Bad", "type": "transfer"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_category_in_use_cannot_be_deleted(client):
    categories = (await client.get("/api/categories", params={"type": "expense"})).json()
    food = next(c for c in categories if c["name"] == "Food & Dining")

    response = await client.post("/api/transactions", json={"amount": "12.50", "category_id": food["id"]})
    assert response.status_code == 201, response.text

    check = await client.get(f"/api/categories/{food['id']}/check")
    assert check.json() == {"transaction_count": 1}

    response = await client.delete(f"/api/categories/{food['id']}")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_and_delete_category(client):
    created = (await client.post("/api/categories", json={"name": "Gifts", "type": "expense"})).json()

    response = await client.patch(f"/api/categories/{created['id']}", json={"name": "Presents", "color": "#00FF00"})
    assert response.status_code == 200
    assert response.json()["name"] == "Presents"
    assert response.json()["color"] == "#00FF00"

    response = await client.delete(f"/api/categories/{created['id']}")
    assert response.status_code == 200

    response = await client.get(f"/api/categories/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_other_users_category_is_hidden(client, session):
    created = (await client.post("/api/categories", json={"name": "Mine", "type": "expense"})).json()

    app.dependency_overrides[verify_user_token] = lambda: {"id": "someone-else"}
    response = await client.get(f"/api/categories/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_tags_are_idempotent(client):
    first = await client.post("/api/tags", json={"name": "vacation"})
    second = await client.post("/api/tags", json={"name": "vacation"})

    assert first.status_code == 200
    assert first.json()["id"] == second.json()["id"]

    tags = (await client.get("/api/tags")).json()
    assert [t["name"] for t in tags] == ["vacation"]


@pytest.mark.asyncio
async def test_tag_rename_conflict_and_delete(client):
    work = (await client.post("/api/tags", json={"name": "work"})).json()
    await client.post("/api/tags", json={"name": "home"})

    response = await client.patch(f"/api/tags/{work['id']}", json={"name": "home"})
    assert response.status_code == 409

    response = await client.patch(f"/api/tags/{work['id']}", json={"name": "office"})
    assert response.json()["name"] == "office"

    response = await client.delete(f"/api/tags/{work['id']}")
    assert response.status_code == 200
    assert (await client.get(f"/api/tags/{work['id']}")).status_code == 404
