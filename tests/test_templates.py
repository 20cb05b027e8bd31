from decimal import Decimal

import pytest

from financeflow.dependencies import verify_user_token
from main import app

MOCK_USER = {"id": "12345"}


@pytest.fixture(autouse=True)
def auth():
    app.dependency_overrides[verify_user_token] = lambda: MOCK_USER


async def category_id(client, name="Food & Dining"):
    categories = (await client.get("/api/categories")).json()
    return next(c["id"] for c in categories if c["name"] == name)


@pytest.mark.asyncio
async def test_create_and_list_templates(client):
    food = await category_id(client)
    coffee = await client.post(
        "/api/templates", json={"name": "Coffee", "amount": "4.50", "category_id": food, "is_favorite": True}
    )
    assert coffee.status_code == 201, coffee.text
    await client.post("/api/templates", json={"name": "Bakery", "category_id": food})

    templates = (await client.get("/api/templates")).json()
    assert [t["name"] for t in templates] == ["Coffee", "Bakery"]

    favorites = (await client.get("/api/templates", params={"favorites_only": True})).json()
    assert [t["name"] for t in favorites] == ["Coffee"]

    response = await client.post("/api/templates", json={"name": "Coffee"})
    assert response.status_code == 409
    assert response.json()["detail"] == "A template with this name already exists."


@pytest.mark.asyncio
async def test_template_rejects_foreign_references(client):
    response = await client.post("/api/templates", json={"name": "Ghost", "category_id": 999999})
    assert response.status_code == 400

    response = await client.post("/api/templates", json={"name": "Ghost", "tag_ids": [999999]})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_use_template_creates_transaction(client):
    food = await category_id(client)
    tag = (await client.post("/api/tags", json={"name": "daily"})).json()
    template = (
        await client.post(
            "/api/templates",
            json={
                "name": "Lunch",
                "amount": "12.00",
                "category_id": food,
                "description": "Lunch special",
                "tag_ids": [tag["id"]],
            },
        )
    ).json()

    response = await client.post(f"/api/templates/{template['id']}/transactions", json={"date": "2024-05-05"})

    assert response.status_code == 201, response.text
    tx = response.json()
    assert Decimal(tx["amount"]) == Decimal("12.00")
    assert tx["type"] == "expense"
    assert tx["category_id"] == food
    assert tx["description"] == "Lunch special"
    assert tx["date"] == "2024-05-05"
    assert [t["name"] for t in tx["tags"]] == ["daily"]


@pytest.mark.asyncio
async def test_variable_price_template(client):
    food = await category_id(client)
    template = (await client.post("/api/templates", json={"name": "Groceries", "category_id": food})).json()

    response = await client.post(f"/api/templates/{template['id']}/transactions", json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "This template has variable pricing. Please provide an amount."

    response = await client.post(
        f"/api/templates/{template['id']}/transactions", json={"amount": "64.10", "description": "Weekly shop"}
    )
    assert response.status_code == 201
    assert Decimal(response.json()["amount"]) == Decimal("64.10")
    assert response.json()["description"] == "Weekly shop"


@pytest.mark.asyncio
async def test_incomplete_template(client):
    template = (await client.post("/api/templates", json={"name": "Mystery", "amount": "1.00"})).json()

    response = await client.post(f"/api/templates/{template['id']}/transactions", json={})

    assert response.status_code == 400
    assert response.json()["detail"].startswith("This template is incomplete.")


@pytest.mark.asyncio
async def test_update_toggle_and_delete(client):
    food = await category_id(client)
    template = (
        await client.post("/api/templates", json={"name": "Snack", "amount": "2.00", "category_id": food})
    ).json()

    response = await client.patch(f"/api/templates/{template['id']}", json={"amount": None, "name": "Snacks"})
    assert response.status_code == 200
    assert response.json()["amount"] is None
    assert response.json()["name"] == "Snacks"

    response = await client.post(f"/api/templates/{template['id']}/favorite")
    assert response.json()["is_favorite"] is True
    response = await client.post(f"/api/templates/{template['id']}/favorite")
    assert response.json()["is_favorite"] is False

    response = await client.delete(f"/api/templates/{template['id']}")
    assert response.status_code == 200
    assert (await client.get(f"/api/templates/{template['id']}")).status_code == 404
