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


async def spend(client, amount, category, day, **extra):
    response = await client.post(
        "/api/transactions", json={"amount": amount, "category_id": category, "date": day, **extra}
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_budget_requires_exactly_one_target(client):
    food = await category_id(client)
    tag = (await client.post("/api/tags", json={"name": "groceries"})).json()

    response = await client.post(
        "/api/budgets", json={"amount": "100.00", "period": "2024-05", "category_id": food, "tag_id": tag["id"]}
    )
    assert response.status_code == 422

    response = await client.post("/api/budgets", json={"amount": "100.00", "period": "2024-05"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_period_normalized_and_duplicate_rejected(client):
    food = await category_id(client)

    response = await client.post("/api/budgets", json={"amount": "300.00", "period": "2024-05-20", "category_id": food})
    assert response.status_code == 201, response.text
    assert response.json()["period"] == "2024-05-01"
    assert response.json()["category"]["name"] == "Food & Dining"

    response = await client.post("/api/budgets", json={"amount": "50.00", "period": "2024-05", "category_id": food})
    assert response.status_code == 409
    assert response.json()["detail"] == "A budget already exists for this category or tag in the specified period."

    # Same category, different month is fine
    response = await client.post("/api/budgets", json={"amount": "50.00", "period": "2024-06", "category_id": food})
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_category_budget_progress(client):
    food = await category_id(client)
    budget = (
        await client.post("/api/budgets", json={"amount": "200.00", "period": "2024-05", "category_id": food})
    ).json()

    await spend(client, "150.00", food, "2024-05-03")
    await spend(client, "75.00", food, "2024-05-31")
    await spend(client, "999.00", food, "2024-06-01")

    progress = (await client.get(f"/api/budgets/{budget['id']}/progress")).json()

    assert float(progress["spent_amount"]) == 225.0
    assert float(progress["spent_percentage"]) == 112.5
    assert progress["is_overspent"] is True
    assert progress["target_type"] == "category"
    assert progress["period_end"] == "2024-05-31"

    listed = (await client.get("/api/budgets/progress", params={"period": "2024-05"})).json()
    assert [p["budget_id"] for p in listed] == [budget["id"]]


@pytest.mark.asyncio
async def test_tag_budget_counts_tagged_expenses_only(client):
    food = await category_id(client)
    salary = await category_id(client, "Salary")
    trip = (await client.post("/api/tags", json={"name": "trip"})).json()["id"]
    budget = (await client.post("/api/budgets", json={"amount": "100.00", "period": "2024-05", "tag_id": trip})).json()

    await spend(client, "40.00", food, "2024-05-10", tag_ids=[trip])
    await spend(client, "10.00", food, "2024-05-11")
    await spend(client, "500.00", salary, "2024-05-12", type="income", tag_ids=[trip])

    progress = (await client.get(f"/api/budgets/{budget['id']}/progress")).json()

    assert progress["budget_name"] == "#trip"
    assert float(progress["spent_amount"]) == 40.0
    assert progress["is_overspent"] is False


@pytest.mark.asyncio
async def test_breakdown_by_payment_method(client):
    food = await category_id(client)
    card = (await client.post("/api/payment-methods", json={"name": "Card", "currency": "USD"})).json()["id"]
    cash = (await client.post("/api/payment-methods", json={"name": "Cash", "currency": "USD"})).json()["id"]
    budget = (
        await client.post("/api/budgets", json={"amount": "100.00", "period": "2024-05", "category_id": food})
    ).json()

    await spend(client, "30.00", food, "2024-05-01", payment_method_id=card)
    await spend(client, "20.00", food, "2024-05-02", payment_method_id=card)
    await spend(client, "10.00", food, "2024-05-03", payment_method_id=cash)

    data = (await client.get(f"/api/budgets/{budget['id']}/breakdown")).json()

    assert float(data["total_spent"]) == 60.0
    assert [pm["payment_method_name"] for pm in data["payment_methods"]] == ["Card", "Cash"]
    assert data["payment_methods"][0]["transaction_count"] == 2
    assert float(data["payment_methods"][0]["percentage"]) == 50.0


@pytest.mark.asyncio
async def test_update_and_delete_budget(client):
    food = await category_id(client)
    budget = (
        await client.post("/api/budgets", json={"amount": "100.00", "period": "2024-05", "category_id": food})
    ).json()

    response = await client.patch(f"/api/budgets/{budget['id']}", json={"amount": "150.00", "period": "2024-07-15"})
    assert response.status_code == 200
    assert float(response.json()["amount"]) == 150.0
    assert response.json()["period"] == "2024-07-01"

    response = await client.delete(f"/api/categories/{food}")
    assert response.status_code == 400

    response = await client.delete(f"/api/budgets/{budget['id']}")
    assert response.status_code == 200
    assert (await client.get(f"/api/budgets/{budget['id']}")).status_code == 404
