from decimal import Decimal

import pytest
from sqlalchemy import select

from financeflow.dependencies import verify_user_token
from financeflow.models.sql import PaymentMethodDB, TransactionDB
from main import app

MOCK_USER = {"id": "12345"}
FETCH = "financeflow.services.exchange_rates.ExchangeRateService._fetch_rates_from_api"


@pytest.fixture(autouse=True)
def auth():
    app.dependency_overrides[verify_user_token] = lambda: MOCK_USER


async def category_id(client, name="Food & Dining"):
    categories = (await client.get("/api/categories")).json()
    return next(c["id"] for c in categories if c["name"] == name)


async def create_pm(client, name, currency="USD"):
    response = await client.post("/api/payment-methods", json={"name": name, "currency": currency})
    return response.json()["id"]


@pytest.mark.asyncio
async def test_fallback_payment_method_created(client, session):
    payload = {"amount": "20.00", "category_id": await category_id(client), "date": "2024-05-02"}

    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["payment_method"]["name"] == "Cash/Wallet"
    assert data["payment_method"]["currency"] == "USD"
    assert Decimal(data["amount"]) == Decimal("20.00")
    assert Decimal(data["exchange_rate"]) == Decimal("1")
    assert data["base_currency"] == "USD"

    pm = await session.get(PaymentMethodDB, data["payment_method_id"])
    assert pm.is_default is True

    # The second transaction reuses the same method
    response = await client.post("/api/transactions", json=payload)
    assert response.json()["payment_method_id"] == data["payment_method_id"]


@pytest.mark.asyncio
async def test_create_transaction_with_currency_conversion(client, session, mocker):
    """
    Tests the full transaction creation cycle via API.
    """
    mocker.patch(FETCH, return_value={"USD": 1, "EUR": 0.5})
    pm_id = await create_pm(client, "Euro Card", "EUR")

    payload = {"amount": "100.00", "category_id": await category_id(client), "payment_method_id": pm_id}
    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 201, response.text
    data = response.json()
    assert Decimal(data["native_amount"]) == Decimal("100.00")
    assert Decimal(data["exchange_rate"]) == Decimal("2")
    assert Decimal(data["amount"]) == Decimal("200.00")

    tx = await session.get(TransactionDB, data["id"])
    assert tx.base_currency == "USD"


@pytest.mark.asyncio
async def test_manual_rate_skips_lookup(client, mocker):
    fetch = mocker.patch(FETCH)
    pm_id = await create_pm(client, "Lira", "TRY")

    payload = {
        "amount": "300.00",
        "category_id": await category_id(client),
        "payment_method_id": pm_id,
        "manual_exchange_rate": "0.0333",
    }
    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 201, response.text
    assert Decimal(response.json()["amount"]) == Decimal("9.99")
    fetch.assert_not_called()


@pytest.mark.asyncio
async def test_missing_rate_rejected(client, mocker):
    mocker.patch(FETCH, return_value=None)
    pm_id = await create_pm(client, "Pounds", "GBP")

    payload = {"amount": "10.00", "category_id": await category_id(client), "payment_method_id": pm_id}
    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Exchange rate not available for GBP to USD.")


@pytest.mark.asyncio
async def test_amount_converting_to_zero_rejected(client, session):
    pm_id = await create_pm(client, "Dong Wallet", "VND")

    payload = {
        "amount": "100",
        "category_id": await category_id(client),
        "payment_method_id": pm_id,
        "manual_exchange_rate": "0.0000393",
    }
    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Amount is too small: it converts to 0.00 USD.")
    rows = (await session.execute(select(TransactionDB))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_invalid_amount_and_category(client):
    food = await category_id(client)

    response = await client.post("/api/transactions", json={"amount": "0", "category_id": food})
    assert response.status_code == 422

    response = await client.post("/api/transactions", json={"amount": "1.234", "category_id": food})
    assert response.status_code == 422

    response = await client.post("/api/transactions", json={"amount": "5.00", "category_id": 999999})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid category. Please select a valid category."


@pytest.mark.asyncio
async def test_tag_filter_requires_all_tags(client):
    food = await category_id(client)
    trip = (await client.post("/api/tags", json={"name": "trip"})).json()["id"]
    paris = (await client.post("/api/tags", json={"name": "paris"})).json()["id"]

    await client.post("/api/transactions", json={"amount": "10.00", "category_id": food, "tag_ids": [trip, paris]})
    await client.post("/api/transactions", json={"amount": "20.00", "category_id": food, "tag_ids": [trip]})

    response = await client.get("/api/transactions", params={"tag_ids": [trip, paris]})
    data = response.json()
    assert len(data) == 1
    assert sorted(t["name"] for t in data[0]["tags"]) == ["paris", "trip"]

    response = await client.get("/api/transactions", params={"tag_ids": [trip]})
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_unknown_tag_rejected(client):
    payload = {"amount": "10.00", "category_id": await category_id(client), "tag_ids": [424242]}
    response = await client.post("/api/transactions", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid tags. Please select valid tags."


@pytest.mark.asyncio
async def test_filters_and_ordering(client):
    food = await category_id(client)
    salary = await category_id(client, "Salary")
    await client.post("/api/transactions", json={"amount": "1.00", "category_id": food, "date": "2024-01-10"})
    await client.post("/api/transactions", json={"amount": "2.00", "category_id": food, "date": "2024-02-10"})
    await client.post(
        "/api/transactions", json={"amount": "3.00", "type": "income", "category_id": salary, "date": "2024-03-10"}
    )

    data = (await client.get("/api/transactions")).json()
    assert [d["date"] for d in data] == ["2024-03-10", "2024-02-10", "2024-01-10"]

    data = (await client.get("/api/transactions", params={"type": "expense", "date_from": "2024-02-01"})).json()
    assert [Decimal(d["amount"]) for d in data] == [Decimal("2.00")]


@pytest.mark.asyncio
async def test_update_recalculates_amount(client, mocker):
    mocker.patch(FETCH, return_value={"USD": 1, "EUR": 0.5})
    food = await category_id(client)
    tx = (await client.post("/api/transactions", json={"amount": "10.00", "category_id": food})).json()
    eur = await create_pm(client, "Euro Card", "EUR")

    response = await client.patch(f"/api/transactions/{tx['id']}", json={"payment_method_id": eur})

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["payment_method_id"] == eur
    assert Decimal(data["native_amount"]) == Decimal("10.00")
    assert Decimal(data["amount"]) == Decimal("20.00")

    response = await client.patch(f"/api/transactions/{tx['id']}", json={"description": "Lunch"})
    assert response.json()["description"] == "Lunch"
    assert Decimal(response.json()["amount"]) == Decimal("20.00")


@pytest.mark.asyncio
async def test_update_and_delete_missing(client):
    response = await client.patch("/api/transactions/999999", json={"description": "x"})
    assert response.status_code == 404

    response = await client.delete("/api/transactions/999999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_transaction(client, session):
    tx = (await client.post("/api/transactions", json={"amount": "3.00", "category_id": await category_id(client)})).json()

    response = await client.delete(f"/api/transactions/{tx['id']}")
    assert response.status_code == 200

    result = await session.execute(select(TransactionDB).where(TransactionDB.id == tx["id"]))
    assert result.scalar_one_or_none() is None
    assert (await client.get(f"/api/transactions/{tx['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_balance_and_expenses(client):
    food = await category_id(client)
    salary = await category_id(client, "Salary")
    await client.post(
        "/api/transactions", json={"amount": "100.00", "type": "income", "category_id": salary, "date": "2024-06-01"}
    )
    await client.post("/api/transactions", json={"amount": "30.00", "category_id": food, "date": "2024-06-15"})
    await client.post("/api/transactions", json={"amount": "5.00", "category_id": food, "date": "2024-07-01"})

    data = (await client.get("/api/transactions/balance")).json()
    assert float(data["balance"]) == 65.0
    assert float(data["income"]) == 100.0
    assert float(data["expense"]) == 35.0

    data = (await client.get("/api/transactions/expenses", params={"period": "2024-06"})).json()
    assert float(data["total_expenses"]) == 30.0
    assert data["transaction_count"] == 1
    assert data["period_end"] == "2024-06-30"

    response = await client.get("/api/transactions/expenses", params={"period": "June"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_total_balance_in_base(client, mocker):
    mocker.patch(FETCH, return_value={"USD": 1, "EUR": 0.5})
    salary = await category_id(client, "Salary")
    usd = await create_pm(client, "Dollars")
    eur = await create_pm(client, "Euros", "EUR")

    await client.post(
        "/api/transactions",
        json={"amount": "10.00", "type": "income", "category_id": salary, "payment_method_id": usd},
    )
    await client.post(
        "/api/transactions",
        json={"amount": "50.00", "type": "income", "category_id": salary, "payment_method_id": eur},
    )

    data = (await client.get("/api/transactions/balance/total")).json()

    assert data["base_currency"] == "USD"
    assert float(data["total"]) == 110.0
    assert len(data["breakdown"]) == 2
