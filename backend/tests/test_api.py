import asyncio
from contextlib import asynccontextmanager

from httpx import ASGITransport, AsyncClient

from stock_tracker.config import get_settings
from stock_tracker.db.session import Database
from stock_tracker.main import create_app
from stock_tracker.providers.market_data import InMemoryMarketData

HEADERS = {"X-User-Id": "user-1"}


def _client(database: Database, market_data: InMemoryMarketData):
    app = create_app(database, market_data)

    @asynccontextmanager
    async def _manager():
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client

    return _manager


def _buy(symbol: str = "AAPL", shares: str = "10", price: str = "150", day: str = "2024-01-05") -> dict[str, str]:
    return {"type": "BUY", "symbol": symbol, "transaction_date": day, "shares": shares, "price_per_share": price}


def test_requests_without_user_are_rejected(database, market_data):
    client_manager = _client(database, market_data)

    async def _scenario():
        async with client_manager() as api_client:
            response = await api_client.get("/api/transactions")
            assert response.status_code == 401
            assert response.json()["detail"] == "Missing user context"

            health = await api_client.get("/health")
            assert health.json() == {"status": "ok"}

    asyncio.run(_scenario())


def test_transaction_lifecycle_and_portfolio(database, market_data):
    client_manager = _client(database, market_data)

    async def _scenario():
        async with client_manager() as api_client:
            created = await api_client.post("/api/transactions", json=_buy(), headers=HEADERS)
            assert created.status_code == 201
            payload = created.json()
            assert payload["symbol"] == "AAPL"
            assert payload["company_name"] == "Apple Inc."
            assert payload["total_amount"] == 1500.0

            portfolio = await api_client.get("/api/portfolio", headers=HEADERS)
            assert portfolio.status_code == 200
            snapshot = portfolio.json()
            assert snapshot["total_value"] == 1900.0
            assert snapshot["total_cost"] == 1500.0
            assert [holding["symbol"] for holding in snapshot["holdings"]] == ["AAPL"]
            assert snapshot["holdings"][0]["weight"] == 100.0

            other_user = await api_client.get("/api/transactions", headers={"X-User-Id": "user-2"})
            assert other_user.json() == []

            oversell = await api_client.post(
                "/api/transactions",
                json={**_buy(shares="11"), "type": "SELL", "transaction_date": "2024-02-01"},
                headers=HEADERS,
            )
            assert oversell.status_code == 400
            assert oversell.json()["detail"]["field"] == "shares"

            updated = await api_client.put(
                f"/api/transactions/{payload['id']}", json=_buy(shares="12"), headers=HEADERS
            )
            assert updated.status_code == 200
            assert updated.json()["shares"] == 12.0

            export = await api_client.get("/api/transactions/export", headers=HEADERS)
            assert export.headers["content-type"].startswith("text/csv")
            assert "attachment" in export.headers["content-disposition"]
            assert export.text.splitlines()[1].startswith("BUY,AAPL,")

            deleted = await api_client.delete(f"/api/transactions/{payload['id']}", headers=HEADERS)
            assert deleted.status_code == 204
            missing = await api_client.delete(f"/api/transactions/{payload['id']}", headers=HEADERS)
            assert missing.status_code == 404

            empty = await api_client.get("/api/portfolio", headers=HEADERS)
            assert empty.json()["holdings"] == []

    asyncio.run(_scenario())


def test_request_validation_and_ticker_lookup(database, market_data):
    client_manager = _client(database, market_data)

    async def _scenario():
        async with client_manager() as api_client:
            negative = await api_client.post("/api/transactions", json=_buy(shares="-1"), headers=HEADERS)
            assert negative.status_code == 422

            unknown = await api_client.post("/api/transactions", json=_buy(symbol="ZZZZ"), headers=HEADERS)
            assert unknown.status_code == 400
            assert unknown.json()["detail"]["message"] == "Invalid ticker symbol"

            lookup = await api_client.get(
                "/api/transactions/validate-ticker", params={"symbol": "msft"}, headers=HEADERS
            )
            assert lookup.json()["valid"] is True
            assert lookup.json()["company_name"] == "Microsoft Corporation"

            bad_range = await api_client.get(
                "/api/portfolio/performance", params={"range": "6w"}, headers=HEADERS
            )
            assert bad_range.status_code == 400
            assert bad_range.json()["detail"]["field"] == "range"

            no_history = await api_client.get("/api/portfolio/performance", headers=HEADERS)
            assert no_history.status_code == 200
            assert no_history.json() == []

    asyncio.run(_scenario())


def test_import_flow(database, market_data):
    client_manager = _client(database, market_data)
    mappings = {"Date": "transaction_date", "Ticker": "symbol", "Qty": "shares", "Price": "price_per_share"}
    rows = [
        {"row_number": 1, "values": {"Date": "01/05/2024", "Ticker": "aapl", "Qty": "10", "Price": "$150.00"}},
        {"row_number": 2, "values": {"Date": "01/06/2024", "Ticker": "aapl", "Qty": "abc", "Price": "150"}},
        {"row_number": 3, "values": {"Date": "02/01/2024", "Ticker": "aapl", "Qty": "-4", "Price": "160"}},
    ]

    async def _scenario():
        async with client_manager() as api_client:
            suggestion = await api_client.post(
                "/api/transactions/import/suggest-mapping",
                json={"headers": ["Date", "Ticker", "Qty", "Price", "Fees"]},
                headers=HEADERS,
            )
            assert suggestion.status_code == 200
            assert suggestion.json()["suggested_mappings"] == mappings

            preview = await api_client.post(
                "/api/transactions/import/preview",
                json={"rows": rows, "field_mappings": mappings},
                headers=HEADERS,
            )
            assert preview.status_code == 200
            body = preview.json()
            assert (body["valid_count"], body["error_count"]) == (2, 1)
            assert body["error_rows"][0]["errors"][0]["field"] == "shares"
            assert body["valid_rows"][1]["type"] == "SELL"

            incomplete = await api_client.post(
                "/api/transactions/import/preview",
                json={"rows": rows, "field_mappings": {"Ticker": "symbol"}},
                headers=HEADERS,
            )
            assert incomplete.status_code == 400
            assert "transaction_date" in incomplete.json()["detail"]["missing_fields"]

            imported = await api_client.post(
                "/api/transactions/import",
                json={"rows": rows, "field_mappings": mappings},
                headers=HEADERS,
            )
            assert imported.status_code == 200
            result = imported.json()
            assert result["imported_count"] == 2
            assert result["skipped_count"] == 1
            assert [tx["symbol"] for tx in result["imported_transactions"]] == ["AAPL", "AAPL"]

            report = await api_client.post("/api/portfolio/holdings/recalculate", headers=HEADERS)
            assert report.status_code == 200
            assert report.json()["recalculated"] == ["AAPL"]
            assert report.json()["failed"] == {}

    asyncio.run(_scenario())


def test_internal_token_is_enforced_when_configured(database, market_data, monkeypatch):
    monkeypatch.setenv("INTERNAL_AUTH_TOKEN", "secret")
    get_settings.cache_clear()
    client_manager = _client(database, market_data)

    async def _scenario():
        async with client_manager() as api_client:
            rejected = await api_client.get("/api/transactions", headers=HEADERS)
            assert rejected.status_code == 401
            assert rejected.json()["detail"] == "Invalid internal token"

            accepted = await api_client.get(
                "/api/transactions", headers={**HEADERS, "X-Internal-Token": "secret"}
            )
            assert accepted.status_code == 200

    try:
        asyncio.run(_scenario())
    finally:
        get_settings.cache_clear()
