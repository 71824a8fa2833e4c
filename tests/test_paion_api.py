"""HTTP surface over the in-memory store."""

import pytest

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 32
BOB = "0x" + "b2" * 32


def _earn(address, amount, **extra):
    return {"address": address, "amount": amount, "description": "Achievement unlocked", "source_type": "achievement", **extra}


async def test_balance_of_unknown_address_is_zero(client):
    r = await client.get("/v1/paion/balance", params={"address": ALICE})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["balance"] == 0
    assert body["locked_balance"] == 0
    assert body["total_earned"] == 0
    assert body["total_spent"] == 0
    assert body["last_transaction_at"] is None


async def test_balance_requires_address(client):
    r = await client.get("/v1/paion/balance", params={"address": "  "})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["error"]["code"] == "VALIDATION_ERROR"


async def test_earn_needs_server_key(client):
    r = await client.post("/v1/paion/earn", json=_earn(ALICE, 100))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"

    r = await client.post("/v1/paion/earn", json=_earn(ALICE, 100), headers={"X-Ledger-Key": "wrong"})
    assert r.status_code == 403


async def test_earn_then_spend(client, server_headers):
    r = await client.post("/v1/paion/earn", json=_earn(ALICE, 100), headers=server_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["balance"] == 100
    assert body["transaction"]["transaction_type"] == "earned"
    assert body["transaction"]["balance_before"] == 0
    assert body["transaction"]["balance_after"] == 100

    r = await client.post(
        "/v1/paion/spend",
        json={"address": ALICE, "amount": 150, "description": "Buy", "source_type": "marketplace"},
    )
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INSUFFICIENT_BALANCE"
    assert body["error"]["details"] == {"address": ALICE, "available": 100, "required": 150, "field": "balance"}

    r = await client.post(
        "/v1/paion/spend",
        json={"address": ALICE, "amount": 40, "description": "Buy", "source_type": "marketplace"},
    )
    assert r.status_code == 200
    assert r.json()["transaction"]["balance_after"] == 60


async def test_mutate_returns_structured_results(client, server_headers):
    r = await client.post("/v1/paion/mutate", json=_earn(ALICE, 50), headers=server_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["balance"] == 50
    assert body["error"] is None
    assert "status_code" not in body

    r = await client.post("/v1/paion/mutate", json={**_earn(ALICE, -80), "source_type": "swap"})
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["balance"] is None
    assert body["error"]["code"] == "INSUFFICIENT_BALANCE"

    r = await client.post("/v1/paion/mutate", json={**_earn(ALICE, -20), "source_type": "swap"})
    assert r.status_code == 200
    assert r.json()["balance"] == 30


async def test_request_id_is_echoed(client):
    r = await client.get("/v1/paion/balance", params={"address": ALICE}, headers={"X-Request-ID": "req-1"})
    assert r.headers["X-Request-ID"] == "req-1"


async def test_transactions_paging(client, server_headers):
    for i in range(3):
        await client.post("/v1/paion/earn", json=_earn(ALICE, 10 + i), headers=server_headers)
    r = await client.get("/v1/paion/transactions", params={"address": ALICE, "limit": 2, "offset": 0})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["totalCount"] == 3
    assert body["hasMore"] is True
    assert [t["amount"] for t in body["transactions"]] == [12, 11]

    r = await client.get("/v1/paion/transactions", params={"address": ALICE, "limit": 2, "offset": 2})
    body = r.json()
    assert body["hasMore"] is False
    assert [t["amount"] for t in body["transactions"]] == [10]


async def test_transactions_type_filter_and_validation(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 10), headers=server_headers)
    r = await client.get("/v1/paion/transactions", params={"address": ALICE, "type": "spent"})
    assert r.json()["totalCount"] == 0

    r = await client.get("/v1/paion/transactions", params={"address": ALICE, "type": "minted"})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = await client.get("/v1/paion/transactions", params={"address": ALICE, "limit": -1})
    assert r.status_code == 400


async def test_recent_transactions(client, server_headers):
    for i in range(6):
        await client.post("/v1/paion/earn", json=_earn(ALICE, 1 + i), headers=server_headers)
    r = await client.get("/v1/paion/transactions/recent", params={"address": ALICE})
    assert r.status_code == 200
    assert [t["amount"] for t in r.json()] == [6, 5, 4, 3, 2]


async def test_initialize_balance(client):
    r = await client.post("/v1/paion/balance/initialize", json={"address": BOB})
    assert r.status_code == 200
    assert r.json()["balance"] == 0
    r = await client.get("/v1/paion/stats")
    assert r.json() == {"totalSupply": 0, "totalUsers": 1, "totalTransactions": 0}


async def test_transfer_endpoint(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 100), headers=server_headers)
    r = await client.post("/v1/paion/transfer", json={"from_address": ALICE, "to_address": BOB, "amount": 25})
    assert r.status_code == 200
    body = r.json()
    assert body["balance"] == 75
    assert body["recipient_balance"] == 25
    assert [t["transaction_type"] for t in body["transactions"]] == ["transfer_out", "transfer_in"]

    r = await client.post("/v1/paion/transfer", json={"from_address": ALICE, "to_address": ALICE, "amount": 5})
    assert r.status_code == 400


async def test_lock_unlock_endpoints(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 100), headers=server_headers)
    r = await client.post("/v1/paion/lock", json={"address": ALICE, "amount": 30, "description": "Stake"})
    assert r.status_code == 200
    assert (r.json()["balance"], r.json()["locked_balance"]) == (70, 30)

    r = await client.post("/v1/paion/unlock", json={"address": ALICE, "amount": 30, "description": "Unstake"})
    assert r.status_code == 403

    r = await client.post(
        "/v1/paion/unlock", json={"address": ALICE, "amount": 30, "description": "Unstake"}, headers=server_headers
    )
    assert r.status_code == 200
    assert (r.json()["balance"], r.json()["locked_balance"]) == (100, 0)


async def test_metadata_schema_enforced(client, server_headers):
    r = await client.post(
        "/v1/paion/earn",
        json=_earn(ALICE, 10, metadata={"achievement_id": "first-login", "surprise": True}),
        headers=server_headers,
    )
    assert r.status_code == 422
    assert r.json()["success"] is False


async def test_notifications_flow(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 10), headers=server_headers)
    r = await client.get("/v1/notifications", params={"address": ALICE, "unread_only": True})
    assert r.status_code == 200
    items = r.json()
    assert len(items) == 1
    assert items[0]["message"] == "Earned 10 pAION tokens!"

    nid = items[0]["id"]
    r = await client.post(f"/v1/notifications/{nid}/read", params={"address": BOB})
    assert r.status_code == 404
    r = await client.post(f"/v1/notifications/{nid}/read", params={"address": ALICE})
    assert r.status_code == 200
    assert r.json()["read"] is True

    r = await client.get("/v1/notifications", params={"address": ALICE, "unread_only": True})
    assert r.json() == []


async def test_admin_stats_and_reconcile(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 60), headers=server_headers)
    await client.post("/v1/paion/earn", json=_earn(BOB, 40), headers=server_headers)

    r = await client.get("/v1/admin/paion-stats")
    assert r.status_code == 403

    r = await client.get("/v1/admin/paion-stats", params={"top": 1}, headers=server_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["cached"] is False
    assert body["ttl_seconds"] == 0
    stats = body["stats"]
    assert stats["totalSupply"] == 100
    assert stats["totalHolders"] == 2
    assert stats["topHolders"] == [{"address": ALICE, "balance": 60, "percentage": 60.0}]

    r = await client.get("/v1/admin/reconcile", params={"address": ALICE}, headers=server_headers)
    assert r.status_code == 200
    assert r.json()["consistent"] is True


async def test_reused_source_id_with_other_amount_conflicts(client, server_headers):
    await client.post("/v1/paion/earn", json=_earn(ALICE, 100, source_id="ach-9"), headers=server_headers)
    r = await client.post("/v1/paion/earn", json=_earn(ALICE, 100, source_id="ach-9"), headers=server_headers)
    assert r.status_code == 200
    assert r.json()["replayed"] is True

    r = await client.post("/v1/paion/earn", json=_earn(ALICE, 500, source_id="ach-9"), headers=server_headers)
    assert r.status_code == 409
    body = r.json()
    assert body["error"]["code"] == "IDEMPOTENCY_MISMATCH"
    assert body["error"]["details"]["recorded"] == {"transaction_type": "earned", "source_type": "achievement", "amount": 100}

    r = await client.get("/v1/paion/balance", params={"address": ALICE})
    assert r.json()["balance"] == 100
