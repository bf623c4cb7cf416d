import pytest

from api.app import create_app
from api.context import RENTAL_LIMITER
from config.settings import settings
from security.rate_limit import RateLimiter


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["success"] is True
    assert body["status"] == "OK"


async def test_services_lists_catalog(client):
    body = await (await client.get("/api/services")).json()
    assert body["count"] == 11
    assert body["services"]["india_115"]["price"] == 103


async def test_unknown_api_route_lists_endpoints(client):
    resp = await client.get("/api/nope")
    assert resp.status == 404
    body = await resp.json()
    assert body["success"] is False
    assert "/api/getNumber" in body["available"]


async def test_register_then_use_key(client):
    resp = await client.post("/api/register", json={"email": "new@example.com", "password": "secret1", "name": "Newbie"})
    assert resp.status == 200
    body = await resp.json()
    assert body["apiKey"].startswith("sk_")

    balance = await (await client.get("/api/getBalance", params={"api_key": body["apiKey"]})).json()
    assert balance == {"success": True, "balance": 0, "currency": "INR", "user": "new@example.com"}


@pytest.mark.parametrize(
    "payload",
    [
        {"email": "not-an-email", "password": "secret1", "name": "X"},
        {"email": "x@example.com", "password": "123", "name": "X"},
        {"email": "x@example.com", "password": "secret1"},
    ],
)
async def test_register_validation(client, payload):
    resp = await client.post("/api/register", json=payload)
    assert resp.status == 400
    assert (await resp.json())["code"] == "INVALID_INPUT"


async def test_register_rejects_malformed_json(client):
    resp = await client.post("/api/register", data="{oops", headers={"Content-Type": "application/json"})
    assert resp.status == 400


@pytest.mark.parametrize("params, headers", [({}, {}), ({"api_key": "sk_nope"}, {}), ({}, {"Authorization": "Bearer nope"})])
async def test_balance_requires_credentials(client, params, headers):
    resp = await client.get("/api/getBalance", params=params, headers=headers)
    assert resp.status == 401
    body = await resp.json()
    assert (body["success"], body["code"]) == (False, "UNAUTHENTICATED")


async def test_bearer_token_works_for_wallet(client, make_account):
    await make_account("alice", balance=75)
    resp = await client.get("/api/getBalance", headers={"Authorization": "Bearer token-alice"})
    assert (await resp.json())["balance"] == 75


async def test_full_rental_flow(client, make_account, provider, clock):
    alice = await make_account("alice", balance=200)
    key = {"api_key": alice.api_key}

    bought = await (await client.get("/api/getNumber", params={**key, "country": "philippines_51"})).json()
    assert bought["success"] is True
    assert (bought["price"], bought["newBalance"], bought["expiresIn"]) == (52, 148, 900)
    assert "basePrice" not in bought and "commission" not in bought

    again = await client.get("/api/getNumber", params={**key, "country": "philippines_51"})
    assert again.status == 409
    assert (await again.json())["code"] == "RENTAL_IN_PROGRESS"

    clock.advance(30)
    waiting = await (await client.get("/api/getOtp", params={**key, "id": bought["id"]})).json()
    assert (waiting["hasOtp"], waiting["status"], waiting["timeLeft"]) == (False, "active", 870)

    provider.statuses[bought["id"]] = "STATUS_OK:246810"
    done = await (await client.get("/api/getOtp", params={**key, "id": bought["id"]})).json()
    assert (done["otp"], done["status"]) == ("246810", "success")

    gone = await client.get("/api/getOtp", params={**key, "id": bought["id"]})
    assert gone.status == 404

    history = await (await client.get("/api/getHistory", params=key)).json()
    assert history["count"] == 1
    assert history["history"][0]["otp"] == "246810"
    assert history["active"] is None


async def test_expired_poll_reports_failure(client, make_account, clock):
    alice = await make_account("alice", balance=200)
    key = {"api_key": alice.api_key}
    bought = await (await client.get("/api/getNumber", params={**key, "country": "philippines_51"})).json()
    clock.advance(901)

    resp = await client.get("/api/getOtp", params={**key, "id": bought["id"]})

    assert resp.status == 200
    body = await resp.json()
    assert (body["success"], body["status"]) == (False, "expired")


async def test_cancel_refunds(client, make_account):
    alice = await make_account("alice", balance=200)
    key = {"api_key": alice.api_key}
    bought = await (await client.get("/api/getNumber", params={**key, "country": "india_115"})).json()

    body = await (await client.get("/api/cancelNumber", params={**key, "id": bought["id"]})).json()

    assert (body["refundAmount"], body["newBalance"], body["status"]) == (103, 200, "cancelled")


async def test_cancel_after_otp_returns_code(client, make_account, provider):
    alice = await make_account("alice", balance=200)
    key = {"api_key": alice.api_key}
    bought = await (await client.get("/api/getNumber", params={**key, "country": "india_115"})).json()
    provider.statuses[bought["id"]] = "STATUS_OK:135790"

    resp = await client.get("/api/cancelNumber", params={**key, "id": bought["id"]})

    assert resp.status == 409
    body = await resp.json()
    assert (body["code"], body["otp"]) == ("CANNOT_CANCEL", "135790")


async def test_purchase_errors(client, make_account, provider):
    alice = await make_account("alice", balance=10)
    key = {"api_key": alice.api_key}

    invalid = await client.get("/api/getNumber", params={**key, "country": "atlantis"})
    assert (invalid.status, (await invalid.json())["code"]) == (400, "INVALID_SERVICE")

    broke = await client.get("/api/getNumber", params={**key, "country": "india_115"})
    assert broke.status == 402
    assert (await broke.json())["required"] == 103
    assert provider.requested == []


async def test_get_number_is_rate_limited(app, aiohttp_client, redis_conn, make_account):
    app[RENTAL_LIMITER] = RateLimiter(redis_conn, 2, 60, "rental")
    client = await aiohttp_client(app)
    alice = await make_account("alice", balance=0)
    params = {"api_key": alice.api_key, "country": "india_115"}

    statuses = [(await client.get("/api/getNumber", params=params)).status for _ in range(3)]

    assert statuses == [402, 402, 429]


async def test_change_api_key(client, make_account):
    alice = await make_account("alice")

    resp = await client.post("/api/changeApiKey", params={"api_key": alice.api_key})
    body = await resp.json()
    assert body["newApiKey"] != alice.api_key

    stale = await client.get("/api/getBalance", params={"api_key": alice.api_key})
    assert stale.status == 401

    missing = await client.post("/api/changeApiKey")
    assert missing.status == 400


async def test_dashboard_requires_bearer(client, make_account):
    alice = await make_account("alice", balance=5)

    with_key = await client.get("/api/dashboard/user", params={"api_key": alice.api_key})
    assert with_key.status == 401

    body = await (await client.get("/api/dashboard/user", headers={"Authorization": "Bearer token-alice"})).json()
    assert body["user"]["wallet"] == 5
    assert body["active"] is None


async def test_dashboard_key_rotation_history(client, make_account):
    await make_account("alice")
    auth = {"Authorization": "Bearer token-alice"}

    await client.post("/api/dashboard/changeApiKey", headers=auth)
    body = await (await client.get("/api/dashboard/apiKeyHistory", headers=auth)).json()

    assert body["count"] == 1
    assert body["history"][0]["changeType"] == "dashboard_request"


async def test_dashboard_generate_api_key(client, make_account):
    alice = await make_account("alice", balance=7)
    auth = {"Authorization": "Bearer token-alice"}

    with_key = await client.post("/api/dashboard/generateApiKey", params={"api_key": alice.api_key})
    assert with_key.status == 401

    body = await (await client.post("/api/dashboard/generateApiKey", headers=auth)).json()
    assert body["success"] is True
    assert body["message"] == "New API key generated"
    assert body["apiKey"].startswith("sk_") and body["apiKey"] != alice.api_key

    stale = await client.get("/api/getBalance", params={"api_key": alice.api_key})
    assert stale.status == 401
    fresh = await (await client.get("/api/getBalance", params={"api_key": body["apiKey"]})).json()
    assert fresh["balance"] == 7


async def test_partner_flow(client, make_account):
    await make_account("seller")
    buyer = await make_account("buyer", balance=500)
    auth = {"Authorization": "Bearer token-seller"}

    registered = await client.post(
        "/api/partner/register", headers=auth, json={"markupKind": "percentage", "markupValue": 15, "code": "SELL15"},
    )
    assert registered.status == 200

    bought = await (await client.get(
        "/api/getNumber", params={"api_key": buyer.api_key, "country": "india_115", "ref": "SELL15"},
    )).json()
    assert bought["price"] == 118

    info = await (await client.get("/api/partner/info", headers=auth)).json()
    assert info["partner"]["pendingBalance"] == 15

    stats = await (await client.get("/api/partner/stats", headers=auth)).json()
    assert stats["sales"][0]["commission"] == 15

    prices = await (await client.get("/api/partner/prices", headers=auth)).json()
    assert prices["prices"]["india_115"]["finalPrice"] == 118

    withdraw = await client.post("/api/partner/withdraw", headers=auth, json={"amount": 5})
    assert withdraw.status == 402


async def test_admin_endpoints_require_admin(client, make_account):
    await make_account("alice")
    resp = await client.get("/api/admin/getUsers", headers={"Authorization": "Bearer token-alice"})
    assert resp.status == 403


async def test_admin_flow(client, make_account):
    await make_account("root", is_admin=True)
    await make_account("alice", balance=0)
    auth = {"Authorization": "Bearer token-root"}

    added = await (await client.post("/api/admin/addBalance", headers=auth, json={"userId": "alice", "amount": 300})).json()
    assert added["newBalance"] == 300

    users = await (await client.get("/api/admin/getUsers", headers=auth)).json()
    assert users["count"] == 2
    assert all(user["apiKey"].endswith("...") for user in users["users"])

    updated = await (await client.post(
        "/api/admin/updateUser", headers=auth, json={"userId": "alice", "updates": {"name": "Alice", "wallet": 250}},
    )).json()
    assert updated["updates"] == {"display_name": "Alice", "wallet": 250}

    detail = await (await client.get("/api/admin/user/alice", headers=auth)).json()
    assert detail["user"]["wallet"] == 250
    assert len(detail["transactions"]) == 2

    stats = await (await client.get("/api/admin/stats", headers=auth)).json()
    assert stats["stats"]["totalUsers"] == 2

    removed = await client.post("/api/admin/removeUser", headers=auth, json={"userId": "alice"})
    assert removed.status == 200
    missing = await client.get("/api/admin/user/alice", headers=auth)
    assert missing.status == 404


async def test_admin_partner_management(client, make_account):
    await make_account("root", is_admin=True)
    await make_account("seller")
    seller_auth = {"Authorization": "Bearer token-seller"}
    auth = {"Authorization": "Bearer token-root"}
    partner = (await (await client.post(
        "/api/partner/register", headers=seller_auth, json={"markupKind": "flat", "markupValue": 5},
    )).json())["partner"]

    suspended = await (await client.post(
        "/api/admin/partnerStatus", headers=auth, json={"partnerId": partner["id"], "status": "suspended"},
    )).json()
    assert suspended["partner"]["status"] == "suspended"

    settled = await client.post("/api/admin/settlePartner", headers=auth, json={"partnerId": partner["id"]})
    assert settled.status == 200


@pytest.mark.parametrize("trusted, expected", [(False, [200, 200, 429]), (True, [200, 200, 200])])
async def test_forwarded_for_cannot_dodge_api_limit(aiohttp_client, monkeypatch, session_factory, redis_conn,
                                                    provider, identity, clock, trusted, expected):
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 2)
    monkeypatch.setattr(settings, "TRUST_FORWARDED_FOR", trusted)
    app = create_app(
        session_factory=session_factory, redis_conn=redis_conn, provider=provider, identity=identity, clock=clock,
    )
    client = await aiohttp_client(app)

    statuses = [
        (await client.get("/api/health", headers={"X-Forwarded-For": f"198.51.100.{n}"})).status for n in range(3)
    ]

    assert statuses == expected
