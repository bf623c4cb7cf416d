import pytest
from aiohttp import web

from services.identity_service import IdentityProviderService
from utils.exceptions import Conflict, InvalidInput, ProviderError, ProviderUnavailable, Unauthenticated


def _error(message: str, status: int = 400) -> web.Response:
    return web.json_response({"error": {"code": status, "message": message}}, status=status)


@pytest.fixture
async def identity_server(aiohttp_server):
    state = {"lookup": None, "signUp": None, "signIn": None, "calls": []}

    async def lookup(request: web.Request) -> web.Response:
        body = await request.json()
        state["calls"].append(("lookup", request.query.get("key"), body))
        if state["lookup"] is not None:
            return state["lookup"]
        return web.json_response({"users": [{"localId": "uid-42", "email": "a@example.com", "emailVerified": True}]})

    async def sign_up(request: web.Request) -> web.Response:
        body = await request.json()
        state["calls"].append(("signUp", request.query.get("key"), body))
        if state["signUp"] is not None:
            return state["signUp"]
        return web.json_response({"localId": "uid-new", "email": body["email"], "idToken": "fresh-token"})

    async def sign_in(request: web.Request) -> web.Response:
        body = await request.json()
        state["calls"].append(("signInWithPassword", request.query.get("key"), body))
        if state["signIn"] is not None:
            return state["signIn"]
        return web.json_response({"localId": "uid-old", "email": body["email"], "idToken": "old-token"})

    async def update(request: web.Request) -> web.Response:
        state["calls"].append(("update", request.query.get("key"), await request.json()))
        return web.json_response({"localId": "uid-new"})

    async def send_oob(request: web.Request) -> web.Response:
        body = await request.json()
        state["calls"].append(("sendOobCode", request.query.get("key"), body))
        return web.json_response({"email": body["email"]})

    app = web.Application()
    app.router.add_post("/v1/accounts:lookup", lookup)
    app.router.add_post("/v1/accounts:signUp", sign_up)
    app.router.add_post("/v1/accounts:update", update)
    app.router.add_post("/v1/accounts:signInWithPassword", sign_in)
    app.router.add_post("/v1/accounts:sendOobCode", send_oob)
    server = await aiohttp_server(app)
    client = IdentityProviderService(api_key="web-key", base_url=str(server.make_url("/v1")))
    return client, state


async def test_verify_token(identity_server):
    client, state = identity_server

    claims = await client.verify_token("id-token")

    assert (claims.uid, claims.email, claims.email_verified) == ("uid-42", "a@example.com", True)
    assert state["calls"] == [("lookup", "web-key", {"idToken": "id-token"})]


@pytest.mark.parametrize("message", ["INVALID_ID_TOKEN", "TOKEN_EXPIRED", "USER_DISABLED"])
async def test_rejected_tokens_are_unauthenticated(identity_server, message):
    client, state = identity_server
    state["lookup"] = _error(message)
    with pytest.raises(Unauthenticated):
        await client.verify_token("bad")


async def test_empty_lookup_is_unauthenticated(identity_server):
    client, state = identity_server
    state["lookup"] = web.json_response({"users": []})
    with pytest.raises(Unauthenticated):
        await client.verify_token("orphan")


async def test_provider_outage_is_not_an_auth_failure(identity_server):
    client, state = identity_server
    state["lookup"] = web.Response(status=503, text="unavailable")
    with pytest.raises(ProviderUnavailable):
        await client.verify_token("id-token")


async def test_create_user_sets_display_name(identity_server):
    client, state = identity_server

    claims = await client.create_user("new@example.com", "secret1", "Newbie")

    assert (claims.uid, claims.email) == ("uid-new", "new@example.com")
    assert [call[0] for call in state["calls"]] == ["signUp", "update"]
    assert state["calls"][1][2]["displayName"] == "Newbie"


@pytest.mark.parametrize(
    "message, error",
    [
        ("EMAIL_EXISTS", Conflict),
        ("WEAK_PASSWORD : Password should be at least 6 characters", InvalidInput),
        ("INVALID_EMAIL", InvalidInput),
        ("OPERATION_NOT_ALLOWED", ProviderError),
    ],
)
async def test_create_user_errors(identity_server, message, error):
    client, state = identity_server
    state["signUp"] = _error(message)
    with pytest.raises(error):
        await client.create_user("new@example.com", "secret1", "Newbie")


async def test_sign_in_returns_existing_subject(identity_server):
    client, state = identity_server

    claims = await client.sign_in("old@example.com", "secret1")

    assert (claims.uid, claims.email) == ("uid-old", "old@example.com")
    assert state["calls"][-1][0] == "signInWithPassword"


@pytest.mark.parametrize("message", ["INVALID_PASSWORD", "INVALID_LOGIN_CREDENTIALS", "EMAIL_NOT_FOUND"])
async def test_sign_in_with_wrong_credentials_is_conflict(identity_server, message):
    client, state = identity_server
    state["signIn"] = _error(message)
    with pytest.raises(Conflict):
        await client.sign_in("old@example.com", "guess")


async def test_send_password_reset(identity_server):
    client, state = identity_server

    assert await client.send_password_reset("a@example.com") == "a@example.com"
    assert state["calls"][-1][2] == {"requestType": "PASSWORD_RESET", "email": "a@example.com"}
