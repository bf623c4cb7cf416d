"""
Public, rental and dashboard endpoints.
"""
from datetime import datetime, timezone

from aiohttp import web

from api import messages as msg
from api.context import (
    ACCOUNTS,
    RENTAL_LIMITER,
    RENTALS,
    bearer_account,
    current_account,
    ok,
    parse_body,
    parse_query,
)
from api.schemas import GetNumberQuery, RegisterBody, TransactionQuery
from config.constants import DEFAULT_CURRENCY, SERVICE_CATALOG, STATUS_EXPIRED
from security.rate_limit import client_ip, rate_limited
from utils.exceptions import InvalidInput

routes = web.RouteTableDef()


# --- Public ---

@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    return ok(
        status="OK",
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=msg.SERVICE_NAME,
        version=msg.SERVICE_VERSION,
    )


@routes.get("/api/services")
async def services(request: web.Request) -> web.Response:
    catalog = {key: offer.model_dump() for key, offer in SERVICE_CATALOG.items()}
    return ok(services=catalog, count=len(catalog))


@routes.post("/api/register")
async def register(request: web.Request) -> web.Response:
    body = await parse_body(request, RegisterBody)
    account = await request.app[ACCOUNTS].register(body.email, body.password, body.name, body.ref)
    return ok(message=msg.USER_REGISTERED, userId=account.id, apiKey=account.api_key)


# --- Wallet & Rentals ---

@routes.get("/api/getBalance")
async def get_balance(request: web.Request) -> web.Response:
    account = await current_account(request)
    return ok(balance=account.balance, currency=DEFAULT_CURRENCY, user=account.email)


@routes.get("/api/getNumber")
@rate_limited(RENTAL_LIMITER)
async def get_number(request: web.Request) -> web.Response:
    account = await current_account(request)
    query = parse_query(request, GetNumberQuery)
    rental = await request.app[RENTALS].acquire(
        account,
        query.country,
        ref_code=query.ref,
        referer=request.headers.get("Referer"),
    )
    # Base price and commission stay out of buyer-facing responses.
    return ok(
        id=rental.txn_id,
        number=rental.phone_number,
        country=rental.offer.country,
        service=rental.offer.name,
        price=rental.price,
        expiresIn=rental.expires_in,
        newBalance=rental.new_balance,
        message=msg.NUMBER_PURCHASED,
    )


@routes.get("/api/getOtp")
@rate_limited(RENTAL_LIMITER)
async def get_otp(request: web.Request) -> web.Response:
    account = await current_account(request)
    query = parse_query(request, TransactionQuery)
    result = await request.app[RENTALS].poll(account, query.id)
    if result.status == STATUS_EXPIRED:
        return web.json_response({"success": False, "error": msg.TIME_EXPIRED, "status": STATUS_EXPIRED})
    return ok(
        data=result.raw,
        otp=result.otp,
        hasOtp=result.otp is not None,
        status=result.status,
        timeLeft=result.time_left,
    )


@routes.get("/api/cancelNumber")
async def cancel_number(request: web.Request) -> web.Response:
    account = await current_account(request)
    query = parse_query(request, TransactionQuery)
    result = await request.app[RENTALS].cancel(account, query.id)
    if result.status == STATUS_EXPIRED:
        return ok(message=msg.NUMBER_EXPIRED_CANCELLED, refundAmount=0, status=STATUS_EXPIRED)
    return ok(
        message=msg.NUMBER_CANCELLED,
        refundAmount=result.refund_amount,
        timeLeft=result.time_left,
        newBalance=result.new_balance,
        status=result.status,
    )


@routes.get("/api/getHistory")
async def get_history(request: web.Request) -> web.Response:
    account = await current_account(request)
    rows, active = await request.app[RENTALS].history(account)
    return ok(
        history=[row.to_dict() for row in rows],
        active=active.to_dict() if active else None,
        count=len(rows),
    )


# --- Credentials ---

def _key_changed(new_key: str) -> web.Response:
    return ok(
        message=msg.API_KEY_CHANGED,
        newApiKey=new_key,
        warning=msg.OLD_KEY_WARNING,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@routes.post("/api/changeApiKey")
async def change_api_key(request: web.Request) -> web.Response:
    api_key = request.query.get("api_key")
    if not api_key:
        raise InvalidInput(msg.API_KEY_REQUIRED)
    accounts = request.app[ACCOUNTS]
    account = await accounts.by_api_key(api_key)
    new_key = await accounts.rotate_api_key(account, change_type="user_request", ip=client_ip(request))
    return _key_changed(new_key)


@routes.post("/api/dashboard/changeApiKey")
async def dashboard_change_api_key(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    new_key = await request.app[ACCOUNTS].rotate_api_key(
        account, change_type="dashboard_request", ip=client_ip(request),
    )
    return _key_changed(new_key)


@routes.post("/api/dashboard/generateApiKey")
async def dashboard_generate_api_key(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    new_key = await request.app[ACCOUNTS].rotate_api_key(
        account, change_type="dashboard_request", ip=client_ip(request),
    )
    return ok(apiKey=new_key, message=msg.API_KEY_GENERATED)


@routes.get("/api/dashboard/apiKeyHistory")
async def api_key_history(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    changes = await request.app[ACCOUNTS].key_history(account)
    history = [change.to_dict() for change in changes]
    return ok(
        history=history,
        count=len(history),
        lastChange=history[0]["timestamp"] if history else None,
    )


@routes.get("/api/dashboard/user")
async def dashboard_user(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    active = await request.app[RENTALS].active_rental(account)
    return ok(
        user={
            "uid": account.id,
            "email": account.email,
            "name": account.display_name,
            "wallet": account.balance,
            "apiKey": account.api_key,
            "apiRequests": account.requests_count,
            "apiSuccess": account.success_count,
            "apiFailed": account.failed_count,
            "totalSpent": account.total_spent,
            "referredBy": account.referred_by,
            "joined": account.created_at.isoformat() if account.created_at else None,
        },
        active=active.to_dict() if active else None,
    )
