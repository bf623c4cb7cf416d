"""
Application keys and request helpers shared by the route modules.
"""
import json
from typing import Type, TypeVar

from aiohttp import web
from pydantic import BaseModel

from api import messages as msg
from models.account import Account
from security.rate_limit import RateLimiter
from services.account_service import AccountService
from services.admin_service import AdminService
from services.partner_service import PartnerService
from services.rental_service import RentalService
from utils.exceptions import InvalidInput

M = TypeVar("M", bound=BaseModel)

ACCOUNTS = web.AppKey("accounts", AccountService)
RENTALS = web.AppKey("rentals", RentalService)
PARTNERS = web.AppKey("partners", PartnerService)
ADMIN = web.AppKey("admin", AdminService)
RENTAL_LIMITER = web.AppKey("rental_limiter", RateLimiter)


def ok(**data) -> web.Response:
    return web.json_response({"success": True, **data})


async def current_account(request: web.Request) -> Account:
    """Resolves the caller from the api_key parameter or a bearer header."""
    return await request.app[ACCOUNTS].resolve(
        api_key=request.query.get("api_key"),
        authorization=request.headers.get("Authorization"),
    )


async def bearer_account(request: web.Request) -> Account:
    return await request.app[ACCOUNTS].bearer_only(request.headers.get("Authorization"))


async def admin_account(request: web.Request) -> Account:
    account = await bearer_account(request)
    return request.app[ACCOUNTS].require_admin(account)


def parse_query(request: web.Request, model: Type[M]) -> M:
    return model.model_validate(dict(request.query))


async def parse_body(request: web.Request, model: Type[M]) -> M:
    """Validates a JSON or form-encoded body against 'model'."""
    if request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        data = dict(await request.post())
    elif request.can_read_body:
        try:
            data = await request.json()
        except json.JSONDecodeError as e:
            raise InvalidInput(msg.INVALID_JSON) from e
    else:
        data = {}
    if not isinstance(data, dict):
        raise InvalidInput(msg.INVALID_JSON)
    return model.model_validate(data)
