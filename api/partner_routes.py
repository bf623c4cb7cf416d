from aiohttp import web

from api import messages as msg
from api.context import PARTNERS, bearer_account, ok, parse_body
from api.schemas import PartnerRegisterBody, WithdrawBody
from services.partner_service import partner_to_dict

routes = web.RouteTableDef()


@routes.post("/api/partner/register")
async def register_partner(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    body = await parse_body(request, PartnerRegisterBody)
    partner = await request.app[PARTNERS].register(account, body.markup_kind, body.markup_value, body.code)
    return ok(message=msg.PARTNER_REGISTERED, partner=partner_to_dict(partner))


@routes.get("/api/partner/info")
async def partner_info(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    partner = await request.app[PARTNERS].get_for_account(account)
    return ok(partner=partner_to_dict(partner))


@routes.get("/api/partner/stats")
async def partner_stats(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    stats = await request.app[PARTNERS].stats(account)
    return ok(
        partner=partner_to_dict(stats.partner),
        sales=[entry.to_dict() for entry in stats.recent_sales],
        withdrawals=[
            {"id": w.id, "amount": w.amount, "status": w.status,
             "timestamp": w.created_at.isoformat() if w.created_at else None}
            for w in stats.withdrawals
        ],
    )


@routes.get("/api/partner/prices")
async def partner_prices(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    prices = await request.app[PARTNERS].prices(account)
    return ok(prices=prices, count=len(prices))


@routes.post("/api/partner/withdraw")
async def partner_withdraw(request: web.Request) -> web.Response:
    account = await bearer_account(request)
    body = await parse_body(request, WithdrawBody)
    withdrawal = await request.app[PARTNERS].withdraw(account, body.amount)
    return ok(message=msg.WITHDRAWAL_REQUESTED, withdrawalId=withdrawal.id, amount=withdrawal.amount)
