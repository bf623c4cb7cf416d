from aiohttp import web

from api import messages as msg
from api.context import ADMIN, PARTNERS, admin_account, ok, parse_body
from api.schemas import AddBalanceBody, PartnerIdBody, PartnerStatusBody, UpdateUserBody, UserIdBody
from services.admin_service import account_summary
from services.partner_service import partner_to_dict

routes = web.RouteTableDef()


@routes.get("/api/admin/getUsers")
async def get_users(request: web.Request) -> web.Response:
    await admin_account(request)
    users = [account_summary(account) for account in await request.app[ADMIN].list_users()]
    return ok(users=users, count=len(users))


@routes.post("/api/admin/addBalance")
async def add_balance(request: web.Request) -> web.Response:
    admin = await admin_account(request)
    body = await parse_body(request, AddBalanceBody)
    new_balance = await request.app[ADMIN].add_balance(admin, body.user_id, body.amount, body.reason)
    return ok(message=msg.balance_added(body.amount), newBalance=new_balance)


@routes.post("/api/admin/removeUser")
async def remove_user(request: web.Request) -> web.Response:
    admin = await admin_account(request)
    body = await parse_body(request, UserIdBody)
    await request.app[ADMIN].remove_user(admin, body.user_id)
    return ok(message=msg.USER_REMOVED)


@routes.post("/api/admin/resetPassword")
async def reset_password(request: web.Request) -> web.Response:
    await admin_account(request)
    body = await parse_body(request, UserIdBody)
    email = await request.app[ADMIN].reset_password(body.user_id)
    return ok(message=msg.RESET_LINK_SENT, email=email)


@routes.post("/api/admin/regenerateApiKey")
async def regenerate_api_key(request: web.Request) -> web.Response:
    admin = await admin_account(request)
    body = await parse_body(request, UserIdBody)
    new_key = await request.app[ADMIN].regenerate_api_key(admin, body.user_id)
    return ok(message=msg.API_KEY_REGENERATED, newApiKey=new_key)


@routes.get("/api/admin/user/{userId}")
async def user_detail(request: web.Request) -> web.Response:
    await admin_account(request)
    detail = await request.app[ADMIN].user_detail(request.match_info["userId"])
    return ok(**detail)


@routes.get("/api/admin/stats")
async def stats(request: web.Request) -> web.Response:
    await admin_account(request)
    return ok(stats=await request.app[ADMIN].stats())


@routes.post("/api/admin/updateUser")
async def update_user(request: web.Request) -> web.Response:
    admin = await admin_account(request)
    body = await parse_body(request, UpdateUserBody)
    updates = {
        "display_name": body.updates.name,
        "email": body.updates.email,
        "is_admin": body.updates.is_admin,
        "wallet": body.updates.wallet,
    }
    applied = await request.app[ADMIN].update_user(admin, body.user_id, updates)
    return ok(message=msg.USER_UPDATED, updates=applied)


@routes.post("/api/admin/partnerStatus")
async def partner_status(request: web.Request) -> web.Response:
    await admin_account(request)
    body = await parse_body(request, PartnerStatusBody)
    partner = await request.app[PARTNERS].set_status(body.partner_id, body.status)
    return ok(message=msg.PARTNER_STATUS_UPDATED, partner=partner_to_dict(partner))


@routes.post("/api/admin/settlePartner")
async def settle_partner(request: web.Request) -> web.Response:
    await admin_account(request)
    body = await parse_body(request, PartnerIdBody)
    partner = await request.app[PARTNERS].settle(body.partner_id)
    return ok(message=msg.PARTNER_SETTLED, partner=partner_to_dict(partner))
