"""
Builds the aiohttp application and wires the services into it.
"""
from datetime import datetime
from typing import Callable

import redis.asyncio as redis
from aiohttp import web
from sqlalchemy.ext.asyncio import async_sessionmaker

from api import admin_routes, partner_routes, routes
from api.context import ACCOUNTS, ADMIN, PARTNERS, RENTAL_LIMITER, RENTALS
from api.middlewares import error_middleware
from config.settings import settings
from database.connection import async_session_factory
from database.redis import redis_client
from models.base import utcnow
from security.rate_limit import RateLimiter, rate_limit_middleware
from services.account_service import AccountService
from services.admin_service import AdminService
from services.identity_service import IdentityProviderService, identity_provider
from services.partner_service import PartnerService
from services.provider_service import NumberProviderService, number_provider
from services.rental_service import RentalService


def create_app(
        session_factory: async_sessionmaker = async_session_factory,
        redis_conn: redis.Redis = redis_client,
        provider: NumberProviderService = number_provider,
        identity: IdentityProviderService = identity_provider,
        clock: Callable[[], datetime] = utcnow,
) -> web.Application:
    api_limiter = RateLimiter(redis_conn, settings.API_RATE_LIMIT, settings.API_RATE_PERIOD, "api")
    app = web.Application(middlewares=[error_middleware, rate_limit_middleware(api_limiter)])

    accounts = AccountService(
        session_factory,
        identity,
        RateLimiter(redis_conn, settings.KEY_ROTATION_LIMIT, settings.KEY_ROTATION_WINDOW, "key_rotation"),
    )
    app[ACCOUNTS] = accounts
    app[RENTALS] = RentalService(session_factory, provider, clock=clock)
    app[PARTNERS] = PartnerService(session_factory)
    app[ADMIN] = AdminService(session_factory, accounts, identity)
    app[RENTAL_LIMITER] = RateLimiter(
        redis_conn, settings.RENTAL_RATE_LIMIT, settings.RENTAL_RATE_PERIOD, "rental",
    )

    app.add_routes(routes.routes)
    app.add_routes(partner_routes.routes)
    app.add_routes(admin_routes.routes)
    return app
