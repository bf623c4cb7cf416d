from aiohttp import web
from pydantic import ValidationError

from api import messages as msg
from utils.exceptions import AppError
from utils.logger import app_logger

AVAILABLE_ENDPOINTS = [
    "/api/health",
    "/api/services",
    "/api/getBalance",
    "/api/getNumber",
    "/api/getOtp",
    "/api/cancelNumber",
    "/api/getHistory",
    "/api/register",
    "/api/changeApiKey",
    "/api/dashboard/user",
    "/api/dashboard/changeApiKey",
    "/api/dashboard/generateApiKey",
    "/api/dashboard/apiKeyHistory",
    "/api/partner/register",
    "/api/partner/info",
    "/api/partner/stats",
    "/api/partner/prices",
    "/api/partner/withdraw",
]


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "request"
    return f"{field}: {first.get('msg', 'invalid value')}"


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """
    Turns every failure into the JSON error envelope. Unexpected exceptions
    are logged with their traceback and reported as a generic 500.
    """
    try:
        return await handler(request)
    except AppError as e:
        if e.status >= 500:
            app_logger.error(f"{request.method} {request.path} failed: {e.code} {e.message}")
        return web.json_response(e.to_dict(), status=e.status)
    except ValidationError as e:
        return web.json_response(
            {"success": False, "error": _validation_message(e), "code": "INVALID_INPUT"},
            status=400,
        )
    except web.HTTPNotFound:
        if not request.path.startswith("/api"):
            raise
        return web.json_response(
            {"success": False, "error": msg.ENDPOINT_NOT_FOUND, "available": AVAILABLE_ENDPOINTS},
            status=404,
        )
    except web.HTTPException:
        raise
    except Exception:
        app_logger.exception(f"Unhandled error in {request.method} {request.path}")
        return web.json_response({"success": False, "error": msg.GENERIC_ERROR}, status=500)
