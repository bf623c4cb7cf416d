import asyncio
import re
from dataclasses import dataclass
from typing import Optional

import aiohttp

from config.settings import settings
from config.constants import (
    PROVIDER_ACCESS_NUMBER,
    PROVIDER_ACTION_GET_NUMBER,
    PROVIDER_ACTION_GET_STATUS,
    PROVIDER_ACTION_SET_STATUS,
    PROVIDER_STATUS_CANCEL,
)
from utils.exceptions import ProviderError, ProviderTimeout, ProviderUnavailable
from utils.logger import app_logger


@dataclass(frozen=True)
class ProviderNumber:
    txn_id: str
    phone_number: str


def parse_number_response(text: str) -> Optional[ProviderNumber]:
    """
    Parses a getNumber status line.

    Only 'ACCESS_NUMBER:<txn id>:<phone>' with exactly two non-empty fields
    after the token counts as success; anything else returns None.
    """
    parts = text.strip().split(":")
    if len(parts) == 3 and parts[0] == PROVIDER_ACCESS_NUMBER and parts[1] and parts[2]:
        return ProviderNumber(txn_id=parts[1], phone_number=parts[2])
    return None


def extract_otp(text: str, min_digits: int = None, max_digits: int = None) -> Optional[str]:
    """Returns the first standalone run of digits that looks like an OTP code."""
    low = min_digits or settings.OTP_MIN_DIGITS
    high = max_digits or settings.OTP_MAX_DIGITS
    match = re.search(rf'\b\d{{{low},{high}}}\b', text or "")
    return match.group(0) if match else None


class NumberProviderService:
    """
    Client for the numbering provider's handler_api.

    Every call is a GET carrying the service-wide API key and a bounded
    timeout. Timeouts raise ProviderTimeout and transport or HTTP failures
    raise ProviderUnavailable, so callers never mutate local state on a
    failed call.
    """

    def __init__(self, api_key: str, base_url: str = settings.PROVIDER_BASE_URL,
                 service_code: str = settings.PROVIDER_SERVICE_CODE):
        if not api_key:
            app_logger.warning("PROVIDER_API_KEY is not set. Number purchases will fail.")
        self.api_key = api_key
        self.base_url = base_url
        self.service_code = service_code

    async def _make_request(self, action: str, params: dict, timeout: float) -> str:
        query = {"action": action, "api_key": self.api_key, **params}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.get(self.base_url, params=query) as response:
                    response.raise_for_status()
                    text = await response.text()
                    app_logger.debug(f"Provider response for {action}: {text!r}")
                    return text
        except asyncio.TimeoutError as e:
            app_logger.error(f"Provider {action} timed out after {timeout}s")
            raise ProviderTimeout() from e
        except aiohttp.ClientError as e:
            app_logger.error(f"Provider {action} request failed: {e}")
            raise ProviderUnavailable() from e

    async def get_number(self, country_code: str) -> ProviderNumber:
        """Requests a number; raises ProviderError with the raw reply when none is issued."""
        text = await self._make_request(
            PROVIDER_ACTION_GET_NUMBER,
            {"service": self.service_code, "country": country_code},
            settings.PROVIDER_NUMBER_TIMEOUT,
        )
        number = parse_number_response(text)
        if number is None:
            app_logger.warning(f"Provider refused getNumber for country {country_code}: {text.strip()!r}")
            raise ProviderError(text.strip() or None, providerResponse=text.strip())
        app_logger.info(f"Provider issued number {number.phone_number} (txn {number.txn_id})")
        return number

    async def get_status(self, txn_id: str) -> str:
        """Returns the provider's free-text status, which may embed an OTP."""
        return await self._make_request(
            PROVIDER_ACTION_GET_STATUS,
            {"id": txn_id},
            settings.PROVIDER_STATUS_TIMEOUT,
        )

    async def cancel(self, txn_id: str) -> str:
        text = await self._make_request(
            PROVIDER_ACTION_SET_STATUS,
            {"id": txn_id, "status": PROVIDER_STATUS_CANCEL},
            settings.PROVIDER_STATUS_TIMEOUT,
        )
        app_logger.info(f"Provider cancel for txn {txn_id}: {text.strip()!r}")
        return text


number_provider = NumberProviderService(api_key=settings.PROVIDER_API_KEY)
