import asyncio
from dataclasses import dataclass
from typing import Optional

import aiohttp

from config.settings import settings
from utils.exceptions import Conflict, InvalidInput, ProviderError, ProviderTimeout, ProviderUnavailable, Unauthenticated
from utils.logger import app_logger

# Error messages the identity provider returns for a bad or stale token.
_TOKEN_ERRORS = ("INVALID_ID_TOKEN", "TOKEN_EXPIRED", "USER_NOT_FOUND", "USER_DISABLED", "CREDENTIAL_TOO_OLD_LOGIN_AGAIN")
# Sign-in rejections that mean the credentials do not match.
_CREDENTIAL_ERRORS = ("INVALID_PASSWORD", "INVALID_LOGIN_CREDENTIALS", "EMAIL_NOT_FOUND", "USER_DISABLED")


@dataclass(frozen=True)
class IdentityClaims:
    uid: str
    email: Optional[str]
    email_verified: bool = False


class IdentityProviderService:
    """
    A service class for the identity provider's REST API
    (token verification, sign-up and password-reset emails).
    """

    def __init__(self, api_key: str, base_url: str = settings.IDENTITY_BASE_URL):
        if not api_key:
            app_logger.warning("IDENTITY_API_KEY is not set. Bearer authentication will fail.")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}

    async def _make_request(self, endpoint: str, payload: dict) -> dict:
        """
        POSTs to the identity provider and returns the decoded body.

        Provider-side rejections raise ProviderError carrying the provider's
        error message in 'providerCode'.
        """
        url = f"{self._base_url}/{endpoint}"
        timeout = aiohttp.ClientTimeout(total=settings.IDENTITY_TIMEOUT)
        try:
            async with aiohttp.ClientSession(headers=self._headers, timeout=timeout) as session:
                async with session.post(url, params={"key": self._api_key}, json=payload) as response:
                    if response.status >= 500:
                        app_logger.error(f"Identity provider {endpoint} failed with HTTP {response.status}")
                        raise ProviderUnavailable()
                    data = await response.json(content_type=None)
                    if response.status >= 400:
                        message = ((data or {}).get("error") or {}).get("message", "UNKNOWN")
                        app_logger.warning(f"Identity provider rejected {endpoint}: {message}")
                        raise ProviderError("Identity provider rejected the request", providerCode=message)
                    return data or {}
        except asyncio.TimeoutError as e:
            app_logger.error(f"Identity provider {endpoint} timed out")
            raise ProviderTimeout() from e
        except aiohttp.ClientError as e:
            app_logger.error(f"Identity provider request failed: {e}")
            raise ProviderUnavailable() from e

    async def verify_token(self, id_token: str) -> IdentityClaims:
        """
        Verifies a bearer token's signature and freshness.

        :return: The verified subject and contact email.
        """
        try:
            data = await self._make_request("accounts:lookup", {"idToken": id_token})
        except ProviderError as e:
            if isinstance(e, ProviderUnavailable):
                raise
            if any(code in e.extra.get("providerCode", "") for code in _TOKEN_ERRORS):
                raise Unauthenticated("Invalid token") from e
            raise
        users = data.get("users") or []
        if not users:
            raise Unauthenticated("Invalid token")
        user = users[0]
        return IdentityClaims(uid=user["localId"], email=user.get("email"), email_verified=bool(user.get("emailVerified")))

    async def create_user(self, email: str, password: str, display_name: str) -> IdentityClaims:
        """Creates a password account and sets its display name."""
        try:
            data = await self._make_request(
                "accounts:signUp",
                {"email": email, "password": password, "returnSecureToken": True},
            )
        except ProviderError as e:
            code = e.extra.get("providerCode", "")
            if code.startswith("EMAIL_EXISTS"):
                raise Conflict("Email already registered") from e
            if code.startswith("WEAK_PASSWORD") or code.startswith("INVALID_EMAIL"):
                raise InvalidInput(code.split(":")[-1].strip() or "Invalid email or password") from e
            raise
        await self._make_request(
            "accounts:update",
            {"idToken": data["idToken"], "displayName": display_name, "returnSecureToken": False},
        )
        app_logger.info(f"Created identity for {email} (uid {data['localId']})")
        return IdentityClaims(uid=data["localId"], email=data.get("email", email))

    async def sign_in(self, email: str, password: str) -> IdentityClaims:
        """
        Checks an email and password against an existing identity.
        Wrong credentials surface as the same Conflict a duplicate sign-up gets.
        """
        try:
            data = await self._make_request(
                "accounts:signInWithPassword",
                {"email": email, "password": password, "returnSecureToken": True},
            )
        except ProviderError as e:
            code = e.extra.get("providerCode", "")
            if code.startswith(_CREDENTIAL_ERRORS):
                raise Conflict("Email already registered") from e
            raise
        return IdentityClaims(uid=data["localId"], email=data.get("email", email))

    async def send_password_reset(self, email: str) -> str:
        """Asks the identity provider to issue a password-reset link to 'email'."""
        data = await self._make_request("accounts:sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})
        app_logger.info(f"Password reset link issued for {email}")
        return data.get("email", email)


# A single, reusable instance of the service
identity_provider = IdentityProviderService(api_key=settings.IDENTITY_API_KEY)
