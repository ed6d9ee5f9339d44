"""
App Check: attestation providers and token cache.

A provider turns a platform attestation into an App Check token via the
exchange endpoint. Service clients attach the token to their requests
as the X-Firebase-AppCheck header.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from .app import FirebaseApp
from .errors import AppCheckError
from .models import AppCheckExchangeResponse

logger = logging.getLogger(__name__)

APP_CHECK_API_URL = "https://content-firebaseappcheck.googleapis.com/v1"
APP_CHECK_HEADER = "X-Firebase-AppCheck"

# Treat tokens as expired this many seconds early
TOKEN_REFRESH_MARGIN = 300.0

TokenSource = Union[str, Callable[[str], Union[str, Awaitable[str]]]]


@dataclass
class AppCheckToken:
    """An exchanged App Check token."""
    token: str
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now + TOKEN_REFRESH_MARGIN >= self.expires_at


class AppCheckProvider:
    """Base class for attestation providers."""

    exchange_method = ""

    async def attestation_body(self) -> Dict[str, str]:
        """Request body for the exchange call."""
        raise NotImplementedError

    async def get_token(self, app: FirebaseApp) -> AppCheckToken:
        """Exchange this provider's attestation for an App Check token."""
        options = app.options
        url = (f"{APP_CHECK_API_URL}/projects/{options.project_id}"
               f"/apps/{options.app_id}:{self.exchange_method}")
        body = await self.attestation_body()

        try:
            resp = await app.client.post(url, params={"key": options.api_key}, json=body)
        except httpx.HTTPError as e:
            raise AppCheckError("fetch-network-error", f"Token exchange failed: {e}") from e

        if resp.status_code != 200:
            raise AppCheckError.from_response(resp, "fetch-status-error")

        try:
            exchanged = AppCheckExchangeResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AppCheckError("fetch-parse-error", f"Malformed exchange response: {e}") from e

        return AppCheckToken(token=exchanged.token, expires_at=time.time() + exchanged.ttl)


class ReCaptchaEnterpriseProvider(AppCheckProvider):
    """
    reCAPTCHA Enterprise attestation.

    Outside a browser the reCAPTCHA token has to come from somewhere else,
    so `token_source` is either a ready token or a callable that receives
    the site key and returns (or awaits) one.
    """

    exchange_method = "exchangeRecaptchaEnterpriseToken"

    def __init__(self, site_key: str, token_source: TokenSource):
        if not site_key:
            raise AppCheckError("invalid-provider", "reCAPTCHA Enterprise site key is required")
        self.site_key = site_key
        self.token_source = token_source

    async def attestation_body(self) -> Dict[str, str]:
        source = self.token_source
        token = source(self.site_key) if callable(source) else source
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise AppCheckError("recaptcha-error", "No reCAPTCHA Enterprise token available")
        return {"recaptcha_enterprise_token": token}


class DebugProvider(AppCheckProvider):
    """Debug token registered in the Firebase console, for local runs."""

    exchange_method = "exchangeDebugToken"

    def __init__(self, debug_token: str):
        self.debug_token = debug_token

    async def attestation_body(self) -> Dict[str, str]:
        return {"debug_token": self.debug_token}


class AppCheck:
    """App Check instance bound to one app."""

    def __init__(self, app: FirebaseApp, provider: AppCheckProvider):
        self.app = app
        self.provider = provider
        self._token: Optional[AppCheckToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a cached token, exchanging a new one when expired."""
        async with self._lock:
            if force_refresh or self._token is None or self._token.is_expired():
                self._token = await self.provider.get_token(self.app)
                logger.debug(f"Obtained App Check token via {type(self.provider).__name__}")
            return self._token.token

    async def headers(self) -> Dict[str, str]:
        """Headers to attach to a service request."""
        return {APP_CHECK_HEADER: await self.get_token()}


def initialize_app_check(app: FirebaseApp, provider: AppCheckProvider) -> AppCheck:
    """
    Register an attestation provider for `app`.

    Registration is write-once per app; no token is fetched until a
    service asks for one.
    """
    if app.app_check is not None:
        raise AppCheckError(
            "already-initialized", f"App Check already initialized for app {app.name}")

    app_check = AppCheck(app, provider)
    app.app_check = app_check
    logger.info(f"App Check initialized with {type(provider).__name__}")
    return app_check
