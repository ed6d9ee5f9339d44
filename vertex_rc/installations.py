"""Firebase Installations client (installation id and auth token)."""

import asyncio
import base64
import logging
import os
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from . import __version__
from .app import FirebaseApp
from .errors import InstallationsError
from .models import InstallationAuthToken, InstallationResponse

logger = logging.getLogger(__name__)

INSTALLATIONS_API_URL = "https://firebaseinstallations.googleapis.com/v1"
INTERNAL_AUTH_VERSION = "FIS_v2"
SDK_VERSION = f"py:{__version__}"

# Refresh tokens an hour before they expire
TOKEN_EXPIRATION_BUFFER = 3600.0


def generate_fid() -> str:
    """
    Generate a new Firebase installation id.

    22 characters of URL-safe base64 over 17 random bytes, with the first
    four bits fixed to 0111.
    """
    raw = bytearray(os.urandom(17))
    raw[0] = 0b01110000 + (raw[0] % 0b00010000)
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii")[:22]


class Installations:
    """
    Registers this process as an installation and hands out auth tokens.

    The installation lives for the process lifetime; nothing is persisted.
    """

    def __init__(self, app: FirebaseApp):
        self.app = app
        self._fid: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._auth_token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-goog-api-key": self.app.options.api_key,
        }

    async def get_id(self) -> str:
        """Return the installation id, registering first if needed."""
        async with self._lock:
            await self._ensure_registered()
            return self._fid

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a valid installation auth token."""
        async with self._lock:
            await self._ensure_registered()
            if force_refresh or time.time() + TOKEN_EXPIRATION_BUFFER >= self._expires_at:
                await self._generate_auth_token()
            return self._auth_token

    async def _ensure_registered(self):
        if self._fid is not None:
            return

        fid = generate_fid()
        url = f"{INSTALLATIONS_API_URL}/projects/{self.app.options.project_id}/installations"
        body = {
            "fid": fid,
            "authVersion": INTERNAL_AUTH_VERSION,
            "appId": self.app.options.app_id,
            "sdkVersion": SDK_VERSION,
        }

        data = await self._post(url, body, self._headers(), "create-installation-failed")
        try:
            installation = InstallationResponse.model_validate(data)
        except ValidationError as e:
            raise InstallationsError("create-installation-failed", f"Malformed response: {e}") from e

        self._fid = installation.fid or fid
        self._refresh_token = installation.refresh_token
        self._set_auth_token(installation.auth_token)
        logger.info(f"Registered installation {self._fid}")

    async def _generate_auth_token(self):
        url = (f"{INSTALLATIONS_API_URL}/projects/{self.app.options.project_id}"
               f"/installations/{self._fid}/authTokens:generate")
        headers = self._headers()
        headers["Authorization"] = f"{INTERNAL_AUTH_VERSION} {self._refresh_token}"
        body = {"installation": {"sdkVersion": SDK_VERSION, "appId": self.app.options.app_id}}

        data = await self._post(url, body, headers, "generate-token-failed")
        try:
            token = InstallationAuthToken.model_validate(data)
        except ValidationError as e:
            raise InstallationsError("generate-token-failed", f"Malformed response: {e}") from e

        self._set_auth_token(token)
        logger.debug(f"Refreshed auth token for installation {self._fid}")

    def _set_auth_token(self, token: InstallationAuthToken):
        self._auth_token = token.token
        self._expires_at = time.time() + token.expires_in

    async def _post(self, url: str, body: dict, headers: dict, code: str) -> dict:
        try:
            resp = await self.app.client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise InstallationsError(code, f"Request failed: {e}") from e

        if resp.status_code != 200:
            raise InstallationsError.from_response(resp, code)
        return resp.json()
