"""Error types raised by the service clients."""

from typing import Optional

import httpx


class FirebaseError(Exception):
    """
    Base error for every service client.

    Carries a short machine-readable `code` scoped by the service name,
    e.g. ``remote-config/fetch-status``.
    """

    service = "app"

    def __init__(self, code: str, message: str, status: Optional[int] = None):
        self.code = code
        self.message = message
        self.status = status
        super().__init__(f"{self.service}/{code}: {message}")

    @classmethod
    def from_response(cls, response: httpx.Response, code: str):
        """Build an error from a Google API error body, if the response has one."""
        message = response.reason_phrase or f"HTTP {response.status_code}"
        try:
            body = response.json()
            error = body.get("error", {}) if isinstance(body, dict) else {}
            if isinstance(error, dict) and error.get("message"):
                message = error["message"]
                if error.get("status"):
                    message = f"{error['status']}: {message}"
        except ValueError:
            pass
        return cls(code, message, status=response.status_code)


class InvalidAppOptionsError(FirebaseError):
    service = "app"


class InstallationsError(FirebaseError):
    service = "installations"


class AppCheckError(FirebaseError):
    service = "app-check"


class RemoteConfigError(FirebaseError):
    service = "remote-config"


class FetchThrottledError(RemoteConfigError):
    """Backend asked us to back off (429/503)."""


class VertexAIError(FirebaseError):
    service = "vertexAI"
