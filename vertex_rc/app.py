"""Application context shared by every service client."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import InvalidAppOptionsError

logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = "[DEFAULT]"


@dataclass(frozen=True)
class FirebaseOptions:
    """Static project identifiers (the web "firebaseConfig")."""
    api_key: str
    project_id: str
    app_id: str
    messaging_sender_id: Optional[str] = None


class FirebaseApp:
    """
    One configured connection to a Firebase project.

    Services are bound to an app by passing it to their constructor;
    they all share the app's HTTP client.
    """

    def __init__(
        self,
        options: FirebaseOptions,
        name: str = DEFAULT_APP_NAME,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.options = options
        self.name = name
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        # Set once by initialize_app_check()
        self.app_check = None

    async def aclose(self):
        """Close the HTTP client if this app created it."""
        if self._owns_client:
            await self.client.aclose()

    def __repr__(self) -> str:
        return f"FirebaseApp(name={self.name!r}, project_id={self.options.project_id!r})"


def initialize_app(
    options: FirebaseOptions,
    name: str = DEFAULT_APP_NAME,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 60.0,
) -> FirebaseApp:
    """
    Create an app from its options.

    Raises InvalidAppOptionsError if any required identifier is missing.
    """
    for attr in ("api_key", "project_id", "app_id"):
        if not getattr(options, attr, None):
            raise InvalidAppOptionsError(
                "invalid-app-options", f"Missing required option '{attr}'")

    app = FirebaseApp(options, name=name, client=client, timeout=timeout)
    logger.info(f"Initialized app {name} for project {options.project_id}")
    return app
