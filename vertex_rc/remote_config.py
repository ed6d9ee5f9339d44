"""
Remote Config client.

Holds three layers of values:
- defaults set in code (`default_config`)
- the last fetched template, kept until activated
- the active template, which values are read from

`fetch()` downloads, `activate()` swaps the fetched template in.
"""

import locale
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from . import __version__
from .app import FirebaseApp
from .app_check import AppCheck
from .errors import FetchThrottledError, FirebaseError, RemoteConfigError
from .installations import Installations
from .models import FetchResponse, FetchState

logger = logging.getLogger(__name__)

REMOTE_CONFIG_API_URL = "https://firebaseremoteconfig.googleapis.com/v1"
NAMESPACE = "firebase"

DEFAULT_MINIMUM_FETCH_INTERVAL_MILLIS = 12 * 60 * 60 * 1000
DEFAULT_FETCH_TIMEOUT_MILLIS = 60 * 1000

BOOLEAN_TRUTHY_VALUES = {"1", "true", "t", "yes", "y", "on"}


class ValueSource(str, Enum):
    """Where a value came from."""
    STATIC = "static"
    DEFAULT = "default"
    REMOTE = "remote"


class FetchStatus(str, Enum):
    NO_FETCH_YET = "no-fetch-yet"
    SUCCESS = "success"
    FAILURE = "failure"
    THROTTLE = "throttle"


class Value:
    """Read-only view of one parameter value."""

    def __init__(self, source: ValueSource, value: str = ""):
        self._source = source
        self._value = value

    def as_string(self) -> str:
        return self._value

    def as_boolean(self) -> bool:
        if self._source == ValueSource.STATIC:
            return False
        return self._value.strip().lower() in BOOLEAN_TRUTHY_VALUES

    def as_number(self) -> float:
        if self._source == ValueSource.STATIC:
            return 0.0
        try:
            return float(self._value)
        except ValueError:
            return 0.0

    def get_source(self) -> ValueSource:
        return self._source

    def __eq__(self, other) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        return self._source == other._source and self._value == other._value

    def __repr__(self) -> str:
        return f"Value(source={self._source.value!r}, value={self._value!r})"


@dataclass
class Settings:
    """Client settings; set before the first fetch."""
    minimum_fetch_interval_millis: int = DEFAULT_MINIMUM_FETCH_INTERVAL_MILLIS
    fetch_timeout_millis: int = DEFAULT_FETCH_TIMEOUT_MILLIS


@dataclass
class _Template:
    config: Dict[str, str]
    etag: Optional[str]
    fetched_at_millis: int


def _now_millis() -> int:
    return int(time.time() * 1000)


def _language_code() -> str:
    try:
        lang = locale.getlocale()[0] or "en_US"
    except ValueError:
        lang = "en_US"
    return lang.replace("_", "-")


class RemoteConfig:
    """Remote Config instance bound to one app."""

    def __init__(
        self,
        app: FirebaseApp,
        installations: Installations,
        app_check: Optional[AppCheck] = None,
    ):
        self.app = app
        self.installations = installations
        self.app_check = app_check
        self.settings = Settings()
        self.default_config: Dict[str, str] = {}

        self.last_fetch_status = FetchStatus.NO_FETCH_YET
        self.fetch_time_millis = -1

        self._fetched: Optional[_Template] = None
        self._active: Optional[_Template] = None

    # ------------------------------------------------------------------
    # Fetch / activate
    # ------------------------------------------------------------------

    async def fetch(self):
        """
        Download the latest template without activating it.

        Within the minimum fetch interval the previously fetched template
        is reused and no request is made.
        """
        now = _now_millis()
        if self._fetched is not None:
            age = now - self._fetched.fetched_at_millis
            if age < self.settings.minimum_fetch_interval_millis:
                logger.debug(f"Using cached fetch ({age}ms old, "
                             f"interval {self.settings.minimum_fetch_interval_millis}ms)")
                self.last_fetch_status = FetchStatus.SUCCESS
                return

        try:
            template = await self._fetch_template(now)
        except FetchThrottledError:
            self.last_fetch_status = FetchStatus.THROTTLE
            raise
        except FirebaseError:
            self.last_fetch_status = FetchStatus.FAILURE
            raise

        self._fetched = template
        self.last_fetch_status = FetchStatus.SUCCESS
        self.fetch_time_millis = template.fetched_at_millis
        logger.info(f"Fetched {len(template.config)} Remote Config entries")

    def activate(self) -> bool:
        """
        Make the last fetched template active.

        Returns False when there is nothing new to activate.
        """
        fetched = self._fetched
        if fetched is None:
            return False
        active = self._active
        if active is not None and active.etag == fetched.etag and active.config == fetched.config:
            return False

        self._active = fetched
        logger.info(f"Activated Remote Config template (etag={fetched.etag})")
        return True

    async def fetch_and_activate(self) -> bool:
        """Fetch then activate; returns whether new values were activated."""
        await self.fetch()
        return self.activate()

    async def _fetch_template(self, now: int) -> _Template:
        options = self.app.options
        url = (f"{REMOTE_CONFIG_API_URL}/projects/{options.project_id}"
               f"/namespaces/{NAMESPACE}:fetch")

        installation_id = await self.installations.get_id()
        installation_token = await self.installations.get_token()

        headers = {
            "Content-Type": "application/json",
            "If-None-Match": self._fetched.etag if self._fetched and self._fetched.etag else "*",
        }
        if self.app_check is not None:
            headers.update(await self.app_check.headers())

        body = {
            "sdk_version": __version__,
            "app_instance_id": installation_id,
            "app_instance_id_token": installation_token,
            "app_id": options.app_id,
            "language_code": _language_code(),
        }

        timeout = self.settings.fetch_timeout_millis / 1000
        try:
            resp = await self.app.client.post(
                url,
                params={"key": options.api_key},
                json=body,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RemoteConfigError(
                "fetch-timeout", f"Fetch timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise RemoteConfigError("fetch-client-network", f"Fetch failed: {e}") from e

        if resp.status_code in (429, 503):
            raise FetchThrottledError.from_response(resp, "fetch-throttle")

        etag = resp.headers.get("ETag")

        if resp.status_code == 304:
            return self._unchanged(now)
        if resp.status_code != 200:
            raise RemoteConfigError.from_response(resp, "fetch-status")

        try:
            fetched = FetchResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RemoteConfigError("fetch-client-parse", f"Malformed fetch response: {e}") from e

        if fetched.state == FetchState.UPDATE:
            return _Template(config=dict(fetched.entries), etag=etag, fetched_at_millis=now)
        if fetched.state == FetchState.NO_CHANGE:
            return self._unchanged(now)
        if fetched.state in (FetchState.NO_TEMPLATE, FetchState.EMPTY_CONFIG):
            return _Template(config={}, etag=etag, fetched_at_millis=now)

        raise RemoteConfigError("fetch-status", f"Unexpected template state {fetched.state.value}")

    def _unchanged(self, now: int) -> _Template:
        previous = self._fetched
        if previous is None:
            return _Template(config={}, etag=None, fetched_at_millis=now)
        return _Template(config=previous.config, etag=previous.etag, fetched_at_millis=now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_value(self, key: str) -> Value:
        """Active value for `key`, else its default, else a static empty value."""
        if self._active is not None and key in self._active.config:
            return Value(ValueSource.REMOTE, self._active.config[key])
        if key in self.default_config:
            return Value(ValueSource.DEFAULT, str(self.default_config[key]))
        logger.debug(f"No value for key '{key}', using static value")
        return Value(ValueSource.STATIC)

    def get_all(self) -> Dict[str, Value]:
        keys = set(self.default_config)
        if self._active is not None:
            keys.update(self._active.config)
        return {key: self.get_value(key) for key in sorted(keys)}

    def get_string(self, key: str) -> str:
        return self.get_value(key).as_string()

    def get_boolean(self, key: str) -> bool:
        return self.get_value(key).as_boolean()

    def get_number(self, key: str) -> float:
        return self.get_value(key).as_number()


def get_remote_config(
    app: FirebaseApp,
    installations: Optional[Installations] = None,
    app_check: Optional[AppCheck] = None,
) -> RemoteConfig:
    """Create a Remote Config instance for `app`."""
    return RemoteConfig(app, installations or Installations(app), app_check=app_check)
