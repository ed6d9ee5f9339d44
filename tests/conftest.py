import json
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from vertex_rc.app import initialize_app
from vertex_rc.config import Config

INSTALLATIONS_HOST = "firebaseinstallations.googleapis.com"
APP_CHECK_HOST = "content-firebaseappcheck.googleapis.com"
REMOTE_CONFIG_HOST = "firebaseremoteconfig.googleapis.com"
VERTEX_AI_HOST = "firebasevertexai.googleapis.com"


class FakeBackend:
    """Serves the Firebase REST endpoints from memory and records every request."""

    def __init__(self):
        self.requests: List[httpx.Request] = []

        self.remote_entries: Dict[str, str] = {"model_name": "gemini-1.5-flash"}
        self.fetch_state = "UPDATE"
        self.fetch_status = 200
        self.fetch_raises: Optional[Exception] = None
        self.etag = "etag-1"

        self.app_check_status = 200
        self.generate_status = 200
        self.generate_body: Optional[dict] = None
        self.generated_text = "Remote Config lets you swap models without a release."

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        if host == INSTALLATIONS_HOST:
            if path.endswith("authTokens:generate"):
                return httpx.Response(200, json={"token": "fis-token-2", "expiresIn": "604800s"})
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "name": f"projects/test-project/installations/{body['fid']}",
                "fid": body["fid"],
                "refreshToken": "refresh-token",
                "authToken": {"token": "fis-token", "expiresIn": "604800s"},
            })

        if host == APP_CHECK_HOST:
            if self.app_check_status != 200:
                return httpx.Response(self.app_check_status, json={
                    "error": {"code": self.app_check_status, "message": "attestation rejected",
                              "status": "PERMISSION_DENIED"}})
            return httpx.Response(200, json={"token": "app-check-token", "ttl": "3600s"})

        if host == REMOTE_CONFIG_HOST:
            if self.fetch_raises is not None:
                raise self.fetch_raises
            if self.fetch_status != 200:
                return httpx.Response(self.fetch_status, json={
                    "error": {"code": self.fetch_status, "message": "backend unavailable"}})
            body = {"state": self.fetch_state}
            if self.fetch_state == "UPDATE":
                body["entries"] = dict(self.remote_entries)
            return httpx.Response(200, json=body, headers={"ETag": self.etag})

        if host == VERTEX_AI_HOST:
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={
                    "error": {"code": self.generate_status, "message": "quota exceeded",
                              "status": "RESOURCE_EXHAUSTED"}})
            body = self.generate_body or {
                "candidates": [{
                    "index": 0,
                    "content": {"role": "model", "parts": [{"text": self.generated_text}]},
                    "finishReason": "STOP",
                }],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9,
                                  "totalTokenCount": 21},
            }
            return httpx.Response(200, json=body)

        return httpx.Response(404)

    def requests_to(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def http_client(backend):
    async with httpx.AsyncClient(transport=backend.transport) as client:
        yield client


@pytest.fixture
def config():
    return Config(
        api_key="test-api-key",
        project_id="test-project",
        app_id="1:1234:web:abcd",
        messaging_sender_id="1234",
        recaptcha_site_key="site-key",
        recaptcha_token="recaptcha-token",
        app_check_debug_token=None,
        vertex_location="us-central1",
        request_timeout=5.0,
        minimum_fetch_interval_millis=0,
    )


@pytest.fixture
def app(config, http_client):
    return initialize_app(config.firebase_options, client=http_client)
