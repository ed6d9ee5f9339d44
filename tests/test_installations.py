import json

import pytest

from vertex_rc.app import FirebaseOptions, initialize_app
from vertex_rc.errors import InvalidAppOptionsError
from vertex_rc.installations import Installations, generate_fid
from tests.conftest import INSTALLATIONS_HOST


def test_generate_fid_format():
    fid = generate_fid()
    assert len(fid) == 22
    # First four bits are 0111
    assert fid[0] in "cdef"
    assert generate_fid() != fid


@pytest.mark.parametrize("missing", ["api_key", "project_id", "app_id"])
def test_initialize_app_requires_identifiers(missing):
    values = {"api_key": "k", "project_id": "p", "app_id": "a"}
    values[missing] = ""

    with pytest.raises(InvalidAppOptionsError, match=missing):
        initialize_app(FirebaseOptions(**values))


@pytest.mark.asyncio
async def test_registers_once(app, backend):
    installations = Installations(app)

    fid = await installations.get_id()
    token = await installations.get_token()

    assert token == "fis-token"
    assert await installations.get_id() == fid
    requests = backend.requests_to(INSTALLATIONS_HOST)
    assert len(requests) == 1

    body = json.loads(requests[0].content)
    assert body["authVersion"] == "FIS_v2"
    assert body["appId"] == "1:1234:web:abcd"
    assert requests[0].headers["x-goog-api-key"] == "test-api-key"


@pytest.mark.asyncio
async def test_expired_token_is_regenerated(app, backend):
    installations = Installations(app)
    await installations.get_token()
    installations._expires_at = 0

    token = await installations.get_token()

    assert token == "fis-token-2"
    refresh = backend.requests_to(INSTALLATIONS_HOST)[-1]
    assert refresh.url.path.endswith("/authTokens:generate")
    assert refresh.headers["Authorization"] == "FIS_v2 refresh-token"
