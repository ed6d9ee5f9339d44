import json

import httpx
import pytest

from vertex_rc.app_check import DebugProvider, initialize_app_check
from vertex_rc.errors import AppCheckError, FetchThrottledError, RemoteConfigError
from vertex_rc.remote_config import FetchStatus, Value, ValueSource, get_remote_config
from tests.conftest import REMOTE_CONFIG_HOST

DEFAULTS = {"model_name": "gemini-1.5-flash-preview-0514", "prompt": "default prompt"}


@pytest.fixture
def remote_config(app):
    rc = get_remote_config(app)
    rc.settings.minimum_fetch_interval_millis = 0
    rc.default_config = dict(DEFAULTS)
    return rc


# ============================================================================
# Values
# ============================================================================

def test_value_conversions():
    assert Value(ValueSource.REMOTE, "TRUE").as_boolean() is True
    assert Value(ValueSource.REMOTE, "on").as_boolean() is True
    assert Value(ValueSource.REMOTE, "nope").as_boolean() is False
    assert Value(ValueSource.DEFAULT, "2.5").as_number() == 2.5
    assert Value(ValueSource.DEFAULT, "abc").as_number() == 0


def test_static_value_for_unknown_key(remote_config):
    value = remote_config.get_value("missing")
    assert value.get_source() == ValueSource.STATIC
    assert value.as_string() == ""
    assert value.as_boolean() is False
    assert value.as_number() == 0


def test_defaults_before_any_fetch(remote_config):
    assert remote_config.last_fetch_status == FetchStatus.NO_FETCH_YET
    value = remote_config.get_value("model_name")
    assert value.get_source() == ValueSource.DEFAULT
    assert value.as_string() == DEFAULTS["model_name"]


def test_read_is_idempotent(remote_config):
    """Two reads without a fetch in between agree"""
    first = remote_config.get_value("prompt").as_string()
    second = remote_config.get_value("prompt").as_string()
    assert first == second == DEFAULTS["prompt"]


# ============================================================================
# Fetch / activate
# ============================================================================

@pytest.mark.asyncio
async def test_fetch_and_activate_overrides_defaults(remote_config, backend):
    activated = await remote_config.fetch_and_activate()

    assert activated is True
    assert remote_config.last_fetch_status == FetchStatus.SUCCESS
    assert remote_config.get_value("model_name").as_string() == "gemini-1.5-flash"
    assert remote_config.get_value("model_name").get_source() == ValueSource.REMOTE
    # Keys absent from the template keep their defaults
    assert remote_config.get_value("prompt").as_string() == DEFAULTS["prompt"]


@pytest.mark.asyncio
async def test_fetch_request_shape(remote_config, backend):
    await remote_config.fetch()

    request = backend.requests_to(REMOTE_CONFIG_HOST)[0]
    assert request.url.path == "/v1/projects/test-project/namespaces/firebase:fetch"
    assert request.url.params["key"] == "test-api-key"
    assert request.headers["If-None-Match"] == "*"

    body = json.loads(request.content)
    assert body["app_id"] == "1:1234:web:abcd"
    assert body["app_instance_id_token"] == "fis-token"
    assert len(body["app_instance_id"]) == 22


@pytest.mark.asyncio
async def test_fetch_without_activate_keeps_defaults(remote_config):
    await remote_config.fetch()
    assert remote_config.get_value("model_name").as_string() == DEFAULTS["model_name"]

    assert remote_config.activate() is True
    assert remote_config.get_value("model_name").as_string() == "gemini-1.5-flash"


@pytest.mark.asyncio
async def test_activate_twice_reports_no_change(remote_config):
    assert await remote_config.fetch_and_activate() is True
    assert await remote_config.fetch_and_activate() is False


@pytest.mark.asyncio
async def test_failed_fetch_keeps_defaults(remote_config, backend):
    backend.fetch_status = 500

    with pytest.raises(RemoteConfigError) as exc_info:
        await remote_config.fetch_and_activate()

    assert exc_info.value.code == "fetch-status"
    assert remote_config.last_fetch_status == FetchStatus.FAILURE
    assert remote_config.get_value("model_name").as_string() == DEFAULTS["model_name"]


@pytest.mark.asyncio
async def test_network_error_is_wrapped(remote_config, backend):
    backend.fetch_raises = httpx.ConnectError("connection refused")

    with pytest.raises(RemoteConfigError) as exc_info:
        await remote_config.fetch()

    assert exc_info.value.code == "fetch-client-network"


@pytest.mark.asyncio
async def test_throttled_fetch(remote_config, backend):
    backend.fetch_status = 429

    with pytest.raises(FetchThrottledError):
        await remote_config.fetch()

    assert remote_config.last_fetch_status == FetchStatus.THROTTLE


@pytest.mark.asyncio
async def test_minimum_fetch_interval_reuses_last_fetch(remote_config, backend):
    remote_config.settings.minimum_fetch_interval_millis = 60 * 60 * 1000

    await remote_config.fetch_and_activate()
    backend.remote_entries = {"model_name": "gemini-1.5-pro"}
    await remote_config.fetch_and_activate()

    assert len(backend.requests_to(REMOTE_CONFIG_HOST)) == 1
    assert remote_config.get_value("model_name").as_string() == "gemini-1.5-flash"


@pytest.mark.asyncio
async def test_zero_interval_always_fetches(remote_config, backend):
    await remote_config.fetch_and_activate()
    backend.remote_entries = {"model_name": "gemini-1.5-pro"}
    backend.etag = "etag-2"
    await remote_config.fetch_and_activate()

    requests = backend.requests_to(REMOTE_CONFIG_HOST)
    assert len(requests) == 2
    assert requests[1].headers["If-None-Match"] == "etag-1"
    assert remote_config.get_value("model_name").as_string() == "gemini-1.5-pro"


@pytest.mark.asyncio
async def test_no_change_keeps_previous_template(remote_config, backend):
    await remote_config.fetch_and_activate()
    backend.fetch_state = "NO_CHANGE"

    assert await remote_config.fetch_and_activate() is False
    assert remote_config.get_value("model_name").as_string() == "gemini-1.5-flash"


@pytest.mark.asyncio
async def test_no_template_activates_empty_config(remote_config, backend):
    backend.fetch_state = "NO_TEMPLATE"
    await remote_config.fetch_and_activate()

    assert remote_config.get_value("model_name").get_source() == ValueSource.DEFAULT


@pytest.mark.asyncio
async def test_unspecified_state_is_an_error(remote_config, backend):
    backend.fetch_state = "INSTANCE_STATE_UNSPECIFIED"

    with pytest.raises(RemoteConfigError):
        await remote_config.fetch()


@pytest.mark.asyncio
async def test_app_check_header_attached(app, backend):
    app_check = initialize_app_check(app, DebugProvider("debug-token"))
    rc = get_remote_config(app, app_check=app_check)

    await rc.fetch()

    request = backend.requests_to(REMOTE_CONFIG_HOST)[0]
    assert request.headers["X-Firebase-AppCheck"] == "app-check-token"


@pytest.mark.asyncio
async def test_get_all_merges_defaults_and_remote(remote_config):
    await remote_config.fetch_and_activate()
    values = remote_config.get_all()

    assert set(values) == {"model_name", "prompt"}
    assert values["model_name"].get_source() == ValueSource.REMOTE
    assert values["prompt"].get_source() == ValueSource.DEFAULT


@pytest.mark.asyncio
async def test_app_check_failure_marks_fetch_failed(app, backend):
    """Errors raised before the fetch request still record a failure"""
    backend.app_check_status = 403
    rc = get_remote_config(app, app_check=initialize_app_check(app, DebugProvider("debug-token")))
    rc.default_config = dict(DEFAULTS)

    with pytest.raises(AppCheckError):
        await rc.fetch()

    assert rc.last_fetch_status == FetchStatus.FAILURE
    assert backend.requests_to(REMOTE_CONFIG_HOST) == []
    assert rc.get_value("model_name").as_string() == DEFAULTS["model_name"]


def test_as_number_is_always_float():
    assert isinstance(Value(ValueSource.STATIC).as_number(), float)
    assert isinstance(Value(ValueSource.REMOTE, "abc").as_number(), float)
