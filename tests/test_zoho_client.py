import asyncio
import warnings

import httpx
import pytest

from salesdesk.zoho.client import RETRY_POLICIES, TRUNCATION_MARKER, retry_policy, truncate
from salesdesk.zoho.errors import RemoteApiError


def test_every_call_carries_token_and_organization(zoho):
    zoho.on("GET", "/items", (200, {"code": 0, "items": []}))

    asyncio.run(zoho.client().get("/items", {"search_text": "cable"}))

    req = zoho.requests[0]
    assert req.headers["Authorization"] == "Zoho-oauthtoken tok"
    assert req.headers["X-com-zoho-organizationid"] == "ORG1"
    assert req.url.params["organization_id"] == "ORG1"
    assert req.url.params["search_text"] == "cable"


def test_any_2xx_is_success(zoho):
    zoho.on("POST", "/contacts", (201, {"code": 0, "contact": {"contact_id": "C1"}}))

    data = asyncio.run(zoho.client().post("/contacts", {"contact_name": "A"}))

    assert data["contact"]["contact_id"] == "C1"


def test_error_code_in_2xx_body_raises(zoho):
    zoho.on("GET", "/items/1", (200, {"code": 1001, "message": "Item does not exist"}))

    with pytest.raises(RemoteApiError) as exc:
        asyncio.run(zoho.client().get("/items/1"))

    assert exc.value.code == 1001
    assert exc.value.message == "Item does not exist"


def test_standard_policy_calls_four_times_then_surfaces_error(zoho):
    zoho.on("GET", "/items", (503, {"message": "Service Unavailable"}))

    with pytest.raises(RemoteApiError) as exc:
        asyncio.run(zoho.client("standard").get("/items"))

    assert exc.value.status == 503
    assert len(zoho.calls("GET", "/items")) == 4
    assert len(zoho.sleeps) == 3



def test_backoff_starts_at_policy_delay(zoho):
    zoho.on("GET", "/items", (503, {"message": "Service Unavailable"}), (200, {"code": 0, "items": []}))

    with warnings.catch_warnings():
        warnings.filterwarnings("error", message=".*parameter is deprecated", category=DeprecationWarning)
        asyncio.run(zoho.client("standard").get("/items"))

    # 300ms base plus up to 1s of jitter
    assert len(zoho.sleeps) == 1
    assert 0.3 <= zoho.sleeps[0] <= 1.3


def test_aggressive_policy_retries_five_times(zoho):
    zoho.on("GET", "/items", (429, {"message": "Too many requests"}))

    with pytest.raises(RemoteApiError):
        asyncio.run(zoho.client("aggressive").get("/items"))

    assert len(zoho.calls("GET", "/items")) == 6


def test_non_transient_error_is_not_retried(zoho):
    zoho.on("POST", "/salesorders", (400, {"code": 4, "message": "Invalid value passed for customer_id"}))

    with pytest.raises(RemoteApiError) as exc:
        asyncio.run(zoho.client("standard").post("/salesorders", {}))

    assert exc.value.status == 400
    assert len(zoho.calls("POST", "/salesorders")) == 1
    assert zoho.sleeps == []


def test_transient_error_then_success(zoho):
    zoho.on("GET", "/organizations", (502, {"message": "Bad gateway"}), (200, {"code": 0, "organizations": []}))

    data = asyncio.run(zoho.client("standard").get("/organizations"))

    assert data["organizations"] == []
    assert len(zoho.calls("GET", "/organizations")) == 2


def test_timeout_is_retried_as_transient(zoho):
    attempts = []

    def slow(request):
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"code": 0, "items": []})

    zoho.on("GET", "/items", slow)

    asyncio.run(zoho.client("standard").get("/items"))

    assert len(attempts) == 3


def test_timeout_without_retries_surfaces_remote_error(zoho):
    def slow(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    zoho.on("GET", "/items", slow)

    with pytest.raises(RemoteApiError) as exc:
        asyncio.run(zoho.client("none").get("/items"))

    assert exc.value.status is None
    assert exc.value.timed_out
    assert exc.value.transient


def test_401_invalidates_token_and_replays_once(zoho):
    zoho.on("GET", "/contacts/C1", (401, {"message": "Invalid token"}), (200, {"code": 0, "contact": {}}))

    asyncio.run(zoho.client().get("/contacts/C1"))

    assert zoho.tokens.invalidations == 1
    assert len(zoho.calls("GET", "/contacts/C1")) == 2


def test_request_and_response_are_logged_with_truncated_bodies(zoho):
    zoho.on("POST", "/salesorders", (201, {"code": 0, "salesorder": {"notes": "x" * 5000}}))

    asyncio.run(zoho.client().post("/salesorders", {"notes": "y" * 5000}))

    req_log = [m for _, m in zoho.log if m.startswith("[REQ] POST /salesorders")]
    resp_log = [m for _, m in zoho.log if m.startswith("[RESP] POST /salesorders status=201")]
    assert req_log and resp_log
    assert TRUNCATION_MARKER in req_log[0]
    assert TRUNCATION_MARKER in resp_log[0]
    assert len(resp_log[0]) < 2300


def test_truncate_counts_bytes():
    assert truncate("short") == "short"
    text = "é" * 2000  # 4000 bytes
    out = truncate(text, 2048)
    assert out.endswith(TRUNCATION_MARKER)
    assert len(out[: -len(TRUNCATION_MARKER)].encode("utf-8")) <= 2048


def test_retry_policy_presets():
    assert retry_policy("none").retries == 0
    assert retry_policy("Standard") == RETRY_POLICIES["standard"]
    assert retry_policy("aggressive").backoff_ms == 600
    assert retry_policy("something-else") == RETRY_POLICIES["standard"]
