from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..config.runtime_config import load_runtime_config
from ..config.settings import settings
from ..logs import log_zoho
from .errors import RemoteApiError
from .oauth import RefreshTokenProvider, TokenProvider

# Set up module-level logger
logger = logging.getLogger(__name__)

ORG_HEADER = "X-com-zoho-organizationid"
TRUNCATION_MARKER = "… (truncated)"

JsonValue = Any


@dataclass(frozen=True)
class RetryPolicy:
    retries: int
    backoff_ms: int


RETRY_POLICIES = {
    "none": RetryPolicy(retries=0, backoff_ms=0),
    "standard": RetryPolicy(retries=3, backoff_ms=300),
    "aggressive": RetryPolicy(retries=5, backoff_ms=600),
}


def retry_policy(name: Optional[str]) -> RetryPolicy:
    """Resolve a preset by name; unknown names get ``standard``."""
    return RETRY_POLICIES.get((name or "").strip().lower(), RETRY_POLICIES["standard"])


def truncate(text: Optional[str], limit: int = 2048) -> str:
    """Cut ``text`` to ``limit`` UTF-8 bytes, appending a marker when cut."""
    text = text or ""
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text
    return raw[:limit].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def _preview(value: Any, limit: int) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return truncate(value, limit)
    return truncate(json.dumps(value, ensure_ascii=False, default=str), limit)


def _error_message(resp: httpx.Response, body: Any) -> str:
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return resp.text or resp.reason_phrase or f"HTTP {resp.status_code}"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, RemoteApiError) and exc.transient


class ZohoClient:
    """
    Request executor for the Zoho Inventory REST API.

    ``execute`` returns the decoded JSON body of any 2xx response and raises
    ``RemoteApiError`` otherwise, including 2xx bodies carrying a non-zero
    ``code``. Transient failures (429/5xx, timeouts) are retried under the
    configured policy. A 401 invalidates the token and replays once.
    """

    def __init__(
        self,
        tokens: TokenProvider,
        base_url: str,
        organization_id: str,
        timeout: float = 20.0,
        policy: RetryPolicy = RETRY_POLICIES["standard"],
        log_body_limit: int = 2048,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sink: Callable[[str, str], None] = log_zoho,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.tokens = tokens
        self.base_url = base_url.rstrip("/")
        self.organization_id = organization_id
        self.timeout = timeout
        self.policy = policy
        self.log_body_limit = log_body_limit
        self.transport = transport
        self.sink = sink
        self.sleep = sleep

    @classmethod
    def from_settings(cls, tokens: Optional[TokenProvider] = None, **kwargs: Any) -> ZohoClient:
        cfg = load_runtime_config()
        return cls(
            tokens=tokens or RefreshTokenProvider.from_settings(),
            base_url=settings.zohoinv_base_url,
            organization_id=settings.zohoinv_organization_id or "",
            timeout=max(1.0, settings.zohoinv_timeout_ms / 1000),
            policy=retry_policy(settings.zohoinv_retry_policy),
            log_body_limit=cfg.client.log_body_limit,
            **kwargs,
        )

    async def _headers(self) -> dict[str, str]:
        token = await self.tokens.get_token()
        return {
            "Authorization": f"Zoho-oauthtoken {token}",
            ORG_HEADER: self.organization_id,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _log_request(self, method: str, path: str, query: dict, body: Any) -> None:
        self.sink(
            f"[REQ] {method} {path} org={self.organization_id} "
            f"query={_preview(query, self.log_body_limit)} json={_preview(body, self.log_body_limit)}",
            "INFO",
        )

    def _log_response(self, method: str, path: str, resp: httpx.Response) -> None:
        level = "INFO" if resp.is_success else "WARNING"
        self.sink(
            f"[RESP] {method} {path} status={resp.status_code} "
            f"response={_preview(resp.text, self.log_body_limit)}",
            level,
        )

    async def _send(self, method: str, path: str, query: dict, body: Any) -> httpx.Response:
        params = {"organization_id": self.organization_id, **query}
        self._log_request(method, path, query, body)
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                resp = await client.request(
                    method, path, params=params, json=body, headers=await self._headers()
                )
                if resp.status_code == 401:
                    # token revoked or expired early: refresh once
                    logger.info(f"{method} {path} returned 401, refreshing token")
                    self.tokens.invalidate()
                    resp = await client.request(
                        method, path, params=params, json=body, headers=await self._headers()
                    )
            except httpx.TimeoutException as e:
                self.sink(f"[RESP] {method} {path} timed out after {self.timeout}s", "WARNING")
                raise RemoteApiError(None, f"Request timed out after {self.timeout:g}s", timed_out=True) from e
            except httpx.TransportError as e:
                self.sink(f"[RESP] {method} {path} transport error: {e}", "WARNING")
                raise RemoteApiError(None, f"Connection failed: {e.__class__.__name__}") from e
        self._log_response(method, path, resp)
        return resp

    async def _execute_once(self, method: str, path: str, query: dict, body: Any) -> JsonValue:
        resp = await self._send(method, path, query, body)
        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = None

        # any 2xx is success; exact-200 checks reject 201 from create endpoints
        if not resp.is_success:
            raise RemoteApiError(
                resp.status_code,
                _error_message(resp, data),
                code=data.get("code") if isinstance(data, dict) else None,
            )
        if data is None:
            raise RemoteApiError(resp.status_code, "Response body is not valid JSON")
        if isinstance(data, dict) and data.get("code") not in (None, 0):
            raise RemoteApiError(resp.status_code, str(data.get("message") or "Unknown"), code=data.get("code"))
        return data

    async def execute(
        self,
        method: str,
        path: str,
        query: Optional[dict[str, Any]] = None,
        body: Any = None,
    ) -> JsonValue:
        method = method.upper()
        if method not in ("GET", "POST", "PUT", "DELETE"):
            raise ValueError(f"Unsupported HTTP method: {method}")
        path = "/" + path.lstrip("/")
        query = {k: v for k, v in (query or {}).items() if v is not None}

        retrying_kwargs: dict[str, Any] = dict(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.policy.retries + 1),
            wait=wait_exponential_jitter(multiplier=self.policy.backoff_ms / 1000, max=10),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                f"{method} {path} attempt {rs.attempt_number} failed "
                f"({rs.outcome.exception()!r}), retrying"
            ),
        )
        if self.sleep is not None:
            retrying_kwargs["sleep"] = self.sleep

        async for attempt in AsyncRetrying(**retrying_kwargs):
            with attempt:
                return await self._execute_once(method, path, query, body)
        raise AssertionError("unreachable")  # pragma: no cover

    async def get(self, path: str, query: Optional[dict[str, Any]] = None) -> JsonValue:
        return await self.execute("GET", path, query=query)

    async def post(self, path: str, body: Any, query: Optional[dict[str, Any]] = None) -> JsonValue:
        return await self.execute("POST", path, query=query, body=body)

    async def put(self, path: str, body: Any, query: Optional[dict[str, Any]] = None) -> JsonValue:
        return await self.execute("PUT", path, query=query, body=body)
