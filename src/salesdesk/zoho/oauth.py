import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..config.settings import settings
from .errors import TRANSIENT_STATUSES, CredentialError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v2/token"

# Tokens are treated as expired this many seconds early.
EXPIRY_MARGIN = 60


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...

    def invalidate(self) -> None: ...


def _token_path() -> Path:
    return Path(settings.zoho_token_file)


class TokenStore:
    """JSON file cache shared by every process using the same refresh token."""

    @classmethod
    def load(cls) -> Optional[Dict]:
        p = _token_path()
        if not p.exists():
            return None
        try:
            token_data = json.loads(p.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token cache {p}: {e}")
            return None
        logger.debug(f"Loaded token with keys: {list(token_data.keys())}")
        return token_data

    @classmethod
    def save(cls, tok: Dict) -> None:
        try:
            token_path = _token_path()
            token_path.parent.mkdir(exist_ok=True, parents=True)
            token_path.write_text(json.dumps(tok, indent=2))
            logger.info(f"Saved token to {token_path}")
        except OSError as e:
            logger.error(f"Error saving token: {str(e)}")

    @classmethod
    def clear(cls) -> None:
        """Clear the token file to force a refresh on next use."""
        p = _token_path()
        if p.exists():
            p.unlink()
            logger.info(f"Cleared token file at {p}")


class StaticTokenProvider:
    """Fixed token, for local tooling and tests."""

    def __init__(self, token: str):
        self.token = token
        self.invalidations = 0

    async def get_token(self) -> str:
        return self.token

    def invalidate(self) -> None:
        self.invalidations += 1


class _RefreshFailed(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _retryable(exc: BaseException) -> bool:
    return isinstance(exc, _RefreshFailed) and exc.response.status_code in TRANSIENT_STATUSES


class RefreshTokenProvider:
    """
    Short-lived access tokens from a long-lived refresh token.

    Lookup order: in-memory token, then the file cache, then a refresh grant.
    Two concurrent refreshes are harmless since the grant is idempotent for
    the refresh token's lifetime, so no lock is taken.
    """

    def __init__(
        self,
        accounts_url: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        timeout: float = 20.0,
        store: Optional[type[TokenStore]] = TokenStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.accounts_url = accounts_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.store = store
        self.transport = transport
        self.clock = clock
        self._access_token: Optional[str] = None
        self._expires_at: Optional[float] = None

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "RefreshTokenProvider":
        if not (settings.zoho_client_id and settings.zoho_client_secret and settings.zoho_refresh_token):
            raise CredentialError("Zoho OAuth is not configured (client id, secret and refresh token are required).")
        return cls(
            accounts_url=settings.zoho_accounts_url,
            client_id=settings.zoho_client_id,
            client_secret=settings.zoho_client_secret,
            refresh_token=settings.zoho_refresh_token,
            timeout=max(1.0, settings.zohoinv_timeout_ms / 1000),
            transport=transport,
        )

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    def _fresh(self, expires_at: Optional[float]) -> bool:
        return bool(expires_at) and expires_at - EXPIRY_MARGIN > self.clock()

    async def get_token(self) -> str:
        if self._access_token and self._fresh(self._expires_at):
            return self._access_token

        cached = self.store.load() if self.store else None
        if cached and cached.get("access_token") and self._fresh(cached.get("expires_at")):
            self._access_token = cached["access_token"]
            self._expires_at = float(cached["expires_at"])
            return self._access_token

        await self.refresh()
        if not self._access_token:
            raise CredentialError("Access token is empty after refresh.")
        return self._access_token

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = None
        if self.store:
            self.store.clear()

    async def _post_grant(self, client: httpx.AsyncClient) -> httpx.Response:
        r = await client.post(
            f"{self.accounts_url}{TOKEN_PATH}",
            data={
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )
        if r.status_code in TRANSIENT_STATUSES:
            raise _RefreshFailed(r)
        return r

    async def refresh(self) -> None:
        """Run the refresh_token grant and cache the result."""
        logger.info("Refreshing Zoho access token")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception(_retryable),
                    stop=stop_after_attempt(4),
                    wait=wait_exponential_jitter(multiplier=0.3, max=3),
                    reraise=True,
                ):
                    with attempt:
                        r = await self._post_grant(client)
            except _RefreshFailed as e:
                r = e.response
            except httpx.HTTPError as e:
                raise CredentialError(f"Token refresh failed: {e.__class__.__name__}") from e

        body_sample = r.text[:400]
        if r.status_code == 429 or "too many requests" in body_sample.lower():
            raise CredentialError("Rate limited on token refresh. Please retry in a few minutes.")
        if not r.is_success:
            logger.error(f"Token refresh failed with HTTP {r.status_code}: {body_sample}")
            raise CredentialError(f"Token refresh failed with HTTP {r.status_code}.")

        try:
            data = r.json()
        except ValueError as e:
            logger.error(f"Token refresh returned a non-JSON body: {body_sample}")
            raise CredentialError("Token refresh returned an unreadable response.") from e
        if not isinstance(data, dict):
            raise CredentialError("Token refresh returned an unexpected response.")
        token = str(data.get("access_token") or "")
        if not token:
            raise CredentialError("Token refresh succeeded but access_token is missing.")
        expires_in = int(data.get("expires_in") or data.get("expires_in_sec") or 3600)

        self._access_token = token
        self._expires_at = self.clock() + max(60, expires_in - 30)
        if self.store:
            self.store.save({"access_token": token, "expires_at": self._expires_at})
        logger.info(f"Refreshed access token, valid for {int(self._expires_at - self.clock())}s")
