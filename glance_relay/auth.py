"""
Auth - token managers and the authorized request wrapper.

Three ways of getting a bearer token:
    RefreshTokenAuth  - OAuth refresh_token grant with client credentials
    DelegatedAuth     - token handed out by an identity broker
    WebSessionAuth    - web-player session token (TOTP + session cookie),
                        only needed for lyrics and the push channel

AuthorizedSession attaches the current token to every request. On a 401 it
refreshes once and retries once; if the refresh produces nothing the call
fails with AuthFailure.
"""

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp
import pyotp

from .config import Config, Endpoints
from .errors import AuthFailure, ProviderUnavailable

logger = logging.getLogger(__name__)

# Obfuscated web-player secret and the protocol version it belongs to.
SECRET_CIPHER: Tuple[int, ...] = (12, 56, 76, 33, 88, 44, 88, 33, 78, 78, 11, 66, 22, 22, 55, 69, 54)
TOTP_VERSION = "5"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)

# Refresh a little before the provider says the token dies.
EXPIRY_MARGIN_SEC = 30.0


def derive_secret(cipher: Tuple[int, ...] = SECRET_CIPHER) -> str:
    """
    Turn the obfuscated cipher into the base-32 TOTP secret.

    Each byte is XORed with (index % 33) + 9, the results are joined as
    decimal text, and that text's bytes are base-32 encoded without padding.
    """
    joined = "".join(str(value ^ ((index % 33) + 9)) for index, value in enumerate(cipher))
    raw = bytes.fromhex(joined.encode("utf-8").hex())
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def generate_totp(secret: str, timestamp_ms: int) -> str:
    """6-digit, 30-second SHA-1 code at the given epoch-ms time."""
    return pyotp.TOTP(secret, digits=6, interval=30).at(timestamp_ms // 1000)


# =============================================================================
# TOKEN MANAGERS
# =============================================================================

class TokenManager:
    """Holds one bearer token and knows how to get a new one."""

    label = "token"

    def __init__(self, session: aiohttp.ClientSession, clock: Callable[[], float] = time.monotonic):
        self._session = session
        self._clock = clock
        self.access_token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self.refresh_count = 0

    @property
    def needs_refresh(self) -> bool:
        if not self.access_token:
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    async def ensure_token(self) -> Optional[str]:
        """Current token, refreshed first when absent or expired."""
        if self.needs_refresh:
            await self.refresh()
        return self.access_token

    async def refresh(self) -> Optional[str]:
        """
        Fetch a new token. Returns None (and forgets the old one) when the
        credentials are rejected. Raises ProviderUnavailable when the token
        host cannot be reached; the current token is kept in that case.
        """
        self.refresh_count += 1
        try:
            token, expires_in = await self._fetch()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{self.label} refresh failed: {e!r}")
            raise ProviderUnavailable(f"{self.label} host unreachable: {e!r}") from e
        except ValueError as e:
            logger.warning(f"{self.label} refresh returned an unreadable body: {e}")
            token, expires_in = None, None

        self.access_token = token or None
        self._expires_at = None
        if token and expires_in:
            self._expires_at = self._clock() + max(0.0, float(expires_in) - EXPIRY_MARGIN_SEC)
        if token:
            logger.debug(f"{self.label} refreshed")
        return self.access_token

    async def _fetch(self) -> Tuple[Optional[str], Optional[float]]:
        raise NotImplementedError

    async def _read_json(self, resp: aiohttp.ClientResponse) -> Dict[str, Any]:
        data = await resp.json(content_type=None)
        return data if isinstance(data, dict) else {}


class RefreshTokenAuth(TokenManager):
    label = "access token"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        endpoints: Endpoints = Endpoints(),
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self._client_id = client_id
        self._client_secret = client_secret
        self.refresh_token = refresh_token
        self._url = endpoints.token_url

    async def _fetch(self) -> Tuple[Optional[str], Optional[float]]:
        form = {"grant_type": "refresh_token", "refresh_token": self.refresh_token}
        headers = {"Authorization": aiohttp.encode_basic_auth(self._client_id, self._client_secret)}
        async with self._session.post(self._url, data=form, headers=headers) as resp:
            if resp.status != 200:
                logger.warning(f"Token endpoint answered {resp.status}")
                return None, None
            body = await self._read_json(resp)
        # Provider may rotate the refresh token.
        if body.get("refresh_token"):
            self.refresh_token = body["refresh_token"]
        return body.get("access_token"), body.get("expires_in")


class DelegatedAuth(TokenManager):
    label = "delegated token"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        broker_token: str,
        connection_id: str,
        endpoints: Endpoints = Endpoints(),
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self._broker_token = broker_token
        self._url = endpoints.broker_token_url.format(connection_id=connection_id)

    async def _fetch(self) -> Tuple[Optional[str], Optional[float]]:
        async with self._session.get(self._url, headers={"Authorization": self._broker_token}) as resp:
            if resp.status != 200:
                logger.warning(f"Identity broker answered {resp.status}")
                return None, None
            body = await self._read_json(resp)
        return body.get("access_token"), body.get("expires_in")


class WebSessionAuth(TokenManager):
    label = "web-session token"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        seed: str,
        endpoints: Endpoints = Endpoints(),
        **kwargs: Any,
    ):
        super().__init__(session, **kwargs)
        self._seed = seed
        self._endpoints = endpoints
        self._secret = derive_secret()

    async def server_time_ms(self) -> Optional[int]:
        async with self._session.get(self._endpoints.server_time_url) as resp:
            if resp.status != 200:
                logger.warning(f"Server time endpoint answered {resp.status}")
                return None
            body = await self._read_json(resp)
        server_time = body.get("serverTime")
        return int(server_time) * 1000 if server_time is not None else None

    async def _fetch(self) -> Tuple[Optional[str], Optional[float]]:
        timestamp = await self.server_time_ms()
        if timestamp is None:
            return None, None
        params = {
            "reason": "init",
            "productType": "web-player",
            "totp": generate_totp(self._secret, timestamp),
            "totpVer": TOTP_VERSION,
            "ts": str(timestamp),
        }
        headers = {"cookie": f"sp_dc={self._seed};", "user-agent": USER_AGENT}
        async with self._session.get(self._endpoints.web_token_url, params=params, headers=headers) as resp:
            if resp.status != 200:
                logger.warning(f"Web-session token endpoint answered {resp.status}")
                return None, None
            body = await self._read_json(resp)
        token = body.get("accessToken")
        if not token:
            logger.warning("Web-session seed was rejected")
        return token, None


# =============================================================================
# AUTHORIZED REQUESTS
# =============================================================================

@dataclass(frozen=True)
class ApiResponse:
    status: int
    data: Any = None
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AuthorizedSession:
    """
    Sends requests with the manager's bearer token.

    Refreshes are serialized: a request that hits 401 after another request
    already replaced the token retries with the new token instead of
    refreshing a second time.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth: TokenManager,
        on_auth_failure: Optional[Callable[[AuthFailure], Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = Config.HTTP_TIMEOUT,
    ):
        self._session = session
        self.auth = auth
        self._on_auth_failure = on_auth_failure
        self._headers = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._lock = asyncio.Lock()

    async def get(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.request("GET", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.request("PUT", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> ApiResponse:
        return await self.request("POST", url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> ApiResponse:
        token = await self._current_token()
        response = await self._send(method, url, token, params, json_body, headers)
        if response.status != 401:
            return response

        logger.info(f"{method} {url} unauthorized, refreshing {self.auth.label}")
        refreshed = await self._refresh_after(token)
        if not refreshed:
            self._fail(f"{self.auth.label} refresh returned no token")
        return await self._send(method, url, refreshed, params, json_body, headers)

    async def _current_token(self) -> str:
        if self.auth.needs_refresh:
            async with self._lock:
                await self.auth.ensure_token()
        if not self.auth.access_token:
            self._fail(f"no {self.auth.label} available")
        return self.auth.access_token

    async def _refresh_after(self, stale: str) -> Optional[str]:
        async with self._lock:
            current = self.auth.access_token
            if current and current != stale:
                return current
            return await self.auth.refresh()

    def _fail(self, message: str) -> None:
        error = AuthFailure(message)
        logger.error(message)
        if self._on_auth_failure is not None:
            self._on_auth_failure(error)
        raise error

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        params: Optional[Dict[str, str]],
        json_body: Any,
        headers: Optional[Dict[str, str]],
    ) -> ApiResponse:
        merged = {**self._headers, **(headers or {}), "Authorization": f"Bearer {token}"}
        try:
            async with self._session.request(
                method, url, params=params, json=json_body, headers=merged, timeout=self._timeout,
            ) as resp:
                body = await resp.read()
                return ApiResponse(status=resp.status, data=_decode_json(body), body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"{method} {url} failed: {e!r}") from e


def _decode_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None
