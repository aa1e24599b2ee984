"""
Shared fixtures.

Network collaborators are replaced by local aiohttp servers:
    provider_stub   - provider REST API, token endpoints, web session, push
                      channel, color lyrics, lrclib and artwork on one server
    FakeClock       - controllable epoch-ms clock for cache tests
"""
import asyncio
import contextlib
import json

import aiohttp
import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from glance_relay.config import Endpoints
from glance_relay.storage import MemoryStore


class FakeClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ProviderStub:
    """
    One aiohttp app that answers every provider endpoint.

    API tokens are "token-N", web-session tokens "web-N". Only the most
    recently issued token of each kind is accepted; revoke_*() invalidates it
    so the next request answers 401.
    """

    CLIENT_ID = "client"
    CLIENT_SECRET = "secret"
    BROKER_TOKEN = "broker-credential"
    SEED = "good-seed"
    IMAGE_BYTES = b"\x89PNG\r\n\x1a\nstub-image"

    def __init__(self):
        self.base_url = ""
        self.player = None
        self.token_ok = True
        self.web_token_ok = True
        self.provider_lyrics = {}
        self.lrclib = {}

        self.token_requests = 0
        self.web_token_requests = 0
        self.player_requests = 0
        self.provider_lyrics_requests = 0
        self.lrclib_requests = 0
        self.image_requests = 0
        self.commands = []
        self.subscriptions = []
        self.web_token_params = []
        self.dealer_pings = 0
        self.dealer_sockets = []

        self._api_token = None
        self._web_token = None

        app = web.Application()
        app.router.add_post("/api/token", self._token)
        app.router.add_get("/broker/{connection_id}/access-token", self._broker_token)
        app.router.add_get("/server-time", self._server_time)
        app.router.add_get("/get_access_token", self._web_token_endpoint)
        app.router.add_get("/v1/me/player", self._get_player)
        app.router.add_put("/v1/me/notifications/player", self._subscribe)
        app.router.add_route("*", "/v1/me/player/{command}", self._command)
        app.router.add_get("/color-lyrics/v2/track/{track_id}", self._color_lyrics)
        app.router.add_get("/lrclib/api/get", self._lrclib)
        app.router.add_get("/images/{name}", self._image)
        app.router.add_get("/dealer", self._dealer)
        self.app = app

    # -- lifecycle ---------------------------------------------------------

    @contextlib.asynccontextmanager
    async def serve(self):
        server = TestServer(self.app)
        await server.start_server()
        self.base_url = str(server.make_url("/")).rstrip("/")
        try:
            yield Endpoints.local(self.base_url)
        finally:
            for ws in list(self.dealer_sockets):
                await ws.close()
            await server.close()

    def revoke_api_token(self):
        self._api_token = None

    def revoke_web_token(self):
        self._web_token = None

    @property
    def api_token(self):
        return self._api_token

    async def push(self, frame):
        """Send a frame to every open push-channel socket."""
        for ws in list(self.dealer_sockets):
            if not ws.closed:
                await ws.send_str(json.dumps(frame))

    # -- payload builders --------------------------------------------------

    def track_payload(self, track_id="track-1", name="Song", artists=("Artist",), album="Album",
                      progress_ms=1000, duration_ms=200000, is_playing=True, volume=50,
                      supports_volume=True, repeat_state="off", shuffle_state=False):
        return {
            "is_playing": is_playing,
            "progress_ms": progress_ms,
            "currently_playing_type": "track",
            "repeat_state": repeat_state,
            "shuffle_state": shuffle_state,
            "device": {"id": "device-1", "is_active": True, "volume_percent": volume,
                       "supports_volume": supports_volume},
            "item": {
                "id": track_id,
                "name": name,
                "duration_ms": duration_ms,
                "artists": [{"name": a} for a in artists],
                "album": {
                    "name": album,
                    "images": [
                        {"url": f"{self.base_url}/images/large.jpg"},
                        {"url": f"{self.base_url}/images/medium.jpg"},
                    ],
                },
            },
        }

    def episode_payload(self, episode_id="episode-1"):
        return {
            "is_playing": True,
            "progress_ms": 5000,
            "currently_playing_type": "episode",
            "repeat_state": "context",
            "shuffle_state": False,
            "device": {"id": "device-1", "is_active": True, "volume_percent": 30, "supports_volume": False},
            "item": {
                "id": episode_id,
                "name": "Episode",
                "duration_ms": 600000,
                "show": {"name": "Show", "publisher": "Publisher"},
                "images": [{"url": f"{self.base_url}/images/episode.jpg"}],
            },
        }

    # -- handlers ----------------------------------------------------------

    def _bearer(self, request):
        return request.headers.get("Authorization", "").replace("Bearer ", "", 1)

    def _issue_api_token(self):
        self.token_requests += 1
        self._api_token = f"token-{self.token_requests}"
        return web.json_response({"access_token": self._api_token, "expires_in": 3600})

    async def _token(self, request):
        form = await request.post()
        credentials = aiohttp.encode_basic_auth(self.CLIENT_ID, self.CLIENT_SECRET)
        if (not self.token_ok or form.get("grant_type") != "refresh_token"
                or request.headers.get("Authorization") != credentials):
            self.token_requests += 1
            return web.json_response({"error": "invalid_grant"}, status=400)
        return self._issue_api_token()

    async def _broker_token(self, request):
        if not self.token_ok or request.headers.get("Authorization") != self.BROKER_TOKEN:
            self.token_requests += 1
            return web.json_response({"message": "401: Unauthorized"}, status=401)
        return self._issue_api_token()

    async def _server_time(self, request):
        return web.json_response({"serverTime": 1_700_000_000})

    async def _web_token_endpoint(self, request):
        self.web_token_requests += 1
        self.web_token_params.append(dict(request.query))
        if not self.web_token_ok or f"sp_dc={self.SEED};" not in request.headers.get("cookie", ""):
            return web.json_response({"error": "bad seed"}, status=401)
        self._web_token = f"web-{self.web_token_requests}"
        return web.json_response({"accessToken": self._web_token})

    async def _get_player(self, request):
        self.player_requests += 1
        if self._api_token is None or self._bearer(request) != self._api_token:
            return web.json_response({"error": "expired"}, status=401)
        if self.player is None:
            return web.Response(status=204)
        return web.json_response(self.player)

    async def _subscribe(self, request):
        token = self._bearer(request)
        if token not in (self._api_token, self._web_token) or not token:
            return web.json_response({"error": "expired"}, status=401)
        self.subscriptions.append(request.query.get("connection_id"))
        return web.Response(status=200)

    async def _command(self, request):
        if self._bearer(request) != self._api_token:
            return web.json_response({"error": "expired"}, status=401)
        self.commands.append((request.method, request.match_info["command"], dict(request.query)))
        return web.Response(status=204)

    async def _color_lyrics(self, request):
        self.provider_lyrics_requests += 1
        if self._web_token is None or self._bearer(request) != self._web_token:
            return web.json_response({"error": "expired"}, status=401)
        payload = self.provider_lyrics.get(request.match_info["track_id"])
        if payload is None:
            return web.Response(status=404)
        return web.json_response(payload)

    async def _lrclib(self, request):
        self.lrclib_requests += 1
        record = self.lrclib.get(request.query.get("track_name"))
        if record is None:
            return web.json_response({"code": 404, "name": "TrackNotFound"}, status=404)
        return web.json_response(record)

    async def _image(self, request):
        self.image_requests += 1
        return web.Response(body=self.IMAGE_BYTES, content_type="image/jpeg")

    async def _dealer(self, request):
        if request.query.get("access_token") not in (self._web_token, self._api_token):
            return web.Response(status=401)
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.dealer_sockets.append(ws)
        await ws.send_str(json.dumps({"headers": {"Spotify-Connection-Id": "conn-1"}}))
        async for msg in ws:
            if msg.type == WSMsgType.TEXT and json.loads(msg.data).get("type") == "ping":
                self.dealer_pings += 1
        self.dealer_sockets.remove(ws)
        return ws


async def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll predicate until it is truthy or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider_stub():
    return ProviderStub()


@pytest.fixture
def wait_until():
    return wait_for
