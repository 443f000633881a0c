"""
Shared fixtures for the converter test suite.

Upstream HTTP (resolver API, media hosts) is served by httpx.MockTransport
and the resolver itself is replaced by FakeResolver where the endpoint tests
do not care about resolver internals.
"""

from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from mp3relay.config import settings
from mp3relay.dependencies import get_http_client, get_resolver
from mp3relay.errors import ResolutionError
from mp3relay.main import app
from mp3relay.services.resolver_client import ResolvedMedia, ResolverClient, VideoInfo
from mp3relay.services.temp_store import TempFileStore

TEST_PASSWORD = "correct-horse"
VIDEO_ID = "dQw4w9WgXcQ"
MEDIA_URL = "https://media.example.com/audio/dQw4w9WgXcQ.mp3"
MP3_BYTES = b"ID3\x04\x00\x00" + bytes(range(256)) * 40


class FakeResolver(ResolverClient):
    """Resolver double returning canned answers and recording calls."""

    def __init__(
        self,
        media: Optional[ResolvedMedia] = None,
        info: Optional[VideoInfo] = None,
        error: Optional[ResolutionError] = None,
    ):
        self.media = media or ResolvedMedia(
            download_url=MEDIA_URL,
            suggested_filename="Never Gonna Give You Up",
        )
        self.info = info or VideoInfo(
            title="Never Gonna Give You Up",
            author="Rick Astley",
            duration_seconds=212,
            thumbnail_url=f"https://i.ytimg.com/vi/{VIDEO_ID}/hqdefault.jpg",
        )
        self.error = error
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def get_info(self, url_or_id: str) -> VideoInfo:
        self.calls.append((url_or_id, None))
        if self.error:
            raise self.error
        return self.info

    async def resolve(self, url_or_id: str, quality: Optional[str] = None) -> ResolvedMedia:
        self.calls.append((url_or_id, quality))
        if self.error:
            raise self.error
        return self.media


class MediaHost:
    """
    Route table for the mocked media server.

    Each route maps a URL to a callable building the httpx.Response.
    Unknown URLs answer 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {
            MEDIA_URL: lambda request: httpx.Response(200, content=MP3_BYTES),
        }
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not here")
        return route(request)

    def redirect_chain(self, length: int, final_url: str = MEDIA_URL) -> str:
        """Register `length` redirect hops ending at final_url; returns the first URL."""
        next_url = final_url
        for hop in reversed(range(length)):
            url = f"https://cdn.example.com/hop/{hop}"
            self.routes[url] = (lambda target: lambda request: httpx.Response(302, headers={"Location": target}))(next_url)
            next_url = url
        return next_url


@pytest.fixture
def media_host() -> MediaHost:
    return MediaHost()


@pytest.fixture
def media_client(media_host) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(media_host.handler))


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def temp_store(temp_dir) -> TempFileStore:
    return TempFileStore(temp_dir, max_age_seconds=1800)


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def app_settings(monkeypatch, temp_dir):
    """Deterministic settings for the application under test."""
    monkeypatch.setattr(settings, "TEMP_DIR", str(temp_dir))
    monkeypatch.setattr(settings, "APP_PASSWORD", TEST_PASSWORD)
    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    monkeypatch.setattr(settings, "AUTH_PROTECT_INFO", True)
    monkeypatch.setattr(settings, "RESOLVER_BACKEND", "api")
    monkeypatch.setattr(settings, "CONVERT_RATE_LIMIT", 20)
    monkeypatch.setattr(settings, "CONVERT_RATE_WINDOW_SECONDS", 3600)
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 100)
    monkeypatch.setattr(settings, "API_RATE_WINDOW_SECONDS", 900)
    monkeypatch.setattr(settings, "SWEEP_INTERVAL_SECONDS", 3600)
    monkeypatch.setattr(settings, "DEFAULT_AUDIO_QUALITY", "192")
    monkeypatch.setattr(settings, "MAX_REDIRECTS", 5)
    return settings


@pytest.fixture
def client(app_settings, fake_resolver, media_client):
    """TestClient with the lifespan running and upstreams mocked."""
    app.dependency_overrides[get_resolver] = lambda: fake_resolver
    app.dependency_overrides[get_http_client] = lambda: media_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client) -> Dict[str, str]:
    response = client.post("/api/auth", json={"password": TEST_PASSWORD})
    assert response.status_code == 200
    return {"X-Session-Token": response.json()["token"]}
