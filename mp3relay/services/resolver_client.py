"""
Resolver clients

Turn a YouTube URL or video ID into a direct, time-limited audio download
link plus basic metadata. The heavy lifting happens outside this process:
either in a hosted resolution API or inside yt-dlp. No retries anywhere -
a failed lookup is reported to the caller immediately.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx
import structlog
import yt_dlp

from mp3relay.config import Settings
from mp3relay.errors import InvalidUrlError, ResolutionError
from mp3relay.services.url_parser import extract_video_id, watch_url

logger = structlog.get_logger()


@dataclass
class VideoInfo:
    title: str
    author: Optional[str]
    duration_seconds: Optional[int]
    thumbnail_url: Optional[str]


@dataclass
class ResolvedMedia:
    download_url: str
    suggested_filename: str
    extension: str = "mp3"
    # Request headers the media host expects (yt-dlp supplies them per format)
    http_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ResolverPayload:
    """The one stable shape the rest of the service depends on."""

    download_url: Optional[str]
    title: Optional[str]
    author: Optional[str]
    duration_seconds: Optional[int]
    thumbnail_url: Optional[str]


# Upstream field names seen across resolver API versions
LINK_FIELDS = ("link", "url", "downloadUrl", "download_url", "dlink")
TITLE_FIELDS = ("title", "name")
AUTHOR_FIELDS = ("author", "channel", "uploader", "channelTitle")
DURATION_FIELDS = ("duration", "lengthSeconds", "duration_seconds")
THUMBNAIL_FIELDS = ("thumbnail", "thumbnailUrl", "thumb", "thumbnail_url")

SUCCESS_STATUSES = {"ok", "success", "tunnel", "redirect", "stream"}

# Upstream failure wording that points at the requested content rather than
# the upstream service itself
CONTENT_FAILURE_HINTS = (
    "private",
    "unavailable",
    "not found",
    "invalid id",
    "invalid video",
    "live",
    "too long",
    "restricted",
    "removed",
)

_CONTENT_FAILURE_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(hint) for hint in CONTENT_FAILURE_HINTS) + r")\b",
    re.IGNORECASE,
)


def is_content_failure(reason: str) -> bool:
    """True when upstream wording blames the requested video (whole words only)."""
    return _CONTENT_FAILURE_PATTERN.search(reason) is not None


def _first(payload: Mapping[str, Any], fields: Sequence[str]) -> Optional[Any]:
    for name in fields:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def _as_seconds(value: Any) -> Optional[int]:
    """Durations arrive as ints, floats, numeric strings or "m:ss"."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if ":" in text:
        total = 0
        try:
            for part in text.split(":"):
                total = total * 60 + int(part)
        except ValueError:
            return None
        return total
    try:
        return int(float(text))
    except ValueError:
        return None


def default_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


def parse_resolver_payload(payload: Any) -> ResolverPayload:
    """
    Normalize a resolver API response.

    Tolerates alternate field names for every value and reports upstream
    failures uniformly.

    Raises:
        ResolutionError: If the upstream reported a failure or the body is
            not a JSON object
    """
    if not isinstance(payload, dict):
        raise ResolutionError(f"malformed resolver response: {type(payload).__name__}")

    status = str(payload.get("status", "ok")).lower()
    if status not in SUCCESS_STATUSES:
        reason = payload.get("msg") or payload.get("message") or payload.get("error") or status
        if isinstance(reason, dict):
            reason = reason.get("code") or reason.get("message") or str(reason)
        reason = str(reason)
        user_fault = is_content_failure(reason)
        raise ResolutionError(
            f"resolver reported failure: {reason}",
            user_fault=user_fault,
            details={"status": status},
        )

    link = _first(payload, LINK_FIELDS)
    title = _first(payload, TITLE_FIELDS)
    author = _first(payload, AUTHOR_FIELDS)
    thumbnail = _first(payload, THUMBNAIL_FIELDS)

    return ResolverPayload(
        download_url=str(link) if link else None,
        title=str(title) if title else None,
        author=str(author) if author else None,
        duration_seconds=_as_seconds(_first(payload, DURATION_FIELDS)),
        thumbnail_url=str(thumbnail) if thumbnail else None,
    )


def _video_id_or_raise(url_or_id: str) -> str:
    video_id = extract_video_id(url_or_id)
    if video_id is None:
        raise InvalidUrlError(f"no video id in: {str(url_or_id)[:100]}")
    return video_id


class ResolverClient(ABC):
    """Interface every resolver backend implements."""

    @abstractmethod
    async def get_info(self, url_or_id: str) -> VideoInfo:
        """Look up title, author, duration and thumbnail."""

    @abstractmethod
    async def resolve(self, url_or_id: str, quality: Optional[str] = None) -> ResolvedMedia:
        """Look up a direct audio download link."""

    async def aclose(self) -> None:
        """Release backend resources."""


class ApiResolverClient(ResolverClient):
    """
    Client for a hosted resolution API.

    Sends ``GET {base_url}{lookup_path}?id=<video id>`` with RapidAPI-style
    credentials and normalizes the JSON answer with parse_resolver_payload().

    Example:
        >>> async with httpx.AsyncClient() as http:
        ...     client = ApiResolverClient(http, base_url="https://youtube-mp36.p.rapidapi.com", api_key="...")
        ...     media = await client.resolve("dQw4w9WgXcQ")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_key: str = "",
        api_host: str = "",
        lookup_path: str = "/dl",
        timeout: float = 60.0,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_host = api_host
        self.lookup_path = "/" + lookup_path.lstrip("/")
        self.timeout = timeout
        self.logger = logger.bind(service="resolver_client", backend="api")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-RapidAPI-Key"] = self.api_key
        if self.api_host:
            headers["X-RapidAPI-Host"] = self.api_host
        return headers

    async def _lookup(self, video_id: str, quality: Optional[str] = None) -> ResolverPayload:
        params = {"id": video_id}
        if quality:
            params["quality"] = quality

        self.logger.info("resolver_lookup_started", video_id=video_id)
        try:
            # httpx timeouts apply per phase; wait_for caps the whole lookup
            response = await asyncio.wait_for(
                self.http_client.get(
                    f"{self.base_url}{self.lookup_path}",
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ResolutionError(f"resolver timed out after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise ResolutionError(f"resolver request failed: {e}") from e

        if response.status_code >= 400:
            self.logger.error(
                "resolver_http_error",
                video_id=video_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            # 404 from the resolver means the video itself could not be found
            raise ResolutionError(
                f"resolver returned HTTP {response.status_code}",
                user_fault=response.status_code == 404,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResolutionError(f"resolver returned non-JSON body: {response.text[:200]}") from e

        payload = parse_resolver_payload(data)
        self.logger.info("resolver_lookup_completed", video_id=video_id, has_link=bool(payload.download_url))
        return payload

    async def get_info(self, url_or_id: str) -> VideoInfo:
        video_id = _video_id_or_raise(url_or_id)
        payload = await self._lookup(video_id)
        if not payload.title:
            raise ResolutionError("resolver response carried no title")
        return VideoInfo(
            title=payload.title,
            author=payload.author,
            duration_seconds=payload.duration_seconds,
            thumbnail_url=payload.thumbnail_url or default_thumbnail(video_id),
        )

    async def resolve(self, url_or_id: str, quality: Optional[str] = None) -> ResolvedMedia:
        video_id = _video_id_or_raise(url_or_id)
        payload = await self._lookup(video_id, quality)
        if not payload.download_url:
            # Live streams and restricted videos come back without a link
            raise ResolutionError("resolver response carried no download link", user_fault=True)
        return ResolvedMedia(
            download_url=payload.download_url,
            suggested_filename=payload.title or video_id,
            extension="mp3",
        )


class YtDlpResolverClient(ResolverClient):
    """
    Resolver backed by yt-dlp running in-process.

    extract_info() is blocking, so it runs in a worker thread bounded by
    the resolver timeout. The returned link is the best audio-only format,
    usually m4a or webm, which the pipeline transcodes to MP3.
    """

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout
        self.logger = logger.bind(service="resolver_client", backend="ytdlp")

    @staticmethod
    def _extract(url: str) -> Dict[str, Any]:
        ydl_opts = {
            "format": "bestaudio/best",
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
        }
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            return ydl.extract_info(url, download=False)

    async def _lookup(self, video_id: str) -> Dict[str, Any]:
        self.logger.info("resolver_lookup_started", video_id=video_id)
        try:
            info = await asyncio.wait_for(
                asyncio.to_thread(self._extract, watch_url(video_id)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ResolutionError(f"yt-dlp timed out after {self.timeout}s") from e
        except yt_dlp.utils.DownloadError as e:
            message = str(e)
            user_fault = is_content_failure(message)
            raise ResolutionError(f"yt-dlp extraction failed: {message}", user_fault=user_fault) from e

        if not isinstance(info, dict):
            raise ResolutionError("yt-dlp returned no metadata")
        if info.get("is_live"):
            raise ResolutionError("live streams cannot be converted", user_fault=True)
        return info

    async def get_info(self, url_or_id: str) -> VideoInfo:
        video_id = _video_id_or_raise(url_or_id)
        info = await self._lookup(video_id)
        return VideoInfo(
            title=info.get("title") or video_id,
            author=info.get("uploader") or info.get("channel"),
            duration_seconds=_as_seconds(info.get("duration")),
            thumbnail_url=info.get("thumbnail") or default_thumbnail(video_id),
        )

    async def resolve(self, url_or_id: str, quality: Optional[str] = None) -> ResolvedMedia:
        video_id = _video_id_or_raise(url_or_id)
        info = await self._lookup(video_id)
        download_url = info.get("url")
        if not download_url:
            raise ResolutionError("yt-dlp found no direct audio url", user_fault=True)
        return ResolvedMedia(
            download_url=download_url,
            suggested_filename=info.get("title") or video_id,
            extension=(info.get("ext") or "webm").lower(),
            http_headers=dict(info.get("http_headers") or {}),
        )


def get_resolver_client(settings: Settings, http_client: httpx.AsyncClient) -> ResolverClient:
    """Build the resolver backend selected by RESOLVER_BACKEND."""
    if settings.RESOLVER_BACKEND == "ytdlp":
        return YtDlpResolverClient(timeout=settings.RESOLVER_TIMEOUT_SECONDS)

    if not settings.RESOLVER_API_KEY:
        logger.warning(
            "resolver_api_key_missing",
            message="RESOLVER_API_KEY is not set. Hosted resolvers usually reject anonymous calls.",
        )
    return ApiResolverClient(
        http_client,
        base_url=settings.RESOLVER_API_URL,
        api_key=settings.RESOLVER_API_KEY,
        api_host=settings.RESOLVER_API_HOST,
        lookup_path=settings.RESOLVER_LOOKUP_PATH,
        timeout=settings.RESOLVER_TIMEOUT_SECONDS,
    )
