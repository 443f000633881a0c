"""
Fetch-and-relay pipeline

Validates the input URL, resolves it to a media link, downloads the audio
into the scratch directory (transcoding when needed) and streams the file
back, deleting it once the stream ends however it ends.
"""

import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional
from urllib.parse import quote

import aiofiles
import aiofiles.os
import httpx
import structlog

from mp3relay.config import AUDIO_QUALITIES
from mp3relay.errors import (
    DownloadError,
    InternalError,
    InvalidRequestError,
    TooManyRedirectsError,
)
from mp3relay.services.resolver_client import ResolverClient
from mp3relay.services.temp_store import TempFileStore
from mp3relay.services.transcoder import Transcoder
from mp3relay.services.url_parser import require_video_id

logger = structlog.get_logger()

CHUNK_SIZE = 64 * 1024
MAX_FILENAME_LENGTH = 100
FALLBACK_FILENAME = "audio"
REDIRECT_STATUSES = (301, 302, 303, 307, 308)

# Path separators, characters reserved on common filesystems, control chars
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f-\x9f]')
_RESERVED_NAMES = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)


def sanitize_filename(name: Optional[str], max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Make a title safe to use as a download file name (without extension).

    Strips separators and control characters, trims leading dots and
    surrounding whitespace, caps the length and falls back to a generic
    name when nothing usable remains.
    """
    if not name:
        return FALLBACK_FILENAME
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", re.sub(r"\s+", " ", name))
    cleaned = cleaned.strip().lstrip(".").strip()
    cleaned = cleaned[:max_length].rstrip(" .")
    if not cleaned or _RESERVED_NAMES.match(cleaned):
        return FALLBACK_FILENAME
    return cleaned


def content_disposition(filename: str) -> str:
    """
    Attachment header carrying an ASCII fallback plus the UTF-8 name.
    """
    ascii_name = (
        unicodedata.normalize("NFKD", filename)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    ascii_name = _UNSAFE_FILENAME_CHARS.sub("", ascii_name).strip()
    stem = ascii_name[: -len(".mp3")] if ascii_name.lower().endswith(".mp3") else ascii_name
    if not stem.strip(" ."):
        ascii_name = f"{FALLBACK_FILENAME}.mp3"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


@dataclass
class PreparedAudio:
    path: Path
    filename: str
    size: int

    @property
    def headers(self) -> dict:
        return {
            "Content-Disposition": content_disposition(self.filename),
            "Content-Length": str(self.size),
        }


class ConvertPipeline:
    """
    Orchestrates one conversion request.

    prepare() does all the work that can still fail with a clean JSON error
    (validation, resolution, download, transcode). stream() then relays the
    finished file and removes it when the response is done.

    Example:
        >>> pipeline = ConvertPipeline(resolver, temp_store, http_client)
        >>> prepared = await pipeline.prepare("https://youtu.be/dQw4w9WgXcQ")
        >>> async for chunk in pipeline.stream(prepared):
        ...     ...
    """

    def __init__(
        self,
        resolver: ResolverClient,
        temp_store: TempFileStore,
        http_client: httpx.AsyncClient,
        transcoder: Optional[Transcoder] = None,
        max_redirects: int = 5,
        download_timeout: float = 300.0,
        default_quality: str = "192",
    ):
        self.resolver = resolver
        self.temp_store = temp_store
        self.http_client = http_client
        self.transcoder = transcoder
        self.max_redirects = max_redirects
        self.download_timeout = download_timeout
        self.default_quality = default_quality

    def _check_quality(self, quality: Optional[str]) -> str:
        if quality is None or not str(quality).strip():
            return self.default_quality
        quality = str(quality).strip().lower().rstrip("k")
        if quality not in AUDIO_QUALITIES:
            raise InvalidRequestError(
                f"unsupported quality: {quality[:20]}",
                user_message=f"Unsupported audio quality. Choose one of: {', '.join(AUDIO_QUALITIES)}",
            )
        return quality

    async def prepare(self, url: Optional[str], quality: Optional[str] = None) -> PreparedAudio:
        """
        Validate, resolve and download; returns a file ready to stream.

        Every temp file allocated here is discarded again if any step fails.

        Raises:
            InvalidUrlError: Unsupported input URL or ID
            InvalidRequestError: Unsupported quality
            ResolutionError: The resolver produced no usable link
            DownloadError: Fetching the media failed
            InternalError: Local failure (disk, transcoder)
        """
        video_id = require_video_id(url)
        quality = self._check_quality(quality)
        log = logger.bind(video_id=video_id, quality=quality)

        media = await self.resolver.resolve(video_id, quality)
        log.info("media_resolved", extension=media.extension)

        allocated: List[Path] = []
        try:
            source = await self.temp_store.allocate(f".{media.extension}")
            allocated.append(source)
            downloaded = await self.download(media.download_url, source, headers=media.http_headers)
            log.info("media_downloaded", bytes=downloaded)

            output = source
            if media.extension != "mp3":
                if self.transcoder is None:
                    raise InternalError(f"no transcoder configured for .{media.extension} input")
                output = await self.temp_store.allocate(".mp3")
                allocated.append(output)
                await self.transcoder.to_mp3(source, output, bitrate_kbps=quality)
                await self.temp_store.discard(source)
                allocated.remove(source)

            size = (await aiofiles.os.stat(output)).st_size
            if size == 0:
                raise InternalError("converted file is empty")
        except BaseException:
            for path in allocated:
                await self.temp_store.discard(path)
            raise

        filename = f"{sanitize_filename(media.suggested_filename)}.mp3"
        log.info("conversion_prepared", filename=filename, size_bytes=size)
        return PreparedAudio(path=output, filename=filename, size=size)

    async def download(self, url: str, destination: Path, headers: Optional[Dict[str, str]] = None) -> int:
        """
        Stream url into destination, following at most max_redirects hops.

        headers are sent on every hop.

        Returns:
            Number of bytes written

        Raises:
            TooManyRedirectsError: Redirect chain longer than allowed
            DownloadError: Network or HTTP failure, or an empty body
            InternalError: Writing to disk failed
        """
        current = url
        for hop in range(self.max_redirects + 1):
            request = self.http_client.build_request("GET", current, headers=headers, timeout=self.download_timeout)
            try:
                response = await self.http_client.send(request, stream=True, follow_redirects=False)
            except httpx.HTTPError as e:
                raise DownloadError(f"media request failed: {e}") from e

            try:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise DownloadError(f"redirect without location (HTTP {response.status_code})")
                    current = str(response.url.join(location))
                    logger.debug("media_redirect", hop=hop + 1)
                    continue

                if response.status_code >= 400:
                    raise DownloadError(f"media host returned HTTP {response.status_code}")

                return await self._write_body(response, destination)
            finally:
                await response.aclose()

        raise TooManyRedirectsError(f"more than {self.max_redirects} redirects for media url")

    async def _write_body(self, response: httpx.Response, destination: Path) -> int:
        written = 0
        try:
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
        except httpx.HTTPError as e:
            raise DownloadError(f"media transfer interrupted: {e}") from e
        except OSError as e:
            raise InternalError(f"could not write {destination.name}: {e}") from e

        if written == 0:
            raise DownloadError("media host sent an empty body")
        return written

    async def stream(self, prepared: PreparedAudio) -> AsyncIterator[bytes]:
        """
        Yield the prepared file in chunks and delete it afterwards.

        The finally block also runs when the client disconnects and the
        server closes this generator early.
        """
        sent = 0
        try:
            async with aiofiles.open(prepared.path, "rb") as f:
                while True:
                    chunk = await f.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    sent += len(chunk)
                    yield chunk
        except OSError as e:
            # Headers are already committed; all we can do is log and stop
            logger.error("stream_failed", file=prepared.path.name, error=str(e))
        finally:
            await self.temp_store.discard(prepared.path)
            logger.info(
                "stream_finished",
                file=prepared.path.name,
                sent_bytes=sent,
                complete=sent == prepared.size,
            )
