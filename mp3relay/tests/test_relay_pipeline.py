"""
Tests for the fetch-and-relay pipeline.

The resolver is a FakeResolver and the media host an httpx.MockTransport,
so every test runs against the real scratch directory only.
"""

import os

import httpx
import pytest

from mp3relay.errors import (
    DownloadError,
    InternalError,
    InvalidRequestError,
    InvalidUrlError,
    ResolutionError,
    TooManyRedirectsError,
)
from mp3relay.services.relay_pipeline import (
    ConvertPipeline,
    content_disposition,
    sanitize_filename,
)
from mp3relay.services.resolver_client import ResolvedMedia

from .conftest import MEDIA_URL, MP3_BYTES, VIDEO_ID, FakeResolver


class FakeTranscoder:
    """Writes a fixed MP3 body instead of running ffmpeg."""

    def __init__(self, output: bytes = MP3_BYTES, fail: bool = False):
        self.output = output
        self.fail = fail
        self.calls = []

    async def to_mp3(self, source, destination, bitrate_kbps="192"):
        self.calls.append((source, destination, bitrate_kbps))
        if self.fail:
            raise InternalError("ffmpeg exited with 1")
        with open(destination, "wb") as f:
            f.write(self.output)


@pytest.fixture
def pipeline(fake_resolver, temp_store, media_client):
    return ConvertPipeline(fake_resolver, temp_store, media_client, max_redirects=5)


async def _drain(pipeline, prepared):
    return b"".join([chunk async for chunk in pipeline.stream(prepared)])


class TestSanitizeFilename:
    """Test cases for sanitize_filename()."""

    @pytest.mark.parametrize("raw,expected", [
        ("Never Gonna Give You Up", "Never Gonna Give You Up"),
        ("AC/DC - Back In Black", "ACDC - Back In Black"),
        ('What? "Why" <not> a|b*c:d\\e', "What Why not abcde"),
        ("..hidden", "hidden"),
        ("line\nbreak\ttab", "line break tab"),
        ("Beyoncé – Halo", "Beyoncé – Halo"),
        ("CON", "audio"),
        ("///", "audio"),
        ("", "audio"),
        (None, "audio"),
    ])
    def test_cleans_names(self, raw, expected):
        assert sanitize_filename(raw) == expected

    def test_caps_length(self):
        assert len(sanitize_filename("a" * 500)) == 100

    def test_never_ends_in_dot_or_space(self):
        assert sanitize_filename("x" * 99 + ". tail") == "x" * 99


class TestContentDisposition:
    """Test cases for content_disposition()."""

    def test_ascii_name(self):
        header = content_disposition("Never Gonna Give You Up.mp3")
        assert header.startswith('attachment; filename="Never Gonna Give You Up.mp3"')
        assert "filename*=UTF-8''Never%20Gonna%20Give%20You%20Up.mp3" in header

    def test_non_ascii_name_has_fallback(self):
        header = content_disposition("Beyoncé.mp3")
        assert 'filename="Beyonce.mp3"' in header
        assert "filename*=UTF-8''Beyonc%C3%A9.mp3" in header

    def test_unrepresentable_name(self):
        header = content_disposition("日本語.mp3")
        assert 'filename="audio.mp3"' in header


class TestPrepare:
    """Test cases for ConvertPipeline.prepare()."""

    @pytest.mark.asyncio
    async def test_success_then_stream_deletes_file(self, pipeline, fake_resolver, temp_dir):
        """Test the happy path from URL to a deleted scratch file."""
        prepared = await pipeline.prepare(f"https://youtu.be/{VIDEO_ID}")

        assert fake_resolver.calls == [(VIDEO_ID, "192")]
        assert prepared.filename == "Never Gonna Give You Up.mp3"
        assert prepared.size == len(MP3_BYTES)
        assert prepared.path.exists()
        assert prepared.headers["Content-Length"] == str(len(MP3_BYTES))

        body = await _drain(pipeline, prepared)

        assert body == MP3_BYTES
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_early_close_still_deletes_file(self, pipeline, temp_dir):
        """Test that a client dropping mid-stream does not leak the file."""
        prepared = await pipeline.prepare(VIDEO_ID)
        stream = pipeline.stream(prepared)

        await stream.__anext__()
        await stream.aclose()

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quality,expected", [(None, "192"), ("320", "320"), ("128k", "128"), (" 64 ", "64")])
    async def test_quality_normalized(self, pipeline, fake_resolver, quality, expected):
        prepared = await pipeline.prepare(VIDEO_ID, quality)
        await _drain(pipeline, prepared)
        assert fake_resolver.calls[-1] == (VIDEO_ID, expected)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quality", ["999", "abc", "-1"])
    async def test_bad_quality_rejected(self, pipeline, fake_resolver, quality):
        with pytest.raises(InvalidRequestError):
            await pipeline.prepare(VIDEO_ID, quality)
        assert fake_resolver.calls == []

    @pytest.mark.asyncio
    async def test_invalid_url_rejected_before_resolution(self, pipeline, fake_resolver):
        with pytest.raises(InvalidUrlError):
            await pipeline.prepare("not-a-url")
        assert fake_resolver.calls == []

    @pytest.mark.asyncio
    async def test_resolution_failure_leaves_nothing(self, temp_store, media_client, temp_dir):
        resolver = FakeResolver(error=ResolutionError("upstream down"))
        pipeline = ConvertPipeline(resolver, temp_store, media_client)

        with pytest.raises(ResolutionError):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_media_not_found(self, pipeline, fake_resolver, temp_dir):
        fake_resolver.media = ResolvedMedia(download_url="https://media.example.com/missing.mp3", suggested_filename="x")

        with pytest.raises(DownloadError):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_empty_body_is_failure(self, pipeline, media_host, temp_dir):
        media_host.routes[MEDIA_URL] = lambda request: httpx.Response(200, content=b"")

        with pytest.raises(DownloadError, match="empty body"):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_network_failure(self, pipeline, media_host, temp_dir):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        media_host.routes[MEDIA_URL] = refuse

        with pytest.raises(DownloadError):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_transcodes_non_mp3_source(self, temp_store, media_client, media_host, temp_dir):
        """Test that a webm source is converted and the source removed."""
        media_host.routes["https://media.example.com/audio.webm"] = lambda request: httpx.Response(200, content=b"webm-bytes")
        resolver = FakeResolver(media=ResolvedMedia(
            download_url="https://media.example.com/audio.webm",
            suggested_filename="Song",
            extension="webm",
        ))
        transcoder = FakeTranscoder()
        pipeline = ConvertPipeline(resolver, temp_store, media_client, transcoder=transcoder)

        prepared = await pipeline.prepare(VIDEO_ID, "256")

        source, destination, bitrate = transcoder.calls[0]
        assert bitrate == "256"
        assert not source.exists()
        assert destination == prepared.path
        assert prepared.path.suffix == ".mp3"
        assert os.listdir(temp_dir) == [prepared.path.name]

        await _drain(pipeline, prepared)
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_transcode_failure_cleans_up(self, temp_store, media_client, media_host, temp_dir):
        media_host.routes["https://media.example.com/audio.webm"] = lambda request: httpx.Response(200, content=b"webm-bytes")
        resolver = FakeResolver(media=ResolvedMedia("https://media.example.com/audio.webm", "Song", "webm"))
        pipeline = ConvertPipeline(resolver, temp_store, media_client, transcoder=FakeTranscoder(fail=True))

        with pytest.raises(InternalError):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_non_mp3_without_transcoder(self, temp_store, media_client, media_host, temp_dir):
        media_host.routes["https://media.example.com/audio.webm"] = lambda request: httpx.Response(200, content=b"webm-bytes")
        resolver = FakeResolver(media=ResolvedMedia("https://media.example.com/audio.webm", "Song", "webm"))
        pipeline = ConvertPipeline(resolver, temp_store, media_client, transcoder=None)

        with pytest.raises(InternalError):
            await pipeline.prepare(VIDEO_ID)

        assert os.listdir(temp_dir) == []


class TestDownload:
    """Test cases for redirect handling in ConvertPipeline.download()."""

    @pytest.mark.asyncio
    async def test_follows_up_to_five_redirects(self, pipeline, media_host, temp_store):
        start = media_host.redirect_chain(5)
        destination = await temp_store.allocate()

        written = await pipeline.download(start, destination)

        assert written == len(MP3_BYTES)
        assert destination.read_bytes() == MP3_BYTES
        assert len(media_host.requests) == 6

    @pytest.mark.asyncio
    async def test_sixth_redirect_fails(self, pipeline, media_host, temp_store):
        start = media_host.redirect_chain(6)
        destination = await temp_store.allocate()

        with pytest.raises(TooManyRedirectsError):
            await pipeline.download(start, destination)

        assert not destination.exists()
        assert str(media_host.requests[-1].url) != MEDIA_URL

    @pytest.mark.asyncio
    async def test_too_many_redirects_leaves_no_temp_file(self, pipeline, fake_resolver, media_host, temp_dir):
        """Test that a redirect loop fails the request and cleans up."""
        fake_resolver.media = ResolvedMedia(download_url=media_host.redirect_chain(6), suggested_filename="x")

        with pytest.raises(TooManyRedirectsError) as exc_info:
            await pipeline.prepare(VIDEO_ID)

        assert exc_info.value.status_code == 500
        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_relative_location(self, pipeline, media_host, temp_store):
        media_host.routes["https://media.example.com/start"] = lambda request: httpx.Response(
            307, headers={"Location": "/audio/dQw4w9WgXcQ.mp3"}
        )
        destination = await temp_store.allocate()

        await pipeline.download("https://media.example.com/start", destination)

        assert destination.read_bytes() == MP3_BYTES

    @pytest.mark.asyncio
    async def test_resolved_headers_sent_on_every_hop(self, pipeline, fake_resolver, media_host):
        """Test that headers supplied by the resolver reach the media host."""
        fake_resolver.media = ResolvedMedia(
            download_url=media_host.redirect_chain(2),
            suggested_filename="x",
            http_headers={"User-Agent": "Mozilla/5.0 (test)", "Referer": "https://www.youtube.com/"},
        )

        prepared = await pipeline.prepare(VIDEO_ID)
        await _drain(pipeline, prepared)

        assert len(media_host.requests) == 3
        for request in media_host.requests:
            assert request.headers["User-Agent"] == "Mozilla/5.0 (test)"
            assert request.headers["Referer"] == "https://www.youtube.com/"

    @pytest.mark.asyncio
    async def test_redirect_without_location(self, pipeline, media_host, temp_store):
        media_host.routes["https://media.example.com/start"] = lambda request: httpx.Response(302)
        destination = await temp_store.allocate()

        with pytest.raises(DownloadError, match="without location"):
            await pipeline.download("https://media.example.com/start", destination)

    @pytest.mark.asyncio
    async def test_zero_redirects_allowed(self, fake_resolver, temp_store, media_client, media_host):
        pipeline = ConvertPipeline(fake_resolver, temp_store, media_client, max_redirects=0)
        destination = await temp_store.allocate()

        with pytest.raises(TooManyRedirectsError):
            await pipeline.download(media_host.redirect_chain(1), destination)
