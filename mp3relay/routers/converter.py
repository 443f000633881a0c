"""
Audio converter endpoint router

Looks up video metadata and converts YouTube videos to MP3 attachments.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from mp3relay.auth import verify_session, verify_session_for_info
from mp3relay.dependencies import get_pipeline, get_resolver
from mp3relay.errors import ResolutionError
from mp3relay.schemas import ConvertRequest, ErrorResponse, VideoInfoResponse
from mp3relay.services.relay_pipeline import ConvertPipeline
from mp3relay.services.resolver_client import ResolverClient
from mp3relay.services.url_parser import require_video_id
from mp3relay.throttle import limit_api_requests, limit_convert_requests

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Audio Converter"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid URL or unusable video"},
    401: {"model": ErrorResponse, "description": "Missing or invalid session"},
    429: {"model": ErrorResponse, "description": "Too many requests"},
    500: {"model": ErrorResponse, "description": "Resolution or download failure"},
}


@router.get(
    "/info",
    response_model=VideoInfoResponse,
    responses=ERROR_RESPONSES,
    summary="Look up title, author, duration and thumbnail",
    dependencies=[Depends(verify_session_for_info), Depends(limit_api_requests)],
)
async def video_info(
    url: Optional[str] = Query(None, max_length=512, description="YouTube URL or video ID"),
    resolver: ResolverClient = Depends(get_resolver),
):
    """
    Return basic metadata for a video.

    Any resolver failure is reported as 400: from the caller's point of view
    the video cannot be used.
    """
    video_id = require_video_id(url)
    try:
        info = await resolver.get_info(video_id)
    except ResolutionError as e:
        raise ResolutionError(
            e.message,
            user_fault=True,
            user_message="Could not fetch video info. Please check the URL and try again.",
        ) from e

    return VideoInfoResponse(
        title=info.title,
        author=info.author,
        duration=info.duration_seconds,
        thumbnail=info.thumbnail_url,
    )


async def _convert(pipeline: ConvertPipeline, url: Optional[str], quality: Optional[str]) -> StreamingResponse:
    logger.info(
        "youtube_conversion_request_received",
        url=url[:100] if url else None,
        quality=quality,
    )

    prepared = await pipeline.prepare(url, quality)

    # The stream removes the file when it ends; the background task covers a
    # response whose body never started (client gone before the first chunk).
    return StreamingResponse(
        pipeline.stream(prepared),
        media_type="audio/mpeg",
        headers=prepared.headers,
        background=BackgroundTask(pipeline.temp_store.discard, prepared.path),
    )


CONVERT_DESCRIPTION = """
Convert a YouTube video to an MP3 attachment.

This endpoint:
1. Validates the YouTube URL
2. Resolves it to a direct audio link
3. Downloads the audio into a scratch file (transcoding to MP3 when needed)
4. Streams the file back and deletes it

**IMPORTANT:** This is a synchronous endpoint that may take 10-60+ seconds.
"""


@router.get(
    "/convert",
    responses={200: {"description": "MP3 audio file", "content": {"audio/mpeg": {}}}, **ERROR_RESPONSES},
    summary="Convert YouTube to MP3",
    description=CONVERT_DESCRIPTION,
    dependencies=[Depends(verify_session), Depends(limit_convert_requests)],
)
async def convert_youtube_get(
    url: Optional[str] = Query(None, max_length=512, description="YouTube URL or video ID"),
    quality: Optional[str] = Query(None, max_length=8, description="MP3 bitrate in kbps"),
    pipeline: ConvertPipeline = Depends(get_pipeline),
):
    return await _convert(pipeline, url, quality)


@router.post(
    "/convert",
    responses={200: {"description": "MP3 audio file", "content": {"audio/mpeg": {}}}, **ERROR_RESPONSES},
    summary="Convert YouTube to MP3",
    description=CONVERT_DESCRIPTION,
    dependencies=[Depends(verify_session), Depends(limit_convert_requests)],
)
async def convert_youtube_post(
    payload: Optional[ConvertRequest] = Body(None),
    url: Optional[str] = Query(None, max_length=512),
    quality: Optional[str] = Query(None, max_length=8),
    pipeline: ConvertPipeline = Depends(get_pipeline),
):
    """Same as GET; the JSON body wins over query parameters."""
    if payload is not None:
        url = payload.url or url
        quality = payload.quality or quality
    return await _convert(pipeline, url, quality)
