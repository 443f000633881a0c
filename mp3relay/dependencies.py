"""
FastAPI dependencies exposing the per-process components built in the
application lifespan.
"""

import httpx
from fastapi import Depends, Request

from mp3relay.config import settings
from mp3relay.services.relay_pipeline import ConvertPipeline
from mp3relay.services.resolver_client import ResolverClient
from mp3relay.services.temp_store import TempFileStore
from mp3relay.services.transcoder import Transcoder


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_resolver(request: Request) -> ResolverClient:
    return request.app.state.resolver


def get_temp_store(request: Request) -> TempFileStore:
    return request.app.state.temp_store


def get_transcoder(request: Request) -> Transcoder:
    return request.app.state.transcoder


def get_pipeline(
    resolver: ResolverClient = Depends(get_resolver),
    temp_store: TempFileStore = Depends(get_temp_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    transcoder: Transcoder = Depends(get_transcoder),
) -> ConvertPipeline:
    return ConvertPipeline(
        resolver=resolver,
        temp_store=temp_store,
        http_client=http_client,
        transcoder=transcoder,
        max_redirects=settings.MAX_REDIRECTS,
        download_timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
        default_quality=settings.DEFAULT_AUDIO_QUALITY,
    )
