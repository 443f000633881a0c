"""
YouTube URL validation and video ID extraction.
"""

import re
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from mp3relay.errors import InvalidUrlError

ALLOWED_SCHEMES = ("http", "https")

ALLOWED_HOSTS = frozenset({
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
    "www.youtube-nocookie.com",
})

SHORT_HOSTS = frozenset({"youtu.be"})

# Path prefixes whose next segment is the video ID
ID_PATH_PREFIXES = ("embed", "shorts", "v", "live")

VIDEO_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{11}")


def is_video_id(value: str) -> bool:
    """True when value is exactly one 11-character video ID."""
    return VIDEO_ID_PATTERN.fullmatch(value) is not None


def is_allowed_url(url: str) -> bool:
    """Scheme and host check against the allow-list."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return False
    host = (parts.hostname or "").lower()
    return host in ALLOWED_HOSTS


def extract_video_id(value: Optional[str]) -> Optional[str]:
    """
    Extract the 11-character video ID from a URL or bare ID.

    Accepts:
        - https://www.youtube.com/watch?v=dQw4w9WgXcQ
        - https://youtu.be/dQw4w9WgXcQ
        - https://www.youtube.com/embed/dQw4w9WgXcQ (also /shorts/, /v/, /live/)
        - dQw4w9WgXcQ

    Returns:
        The video ID, or None when nothing recognizable is present
    """
    if not value:
        return None
    value = value.strip()

    if is_video_id(value):
        return value

    if not is_allowed_url(value):
        return None

    parts = urlsplit(value)
    host = (parts.hostname or "").lower()
    segments = [segment for segment in parts.path.split("/") if segment]

    candidate = None
    if host in SHORT_HOSTS:
        if len(segments) == 1:
            candidate = segments[0]
    elif segments == ["watch"]:
        ids = parse_qs(parts.query).get("v")
        if ids:
            candidate = ids[0]
    elif len(segments) == 2 and segments[0] in ID_PATH_PREFIXES:
        candidate = segments[1]

    if candidate and is_video_id(candidate):
        return candidate
    return None


def require_video_id(value: Optional[str]) -> str:
    """
    Validate user input and return its video ID.

    Raises:
        InvalidUrlError: If the input is not a supported URL or ID
    """
    if not value or not value.strip():
        raise InvalidUrlError("empty url", user_message="URL is required")

    value = value.strip()
    if not is_video_id(value) and not is_allowed_url(value):
        raise InvalidUrlError(f"url rejected by allow-list: {value[:100]}")

    video_id = extract_video_id(value)
    if video_id is None:
        raise InvalidUrlError(f"no video id in url: {value[:100]}")
    return video_id


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"
