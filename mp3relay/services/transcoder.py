"""
Audio transcoding with FFmpeg.

Only used when the resolver hands back a container other than MP3 (the
yt-dlp backend usually returns m4a or webm audio).
"""

import asyncio
import shutil
from pathlib import Path
from typing import List, Optional, Union

import structlog

from mp3relay.errors import InternalError

logger = structlog.get_logger()


class TranscodeError(InternalError):
    """FFmpeg is missing or exited with an error."""


class Transcoder:
    """
    Converts downloaded audio to MP3 via an ffmpeg subprocess.

    Example:
        >>> transcoder = Transcoder()
        >>> if transcoder.available:
        ...     await transcoder.to_mp3("/tmp/in.webm", "/tmp/out.mp3", bitrate_kbps="192")
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, timeout: float = 600.0):
        """
        Args:
            ffmpeg_path: Optional path to ffmpeg executable. If not provided,
                        will check system PATH.
            timeout: Upper bound for a single conversion in seconds
        """
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self.executable = self._find_ffmpeg()
        if self.executable:
            logger.info("ffmpeg_found", path=self.executable)
        else:
            logger.warning(
                "ffmpeg_not_found",
                message="FFmpeg not found. Resolvers returning non-MP3 audio will fail. "
                        "Install FFmpeg or set FFMPEG_PATH.",
            )

    def _find_ffmpeg(self) -> Optional[str]:
        if self.ffmpeg_path:
            if Path(self.ffmpeg_path).exists():
                return self.ffmpeg_path
            logger.warning("ffmpeg_custom_path_missing", path=self.ffmpeg_path)
        return shutil.which("ffmpeg")

    @property
    def available(self) -> bool:
        return self.executable is not None

    def build_command(
        self,
        source: Union[str, Path],
        destination: Union[str, Path],
        bitrate_kbps: str = "192",
    ) -> List[str]:
        return [
            self.executable or "ffmpeg",
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(source),
            "-vn",
            "-ac", "2",
            "-b:a", f"{bitrate_kbps}k",
            "-f", "mp3",
            str(destination),
        ]

    async def to_mp3(
        self,
        source: Union[str, Path],
        destination: Union[str, Path],
        bitrate_kbps: str = "192",
    ) -> None:
        """
        Raises:
            TranscodeError: If ffmpeg is unavailable, times out or fails
        """
        if not self.available:
            raise TranscodeError("ffmpeg is not installed")

        command = self.build_command(source, destination, bitrate_kbps)
        logger.info("transcode_started", source=str(source), bitrate_kbps=bitrate_kbps)

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise TranscodeError(f"ffmpeg timed out after {self.timeout}s") from e

        if process.returncode != 0:
            error_message = stderr.decode("utf-8", errors="ignore")[-1000:]
            logger.error("transcode_failed", return_code=process.returncode, error=error_message)
            raise TranscodeError(f"ffmpeg exited with {process.returncode}")

        logger.info("transcode_completed", destination=str(destination))
