"""
Scratch directory for in-flight media files.

Every file the pipeline writes lives here under a collision-free name and is
deleted either by the pipeline once the response finishes or, as a backstop,
by the periodic sweep once it is older than the age threshold.
"""

import asyncio
import secrets
import time
from pathlib import Path
from typing import Callable, Optional, Union

import aiofiles.os
import structlog

logger = structlog.get_logger()


class TempFileStore:
    """
    Allocates unique paths in a scratch directory and reclaims old files.

    Example:
        >>> store = TempFileStore("/tmp/mp3relay", max_age_seconds=1800)
        >>> await store.ensure_directory()
        >>> path = await store.allocate(".mp3")
        >>> ...
        >>> await store.discard(path)
    """

    def __init__(
        self,
        directory: Union[str, Path],
        max_age_seconds: float = 1800,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._sweep_lock = asyncio.Lock()

    async def ensure_directory(self) -> None:
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

    def _new_name(self, suffix: str) -> str:
        timestamp = int(self._clock() * 1000)
        return f"{timestamp}-{secrets.token_hex(6)}{suffix}"

    async def allocate(self, suffix: str = ".mp3") -> Path:
        """
        Reserve a fresh path in the store.

        The file itself is not created; the caller writes to it.
        """
        await self.ensure_directory()
        path = self.directory / self._new_name(suffix)
        while await aiofiles.os.path.exists(path):
            path = self.directory / self._new_name(suffix)
        logger.debug("temp_file_allocated", path=str(path))
        return path

    async def discard(self, path: Optional[Union[str, Path]]) -> bool:
        """
        Delete a file from the store if it exists.

        Safe to call more than once. Failures are logged, never raised.

        Returns:
            True if a file was removed
        """
        if path is None:
            return False
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("temp_file_discard_failed", path=str(path), error=str(e))
            return False
        logger.info("temp_file_discarded", path=str(path))
        return True

    async def sweep(self) -> int:
        """
        Delete every entry older than the age threshold.

        A failure on one entry is logged and the sweep moves on. Sweeps
        never overlap.

        Returns:
            Number of files deleted
        """
        async with self._sweep_lock:
            try:
                names = await aiofiles.os.listdir(self.directory)
            except FileNotFoundError:
                return 0

            now = self._clock()
            deleted = 0
            for name in names:
                path = self.directory / name
                try:
                    stat_result = await aiofiles.os.stat(path)
                    if now - stat_result.st_mtime <= self.max_age_seconds:
                        continue
                    await aiofiles.os.remove(path)
                except FileNotFoundError:
                    # Removed by its owner while we were looking
                    continue
                except OSError as e:
                    logger.error("temp_file_sweep_failed", path=str(path), error=str(e))
                    continue
                deleted += 1
                logger.info("temp_file_expired", file=name)

            if deleted:
                logger.info("temp_sweep_completed", deleted=deleted, scanned=len(names))
            return deleted
