import asyncio
import contextlib
import logging
from pathlib import Path
from typing import AsyncIterator, Protocol

import yt_dlp

from vidscribe import types as t, youtube
from vidscribe.errors import AcquisitionError

log = logging.getLogger(__name__)

MAX_BYTES = 50 * 1024 * 1024
BITRATE_KBPS = 128
RETRIES = 3
RETRY_DELAY = 2.0


class Downloader(Protocol):
    def download_audio(self, video_id: str, download_dir: Path, bitrate_kbps: int = ...) -> Path: ...


class Acquirer:
    """Turns a video ID into a local, normalized audio file in a scratch directory.

    Files are named by video ID, so a second request for the same video reuses
    whatever an earlier one downloaded. Nothing here deletes a file on its own
    except oversized downloads; callers release assets via ``release`` or
    ``scoped``.
    """

    def __init__(
        self,
        scratch_dir: Path,
        downloader: Downloader | None = None,
        max_bytes: int = MAX_BYTES,
        bitrate_kbps: int = BITRATE_KBPS,
        retries: int = RETRIES,
        retry_delay: float = RETRY_DELAY,
        probe=youtube.probe_duration,
    ):
        self.scratch_dir = scratch_dir
        self._downloader = downloader or youtube.RealDownloader()
        self.max_bytes = max_bytes
        self.bitrate_kbps = bitrate_kbps
        self.retries = retries
        self.retry_delay = retry_delay
        self._probe = probe

    def path_for(self, video_id: str) -> Path:
        return self.scratch_dir / f"{video_id}.{youtube.AUDIO_EXT}"

    async def acquire(self, video_id: str) -> t.AudioAsset:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(video_id)
        if path.exists() and path.stat().st_size > 0:
            log.info("[%s] Reusing audio at %s", video_id, path)
        else:
            path = await self._download(video_id)

        try:
            size = path.stat().st_size
        except OSError as exc:
            raise AcquisitionError(f"audio for {video_id} disappeared from {path}: {exc}") from exc
        if size > self.max_bytes:
            path.unlink(missing_ok=True)
            raise AcquisitionError(
                f"audio for {video_id} is {size / (1024 * 1024):.1f}MB, "
                f"over the {self.max_bytes / (1024 * 1024):.0f}MB limit"
            )

        duration = await self._probe(path)
        log.info("[%s] Audio ready (%.1fMB, %.0fs)", video_id, size / (1024 * 1024), duration)
        return t.AudioAsset(path=str(path), duration_seconds=duration,
                            format=path.suffix.lstrip("."), video_id=video_id)

    async def _download(self, video_id: str) -> Path:
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                log.info("[%s] Downloading audio (attempt %d/%d)...", video_id, attempt, self.retries)
                return await asyncio.to_thread(
                    self._downloader.download_audio, video_id, self.scratch_dir, self.bitrate_kbps,
                )
            except (yt_dlp.utils.DownloadError, OSError) as exc:
                if youtube.is_permanent(exc):
                    raise AcquisitionError(f"{video_id} can't be downloaded: {exc}") from exc
                last_error = exc
                log.warning("[%s] Download attempt %d failed: %s", video_id, attempt, exc)
                if attempt < self.retries:
                    await asyncio.sleep(self.retry_delay * attempt)
        raise AcquisitionError(
            f"giving up on {video_id} after {self.retries} attempts: {last_error}"
        ) from last_error

    def release(self, asset: t.AudioAsset) -> None:
        Path(asset.path).unlink(missing_ok=True)

    @contextlib.asynccontextmanager
    async def scoped(self, video_id: str) -> AsyncIterator[t.AudioAsset]:
        asset = await self.acquire(video_id)
        try:
            yield asset
        finally:
            self.release(asset)
