"""
Temporary file tracking for reelpipe.

Every transient artifact a run creates or downloads (voiceover audio,
stock media, rendered video, thumbnails) is registered here until it is
released. The registry is shared by all concurrently running jobs; only
the in-memory set is guarded by the lock, file I/O happens outside it.
Downloaded chunks are written from worker threads, never on the event
loop.
"""
import asyncio
import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Optional

import httpx

from reelpipe.config import settings

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class TempResourceManager:
    """
    Single authority for the lifetime of transient pipeline files.

    Paths are named ``{prefix}-{millis}-{random}{extension}`` inside the
    scratch directory, so concurrent jobs never collide on a path. Each
    tracked path remembers the job that owns it (if any) so one job's
    cleanup never touches another job's files.
    """

    def __init__(
        self,
        scratch_dir: str | Path | None = None,
        http_client: Optional[httpx.AsyncClient] = None,
        request_timeout: float | None = None,
    ):
        """
        Initialize the manager and create the scratch directory.

        Args:
            scratch_dir: Directory for transient files.
                         If None, uses settings.storage.tmp_dir
            http_client: Client used for downloads. If None, a short-lived
                         client is created per download.
            request_timeout: Download timeout when no client is supplied.
        """
        if scratch_dir is None:
            scratch_dir = settings.storage.tmp_dir

        self.scratch_dir = Path(scratch_dir).resolve()
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self._http_client = http_client
        self._request_timeout = request_timeout or settings.services.request_timeout
        self._lock = threading.Lock()
        self._tracked: dict[Path, Optional[str]] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def create_path(self, prefix: str, extension: str, owner: Optional[str] = None) -> Path:
        """
        Allocate and track a collision-resistant path in the scratch directory.

        The file is not created; callers write to it themselves.
        """
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        filename = f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)}{extension}"
        path = self.scratch_dir / filename
        self.track(path, owner=owner)
        return path

    def track(self, path: str | Path, owner: Optional[str] = None) -> Path:
        """Register a file for later cleanup. Re-tracking is a no-op."""
        path = Path(path).resolve()
        with self._lock:
            self._tracked.setdefault(path, owner)
        return path

    def release(self, path: str | Path) -> None:
        """
        Delete a file and stop tracking it.

        Safe on already-released or never-tracked paths.
        """
        path = Path(path).resolve()
        with self._lock:
            was_tracked = path in self._tracked
            self._tracked.pop(path, None)
        if was_tracked:
            self._unlink(path)

    def release_all(self, owner: Optional[str] = None) -> int:
        """
        Delete tracked files and clear them from the registry.

        Args:
            owner: Only release files owned by this job. None releases
                   every tracked file.

        Returns:
            Number of paths released.
        """
        with self._lock:
            if owner is None:
                paths = list(self._tracked)
                self._tracked.clear()
            else:
                paths = [p for p, o in self._tracked.items() if o == owner]
                for p in paths:
                    del self._tracked[p]

        for path in paths:
            self._unlink(path)
        if paths:
            logger.info(f"Released {len(paths)} temporary files" + (f" for job {owner}" if owner else ""))
        return len(paths)

    def reclaim_orphans(self) -> int:
        """
        Delete untracked files left in the scratch directory by a prior process.

        Returns:
            Number of files removed.
        """
        with self._lock:
            tracked = set(self._tracked)

        removed = 0
        for path in self.scratch_dir.iterdir():
            if path.is_file() and path.resolve() not in tracked:
                self._unlink(path)
                removed += 1
        if removed:
            logger.info(f"Reclaimed {removed} orphaned files from {self.scratch_dir}")
        return removed

    def tracked_paths(self, owner: Optional[str] = None) -> list[Path]:
        with self._lock:
            if owner is None:
                return list(self._tracked)
            return [p for p, o in self._tracked.items() if o == owner]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracked)

    def scope(self, owner: str) -> "TempScope":
        """Return a view of the registry bound to one job."""
        return TempScope(self, owner)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def download(
        self,
        url: str,
        prefix: str,
        extension: str,
        owner: Optional[str] = None,
    ) -> Path:
        """
        Stream a remote resource into a newly tracked path.

        On any failure the partial file is released and the error propagates,
        so callers never receive a tracked path with invalid content.
        """
        path = self.create_path(prefix, extension, owner=owner)
        try:
            if self._http_client is not None:
                await self._stream_to(self._http_client, url, path)
            else:
                async with httpx.AsyncClient(
                    follow_redirects=True,
                    timeout=httpx.Timeout(self._request_timeout, connect=30.0),
                ) as client:
                    await self._stream_to(client, url, path)
        except BaseException:
            self.release(path)
            raise

        logger.debug(f"Downloaded {url} -> {path.name} ({path.stat().st_size} bytes)")
        return path

    @staticmethod
    async def _stream_to(client: httpx.AsyncClient, url: str, path: Path) -> None:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            f = await asyncio.to_thread(open, path, "wb")
            try:
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    await asyncio.to_thread(f.write, chunk)
            finally:
                await asyncio.to_thread(f.close)

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete temporary file {path}: {e}")


class TempScope:
    """Job-bound facade over TempResourceManager.

    Everything created through a scope is owned by its job, and
    release_all() only touches that job's files.
    """

    def __init__(self, manager: TempResourceManager, owner: str):
        self.manager = manager
        self.owner = owner

    def create_path(self, prefix: str, extension: str) -> Path:
        return self.manager.create_path(prefix, extension, owner=self.owner)

    async def download(self, url: str, prefix: str, extension: str) -> Path:
        return await self.manager.download(url, prefix, extension, owner=self.owner)

    def track(self, path: str | Path) -> Path:
        return self.manager.track(path, owner=self.owner)

    def release(self, path: str | Path) -> None:
        self.manager.release(path)

    def release_all(self) -> int:
        return self.manager.release_all(owner=self.owner)

    def tracked_paths(self) -> list[Path]:
        return self.manager.tracked_paths(owner=self.owner)


_temp_manager: TempResourceManager | None = None


def get_temp_manager() -> TempResourceManager:
    """Return the process-wide TempResourceManager, creating it on first call."""
    global _temp_manager
    if _temp_manager is None:
        _temp_manager = TempResourceManager()
    return _temp_manager
