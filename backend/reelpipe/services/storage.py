"""
Object storage for finished reels.

LocalObjectStorage keeps artifacts under a root directory laid out like
the bucket paths the API hands out:
- {root}/users/{user_id}/reels/{job_id}/final.mp4
- {root}/users/{user_id}/reels/{job_id}/thumbnail.jpg

and returns URIs under public_base_url, which the API serves with StaticFiles.
"""
import asyncio
import logging
import shutil
from pathlib import Path

from reelpipe.services.base import ObjectStorage

logger = logging.getLogger(__name__)


def reel_destination(user_id: str, job_id: str, filename: str) -> str:
    """Storage key for a reel artifact."""
    return f"users/{user_id}/reels/{job_id}/{filename}"


class LocalObjectStorage(ObjectStorage):
    """
    ObjectStorage backed by a local directory.

    Implements path traversal protection so a destination key can never
    write outside the storage root.
    """

    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def resolve(self, destination: str) -> Path:
        """
        Map a destination key to a path under the root.

        Raises:
            ValueError: If the key escapes the storage root
        """
        target = (self.root / destination.lstrip("/")).resolve()
        if not target.is_relative_to(self.root) or target == self.root:
            raise ValueError(f"Invalid storage destination: {destination}")
        return target

    async def upload(self, local_path: Path, destination: str, content_type: str) -> str:
        target = self.resolve(destination)
        source = Path(local_path)
        if not source.exists():
            raise FileNotFoundError(f"Upload source missing: {source}")

        def _copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)

        await asyncio.to_thread(_copy)
        uri = f"{self.public_base_url}/{target.relative_to(self.root).as_posix()}"
        logger.info(f"Stored {source.name} ({content_type}) -> {uri}")
        return uri
