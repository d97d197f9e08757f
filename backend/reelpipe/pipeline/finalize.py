"""Finalize stage: thumbnail, durable upload and result URIs."""

import logging
from dataclasses import dataclass
from pathlib import Path

from reelpipe.orchestrator.policy import ErrorPolicy
from reelpipe.pipeline import settle
from reelpipe.services.base import MediaEncoder, ObjectStorage
from reelpipe.services.storage import reel_destination
from reelpipe.services.temp_files import TempScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizedVideo:
    video_uri: str
    thumbnail_uri: str


async def finalize_video(
    encoder: MediaEncoder,
    storage: ObjectStorage,
    policy: ErrorPolicy,
    scope: TempScope,
    video_path: Path,
    *,
    user_id: str,
    job_id: str,
) -> FinalizedVideo:
    """Extract the thumbnail, then upload video and thumbnail concurrently."""
    thumbnail_path = scope.create_path("thumbnail", ".jpg")
    await policy.call("Thumbnail extraction", encoder.extract_thumbnail, video_path, thumbnail_path)

    video_uri, thumbnail_uri = await settle([
        policy.call(
            "Video upload", storage.upload,
            video_path, reel_destination(user_id, job_id, "final.mp4"), "video/mp4",
        ),
        policy.call(
            "Thumbnail upload", storage.upload,
            thumbnail_path, reel_destination(user_id, job_id, "thumbnail.jpg"), "image/jpeg",
        ),
    ])
    logger.info(f"Uploaded reel -> {video_uri}")
    return FinalizedVideo(video_uri=video_uri, thumbnail_uri=thumbnail_uri)
