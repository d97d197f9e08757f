"""AssembleVideo stage: composite scenes and narration into one file."""

import logging
from pathlib import Path

from reelpipe.orchestrator.policy import ErrorPolicy
from reelpipe.pipeline.visuals import VisualAssets
from reelpipe.pipeline.voiceover import Voiceover
from reelpipe.schemas.timeline import SceneTimeline
from reelpipe.services.base import MediaEncoder
from reelpipe.services.temp_files import TempScope

logger = logging.getLogger(__name__)

# Narration noticeably longer than the timeline gets cut by the encoder
_DURATION_DRIFT_WARNING = 2.0


async def assemble_video(
    encoder: MediaEncoder,
    policy: ErrorPolicy,
    scope: TempScope,
    timeline: SceneTimeline,
    voiceover: Voiceover,
    visuals: VisualAssets,
) -> Path:
    drift = voiceover.duration - timeline.total_duration
    if abs(drift) > _DURATION_DRIFT_WARNING:
        logger.warning(
            f"Voiceover is {voiceover.duration:.1f}s but timeline is "
            f"{timeline.total_duration:.1f}s ({drift:+.1f}s)"
        )

    output_path = scope.create_path("reel", ".mp4")
    await policy.call(
        "Video assembly",
        encoder.assemble,
        voiceover.path,
        visuals.scene_paths,
        timeline.scenes,
        output_path,
        music_path=visuals.music_path,
        subtitles_path=voiceover.captions_path,
    )
    logger.info(f"Rendered {output_path.name}")
    return output_path
