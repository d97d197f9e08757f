"""Analyze stage: script text -> validated SceneTimeline.

The analyzer is asked for a timeline that fits the duration windows, but
its output is only trusted after validate_timeline() accepts it. Any
violation is an InvalidInputError: a bad generation, never retried.
"""

import logging
from dataclasses import dataclass

from reelpipe.orchestrator.policy import ErrorPolicy, InvalidInputError
from reelpipe.schemas.timeline import SceneTimeline
from reelpipe.services.base import ScriptAnalyzer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineLimits:
    """Acceptance windows for a generated timeline (seconds)."""

    min_total: float = 25.0
    max_total: float = 35.0
    min_scene: float = 2.0
    max_scene: float = 8.0
    continuity_tolerance: float = 0.1

    @classmethod
    def from_settings(cls, pipeline_config) -> "TimelineLimits":
        return cls(
            min_total=pipeline_config.min_total_duration,
            max_total=pipeline_config.max_total_duration,
            min_scene=pipeline_config.min_scene_duration,
            max_scene=pipeline_config.max_scene_duration,
            continuity_tolerance=pipeline_config.continuity_tolerance,
        )


def validate_timeline(timeline: SceneTimeline, limits: TimelineLimits = TimelineLimits()) -> None:
    """Check total duration, per-scene durations and scene continuity, in that order.

    Raises:
        InvalidInputError: Describing the first violated constraint.
    """
    scenes = timeline.scenes
    if not scenes:
        raise InvalidInputError("Scene timeline has no scenes")

    total = timeline.total_duration
    if not limits.min_total <= total <= limits.max_total:
        raise InvalidInputError(
            f"Total duration {total:.1f}s outside allowed window "
            f"({limits.min_total:g}-{limits.max_total:g}s)"
        )

    out_of_window = [
        f"scene {i} ({scene.duration:g}s)"
        for i, scene in enumerate(scenes, start=1)
        if not limits.min_scene <= scene.duration <= limits.max_scene
    ]
    if out_of_window:
        raise InvalidInputError(
            f"Scene durations outside allowed window ({limits.min_scene:g}-{limits.max_scene:g}s): "
            + ", ".join(out_of_window)
        )

    for i in range(1, len(scenes)):
        previous, scene = scenes[i - 1], scenes[i]
        gap = scene.start_time - previous.end_time
        if abs(gap) >= limits.continuity_tolerance:
            raise InvalidInputError(
                f"Scene continuity violated: scene {i + 1} starts at {scene.start_time:g}s "
                f"but scene {i} ends at {previous.end_time:g}s (gap {gap:+.2f}s)"
            )


async def analyze_script(
    analyzer: ScriptAnalyzer,
    policy: ErrorPolicy,
    script_text: str,
    *,
    tone: str = "professional",
    limits: TimelineLimits = TimelineLimits(),
) -> SceneTimeline:
    timeline = await policy.call("Script analysis", analyzer.analyze, script_text, tone=tone)
    validate_timeline(timeline, limits)
    logger.info(
        f"Timeline accepted: {len(timeline.scenes)} scenes, {timeline.total_duration:.1f}s, "
        f"topic={timeline.main_topic!r}"
    )
    return timeline
