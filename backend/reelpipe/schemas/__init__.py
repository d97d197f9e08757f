"""Pydantic schemas shared by analysis and the pipeline stages."""

from reelpipe.schemas.captions import CaptionSegment, CaptionWord
from reelpipe.schemas.timeline import (
    SceneTimeline,
    TimelineScene,
    Transition,
    TransitionType,
    VisualType,
)

__all__ = [
    "CaptionSegment",
    "CaptionWord",
    "SceneTimeline",
    "TimelineScene",
    "Transition",
    "TransitionType",
    "VisualType",
]
