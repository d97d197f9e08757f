"""Pydantic schemas for the scene timeline produced by script analysis.

The same models serve as the structured-output schema handed to the LLM
and as the artifact passed between pipeline stages.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field


class VisualType(str, Enum):
    B_ROLL = "b-roll"
    STATIC_IMAGE = "static-image"
    TALKING_HEAD = "talking-head"
    OVERLAY = "overlay"


class TransitionType(str, Enum):
    FADE = "fade"
    CROSSFADE = "crossfade"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    SLIDE_LEFT = "slide_left"
    SLIDE_RIGHT = "slide_right"
    PUSH_LEFT = "push_left"
    PUSH_RIGHT = "push_right"
    BLUR = "blur"
    FLASH_WHITE = "flash_white"
    GLITCH = "glitch"
    NONE = "none"


# Short names some models answer with
_VISUAL_TYPE_ALIASES = {
    "broll": "b-roll",
    "b_roll": "b-roll",
    "static": "static-image",
    "image": "static-image",
    "talking": "talking-head",
}


def _normalize_visual_type(v: Any) -> Any:
    if isinstance(v, str):
        key = v.strip().lower()
        return _VISUAL_TYPE_ALIASES.get(key, key)
    return v


def _coerce_to_list(v: Any) -> Any:
    """Split comma-separated strings into a keyword list.

    Some LLM providers return a single string where an array was declared.
    """
    if isinstance(v, str):
        return [part.strip() for part in v.split(",") if part.strip()]
    return v


KeywordList = Annotated[list[str], BeforeValidator(_coerce_to_list)]


class Transition(BaseModel):
    """Transition from this scene into the next one."""

    type: TransitionType = Field(
        default=TransitionType.FADE,
        description="Transition style into the following scene",
    )
    duration: float = Field(
        default=0.5,
        ge=0.0,
        description="Transition length in seconds",
    )


class TimelineScene(BaseModel):
    """One scene of the reel with timing and stock-media search hints."""

    start_time: float = Field(
        ge=0.0,
        description="Scene start in seconds from the beginning of the reel",
    )
    duration: float = Field(
        gt=0.0,
        description="Scene length in seconds",
    )
    description: str = Field(
        description="What the viewer sees during this scene",
    )
    keywords: KeywordList = Field(
        default_factory=list,
        description="Searchable stock-footage keywords, most specific first",
    )
    mood: str = Field(
        default="neutral",
        description="Emotional tone of the scene (e.g., 'energetic', 'somber')",
    )
    visual_type: Annotated[VisualType, BeforeValidator(_normalize_visual_type)] = Field(
        default=VisualType.B_ROLL,
        description="Kind of visual: b-roll, static-image, talking-head or overlay",
    )
    transition: Optional[Transition] = Field(
        default=None,
        description="Optional transition into the next scene",
    )

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class SceneTimeline(BaseModel):
    """Ordered scene breakdown of a script."""

    main_topic: str = Field(
        default="",
        description="One-line summary of what the script is about",
    )
    mood: str = Field(
        default="neutral",
        description="Overall mood of the reel, used to pick background music",
    )
    keywords: KeywordList = Field(
        default_factory=list,
        description="Keywords describing the reel as a whole",
    )
    scenes: list[TimelineScene] = Field(
        description="Contiguous scenes in playback order",
    )

    @property
    def total_duration(self) -> float:
        return sum(scene.duration for scene in self.scenes)

    def all_keywords(self) -> list[str]:
        """Union of per-scene and overall keywords, first occurrence kept."""
        seen: set[str] = set()
        merged: list[str] = []
        for keyword in [kw for scene in self.scenes for kw in scene.keywords] + list(self.keywords):
            normalized = keyword.strip().lower()
            if normalized and normalized not in seen:
                seen.add(normalized)
                merged.append(normalized)
        return merged
