"""Abstract interfaces for the external services a run depends on.

The orchestrator only talks to these contracts; concrete vendor clients
live in the sibling modules and are wired by reelpipe.services.build_services().
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel

from reelpipe.schemas.captions import CaptionSegment
from reelpipe.schemas.timeline import SceneTimeline, TimelineScene, VisualType


class MediaResult(BaseModel):
    """A stock asset selected for a scene."""

    url: str
    kind: Literal["video", "image"]
    width: Optional[int] = None
    height: Optional[int] = None
    source: str = ""

    @property
    def extension(self) -> str:
        return ".mp4" if self.kind == "video" else ".jpg"


class ScriptAnalyzer(ABC):
    """Turns script text into a scene timeline."""

    @abstractmethod
    async def analyze(self, script_text: str, *, tone: str = "professional") -> SceneTimeline:
        ...


class SpeechSynthesizer(ABC):
    """Text-to-speech service returning a downloadable audio URL."""

    @abstractmethod
    async def synthesize(self, script_text: str, voice_id: str, *, tone: str = "professional") -> str:
        ...


class Transcriber(ABC):
    """Speech recognition with word timings, used for captions."""

    @abstractmethod
    async def transcribe(self, audio_path: Path) -> list[CaptionSegment]:
        ...


class MediaSearch(ABC):
    """Stock-media search for one keyword group."""

    @abstractmethod
    async def search(self, keywords: list[str], visual_type: VisualType) -> MediaResult:
        """Return the best asset for the keywords.

        Raises:
            ServiceError: If nothing matches.
        """
        ...


class MusicSearch(ABC):
    """Background music lookup."""

    @abstractmethod
    async def find_track(self, tone: str, mood: str) -> Optional[str]:
        """Return a downloadable track URL, or None when nothing fits."""
        ...


class MediaEncoder(ABC):
    """Local media processing: probing, compositing and thumbnails."""

    @abstractmethod
    async def probe_duration(self, path: Path) -> float:
        ...

    @abstractmethod
    async def assemble(
        self,
        audio_path: Path,
        scene_paths: list[Path],
        scenes: list[TimelineScene],
        output_path: Path,
        *,
        music_path: Optional[Path] = None,
        subtitles_path: Optional[Path] = None,
    ) -> Path:
        """Composite scene media over the narration into output_path.

        subtitles_path, when given, is an ASS file burned into the video.
        """
        ...

    @abstractmethod
    async def extract_thumbnail(self, video_path: Path, output_path: Path) -> Path:
        ...


class ObjectStorage(ABC):
    """Durable storage for finished artifacts."""

    @abstractmethod
    async def upload(self, local_path: Path, destination: str, content_type: str) -> str:
        """Store a file and return its externally addressable URI."""
        ...
