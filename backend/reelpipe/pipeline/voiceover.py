"""GenerateVoiceover stage: narration audio and its word-level captions."""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

from reelpipe.orchestrator.policy import ErrorPolicy, ServiceError
from reelpipe.services.base import MediaEncoder, SpeechSynthesizer, Transcriber
from reelpipe.services.captions import write_captions
from reelpipe.services.temp_files import TempScope

logger = logging.getLogger(__name__)

_AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a", ".aac", ".ogg"}


@dataclass(frozen=True)
class Voiceover:
    path: Path
    duration: float
    captions_path: Optional[Path] = None


def audio_extension(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return suffix if suffix in _AUDIO_EXTENSIONS else ".mp3"


async def generate_voiceover(
    synthesizer: SpeechSynthesizer,
    encoder: MediaEncoder,
    policy: ErrorPolicy,
    scope: TempScope,
    script_text: str,
    voice_id: str,
    *,
    tone: str = "professional",
    transcriber: Optional[Transcriber] = None,
) -> Voiceover:
    """Synthesize the narration, download it and measure its length.

    With a transcriber, the narration is also transcribed and written as a
    tracked ASS caption file in the tone's style.
    """
    audio_url = await policy.call(
        "Voiceover synthesis", synthesizer.synthesize, script_text, voice_id, tone=tone
    )
    path = await policy.call(
        "Voiceover download", scope.download, audio_url, "voiceover", audio_extension(audio_url)
    )
    duration = await policy.call("Voiceover duration", encoder.probe_duration, path)
    if duration <= 0:
        raise ServiceError(f"Voiceover audio has no duration ({duration})")
    logger.info(f"Voiceover ready: {path.name} ({duration:.1f}s)")

    if transcriber is None:
        return Voiceover(path=path, duration=duration)

    segments = await policy.call("Caption transcription", transcriber.transcribe, path)
    captions_path = await write_captions(scope.create_path("captions", ".ass"), segments, tone)
    logger.info(f"Captions ready: {captions_path.name} ({len(segments)} segments)")
    return Voiceover(path=path, duration=duration, captions_path=captions_path)
