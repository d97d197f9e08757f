"""External service clients used by pipeline stages.

build_services() wires the concrete clients from settings into the
PipelineServices bundle the orchestrator receives.
"""

import logging
from dataclasses import dataclass, fields
from typing import Optional

from reelpipe.services.base import (
    MediaEncoder,
    MediaResult,
    MediaSearch,
    MusicSearch,
    ObjectStorage,
    ScriptAnalyzer,
    SpeechSynthesizer,
    Transcriber,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    """Collaborators for one orchestrator. music and transcriber are optional."""

    analyzer: ScriptAnalyzer
    synthesizer: SpeechSynthesizer
    media_search: MediaSearch
    encoder: MediaEncoder
    storage: ObjectStorage
    music: Optional[MusicSearch] = None
    transcriber: Optional[Transcriber] = None

    async def aclose(self) -> None:
        """Close HTTP clients held by services that own one."""
        seen = set()
        for f in fields(self):
            service = getattr(self, f.name)
            candidates = [service] + list(getattr(service, "providers", []))
            for candidate in candidates:
                close = getattr(candidate, "close", None)
                if close is not None and id(candidate) not in seen:
                    seen.add(id(candidate))
                    await close()


def build_services(settings=None) -> PipelineServices:
    """Construct the production service bundle from settings.

    Raises:
        RuntimeError: If no stock media provider key is configured.
    """
    from reelpipe.services.captions import HttpTranscriber
    from reelpipe.services.encoder import FFmpegEncoder
    from reelpipe.services.llm import get_adapter
    from reelpipe.services.media_search import FallbackMediaSearch, PexelsMediaSearch, PixabayMediaSearch
    from reelpipe.services.music import JamendoMusicSearch
    from reelpipe.services.script_analysis import LLMScriptAnalyzer
    from reelpipe.services.speech import HttpSpeechSynthesizer
    from reelpipe.services.storage import LocalObjectStorage

    if settings is None:
        from reelpipe.config import settings

    services = settings.services
    timeout = services.request_timeout

    providers: list[MediaSearch] = []
    if services.pexels_api_key:
        providers.append(PexelsMediaSearch(services.pexels_api_key, timeout=timeout))
    if services.pixabay_api_key:
        providers.append(PixabayMediaSearch(services.pixabay_api_key, timeout=timeout))
    if not providers:
        raise RuntimeError(
            "No stock media provider configured. Set REELPIPE_SERVICES__PEXELS_API_KEY "
            "and/or REELPIPE_SERVICES__PIXABAY_API_KEY."
        )

    music = None
    if services.jamendo_client_id:
        music = JamendoMusicSearch(services.jamendo_client_id, timeout=timeout)
    else:
        logger.info("No Jamendo client id configured; reels will have narration only")

    transcriber = None
    if services.transcription_api_key:
        transcriber = HttpTranscriber(
            services.transcription_api_key,
            base_url=services.transcription_url,
            model=services.transcription_model,
            timeout=timeout,
        )
    else:
        logger.info("No transcription API key configured; reels will have no captions")

    return PipelineServices(
        analyzer=LLMScriptAnalyzer(get_adapter(services.analysis_model, settings), settings.pipeline),
        synthesizer=HttpSpeechSynthesizer(services.tts_url, api_key=services.tts_api_key, timeout=timeout),
        media_search=FallbackMediaSearch(providers),
        encoder=FFmpegEncoder.from_settings(settings.pipeline),
        storage=LocalObjectStorage(settings.storage.output_dir, settings.storage.public_base_url),
        music=music,
        transcriber=transcriber,
    )


__all__ = [
    "MediaEncoder",
    "MediaResult",
    "MediaSearch",
    "MusicSearch",
    "ObjectStorage",
    "PipelineServices",
    "ScriptAnalyzer",
    "SpeechSynthesizer",
    "Transcriber",
    "build_services",
]
