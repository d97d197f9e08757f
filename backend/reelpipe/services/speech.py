"""Text-to-speech gateway client.

Posts the cleaned script to the synthesis service, which renders the
narration and answers with a URL the pipeline downloads.
"""

import logging
import re
from typing import Optional

import httpx

from reelpipe.orchestrator.policy import ServiceError, TransientServiceError
from reelpipe.services.base import SpeechSynthesizer

logger = logging.getLogger(__name__)

# Voice parameters per tone
VOICE_SETTINGS = {
    "professional": {"stability": 0.85, "similarity_boost": 0.75, "style": 0.15, "use_speaker_boost": True},
    "casual": {"stability": 0.65, "similarity_boost": 0.7, "style": 0.35, "use_speaker_boost": True},
    "dramatic": {"stability": 0.5, "similarity_boost": 0.8, "style": 0.6, "use_speaker_boost": True},
}

_SECTION_MARKER = re.compile(r"\[.*?\]\s*")
_BLANK_LINE = re.compile(r"^\s*[\r\n]", re.MULTILINE)


def clean_script(script: str) -> str:
    """Drop [HOOK]-style section markers and blank lines before narration."""
    return _BLANK_LINE.sub("", _SECTION_MARKER.sub("", script)).strip()


class HttpSpeechSynthesizer(SpeechSynthesizer):
    """SpeechSynthesizer talking JSON to a synthesis gateway.

    Request:  POST {base_url}/v1/synthesize {text, voice_id, voice_settings}
    Response: {"audio_url": "..."} (or {"status": "busy"} with HTTP 503)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"xi-api-key": self.api_key} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                follow_redirects=True,
                timeout=httpx.Timeout(self._timeout, connect=30.0),
            )
        return self._client

    async def synthesize(self, script_text: str, voice_id: str, *, tone: str = "professional") -> str:
        text = clean_script(script_text)
        if not text:
            raise ServiceError("Script is empty after removing section markers")

        logger.info(f"POST {self.base_url}/v1/synthesize voice={voice_id} tone={tone} chars={len(text)}")
        response = await self.client.post(
            "/v1/synthesize",
            json={
                "text": text,
                "voice_id": voice_id,
                "voice_settings": VOICE_SETTINGS.get(tone, VOICE_SETTINGS["professional"]),
            },
        )
        if response.status_code == 401:
            raise ServiceError("Text-to-speech API key is invalid or expired")
        response.raise_for_status()

        data = response.json()
        audio_url = data.get("audio_url")
        if not audio_url:
            if data.get("status") == "busy":
                raise TransientServiceError("Text-to-speech service is busy")
            raise ServiceError(f"Text-to-speech response had no audio_url: {sorted(data)}")
        return audio_url

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
