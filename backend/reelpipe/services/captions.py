"""Word-level captions for the narration.

The voiceover is transcribed by an OpenAI-compatible speech-to-text
endpoint (``POST {base_url}/audio/transcriptions``, verbose_json) and the
transcript is rendered as an ASS subtitle file styled by tone:

- dramatic: one word at a time in large bold type, each with an animated entrance
- casual: up to three words, breaking at sentence ends and breath pauses
- professional: up to three words, breaking at sentence ends and at
  breath pauses once two words are shown

Every word carries a karaoke tag so it lights up in the highlight colour
while it is spoken.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from reelpipe.orchestrator.policy import ServiceError
from reelpipe.schemas.captions import CaptionSegment, CaptionWord
from reelpipe.services.base import Transcriber

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPTION_URL = "https://api.openai.com/v1"

# Caption canvas; libass scales it to the rendered frame
PLAY_RES = (1080, 1920)

_SENTENCE_END = re.compile(r"[.!?]$")
_BREATH_PAUSE = re.compile(r"[,;:]$")


@dataclass(frozen=True)
class CaptionStyle:
    font: str
    size: int
    outline: float
    primary: str
    outline_colour: str
    highlight: str
    margin_v: int
    bold: bool


# ASS colours are &HAABBGGRR
CAPTION_STYLES = {
    "professional": CaptionStyle("Arial", 58, 2.0, "&H00F0F0F0", "&H00222222", "&H00FFF000", 960, False),
    "casual": CaptionStyle("Verdana", 62, 2.5, "&H00FFE5CC", "&H00003300", "&H0000FF00", 880, False),
    "dramatic": CaptionStyle("Impact", 68, 3.5, "&H00FFFFFF", "&H00000000", "&H0000FFFF", 900, True),
}

# Cycled per word in dramatic captions
DRAMATIC_EFFECTS = (
    r"\t(0,100,\fscx120\fscy120)\t(100,200,\fscx100\fscy100)",
    r"\t(0,150,\frz20)\t(150,300,\frz0)",
    r"\t(0,100,\fscx120\fscy80)\t(100,200,\fscx100\fscy100)",
    r"\t(0,150,\blur5)\t(150,300,\blur0)",
    r"\fad(100,100)",
)


def spread_words(text: str, start: float, end: float) -> list[CaptionWord]:
    """Split a segment into words with evenly spaced timings."""
    words = text.split()
    if not words:
        return []
    step = (end - start) / len(words)
    return [
        CaptionWord(word=word, start=start + i * step, end=start + (i + 1) * step)
        for i, word in enumerate(words)
    ]


def parse_transcription(payload: Mapping[str, Any]) -> list[CaptionSegment]:
    """Convert a verbose_json transcription into caption segments.

    Word timestamps are taken from the top-level ``words`` list when the
    endpoint returns one, otherwise spread evenly across each segment. A
    response with text but no segments becomes a single segment.

    Raises:
        ServiceError: If the response has neither segments nor text, or a
            segment is malformed.
    """
    raw_segments = payload.get("segments") or []
    raw_words = payload.get("words") or []

    if not raw_segments:
        text = (payload.get("text") or "").strip()
        if not text:
            raise ServiceError("Transcription returned no segments or text")
        raw_segments = [{"text": text, "start": 0.0, "end": float(payload.get("duration") or 0.0)}]

    try:
        timed_words = [CaptionWord(word=w["word"].strip(), start=w["start"], end=w["end"]) for w in raw_words]
        segments = []
        for raw in raw_segments:
            text = (raw.get("text") or "").strip()
            start, end = float(raw["start"]), float(raw["end"])
            words = [w for w in timed_words if start <= w.start < end] or spread_words(text, start, end)
            segments.append(CaptionSegment(text=text, start=start, end=end, words=words))
    except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
        raise ServiceError(f"Transcription response is malformed: {e}") from e

    return [segment for segment in segments if segment.words]


def group_words(words: list[CaptionWord], tone: str) -> list[list[CaptionWord]]:
    """Split a segment's words into the groups shown on screen together."""
    groups: list[list[CaptionWord]] = []
    current: list[CaptionWord] = []
    for i, word in enumerate(words):
        current.append(word)
        sentence_end = bool(_SENTENCE_END.search(word.word))
        breath = bool(_BREATH_PAUSE.search(word.word))
        last = i == len(words) - 1

        if tone == "dramatic":
            flush = True
        elif tone == "casual":
            flush = len(current) >= 3 or sentence_end or breath or last
        else:
            flush = len(current) >= 3 or sentence_end or (breath and len(current) >= 2) or last

        if flush:
            groups.append(current)
            current = []
    return groups


def ass_timestamp(seconds: float) -> str:
    """Format seconds as an ASS h:mm:ss.cc timestamp."""
    centis = int(round(max(seconds, 0.0) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    secs, centis = divmod(centis, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"


def _karaoke(word: CaptionWord, highlight: str, effect: str = "") -> str:
    duration = round((word.end - word.start) * 100)
    return f"{{\\k{duration}\\c{highlight}{effect}}}{word.word}"


def build_ass(segments: list[CaptionSegment], tone: str = "professional") -> str:
    """Render caption segments as a complete ASS subtitle document."""
    style = CAPTION_STYLES.get(tone, CAPTION_STYLES["professional"])
    width, height = PLAY_RES
    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
        "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
        "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        f"Style: Default,{style.font},{style.size},{style.primary},&H000000FF,{style.outline_colour},"
        f"&H80000000,{int(style.bold)},0,0,0,100,100,0,0,1,{style.outline:g},0,8,10,10,{style.margin_v},1",
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]

    effect_index = 0
    for segment in segments:
        for group in group_words(segment.words, tone):
            if tone == "dramatic":
                text = _karaoke(group[0], style.highlight, DRAMATIC_EFFECTS[effect_index % len(DRAMATIC_EFFECTS)])
                effect_index += 1
            else:
                text = " ".join(_karaoke(word, style.highlight) for word in group)
            lines.append(
                f"Dialogue: 0,{ass_timestamp(group[0].start)},{ass_timestamp(group[-1].end)},"
                f"Default,,0,0,0,,{text}"
            )

    return "\n".join(lines) + "\n"


class HttpTranscriber(Transcriber):
    """Transcriber for an OpenAI-compatible /audio/transcriptions endpoint.

    Args:
        api_key: Bearer token.
        base_url: API root, e.g. https://api.openai.com/v1 or a local
            whisper server exposing the same route.
        model: Transcription model name.
        language: Spoken language hint.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_TRANSCRIPTION_URL,
        model: str = "whisper-1",
        language: str = "en",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.language = language
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout, connect=30.0),
            )
        return self._client

    async def transcribe(self, audio_path: Path) -> list[CaptionSegment]:
        audio_path = Path(audio_path)
        audio = await asyncio.to_thread(audio_path.read_bytes)

        logger.info(f"POST {self.base_url}/audio/transcriptions model={self.model} bytes={len(audio)}")
        response = await self.client.post(
            "/audio/transcriptions",
            files={"file": (audio_path.name, audio, "application/octet-stream")},
            data={
                "model": self.model,
                "language": self.language,
                "response_format": "verbose_json",
                "timestamp_granularities[]": ["segment", "word"],
            },
        )
        if response.status_code == 401:
            raise ServiceError("Transcription API key is invalid or expired")
        response.raise_for_status()

        segments = parse_transcription(response.json())
        logger.debug(f"Transcribed {len(segments)} caption segments from {audio_path.name}")
        return segments

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


async def write_captions(path: Path, segments: list[CaptionSegment], tone: str) -> Path:
    """Write the ASS document for segments to path."""
    await asyncio.to_thread(Path(path).write_text, build_ass(segments, tone), "utf-8")
    return path
