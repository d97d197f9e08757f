"""Background music lookup via the Jamendo tracks API."""

import logging
import random
from typing import Optional

import httpx

from reelpipe.services.base import MusicSearch

logger = logging.getLogger(__name__)

TONE_TAGS = {
    "professional": ["corporate", "instrumental", "background"],
    "casual": ["upbeat", "instrumental", "positive"],
    "dramatic": ["dramatic", "instrumental", "epic"],
}

# Tracks outside this window are too short to cover a reel or too long to be worth fetching
MIN_TRACK_SECONDS = 30
MAX_TRACK_SECONDS = 300


def tag_strategies(tone: str, mood: str) -> list[list[str]]:
    """Tag sets to search with, most specific first."""
    strategies = [TONE_TAGS.get(tone, ["instrumental", "background"])]
    mood = (mood or "").strip().lower()
    if mood and mood != "neutral":
        strategies.append([mood, "instrumental"])
    strategies.append(["instrumental", "background"])
    return strategies


class JamendoMusicSearch(MusicSearch):
    """Picks an instrumental Creative Commons track for a tone/mood."""

    TRACKS_URL = "https://api.jamendo.com/v3.0/tracks/"

    def __init__(self, client_id: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        if not client_id:
            raise ValueError("JamendoMusicSearch requires a client id")
        self.client_id = client_id
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=self._timeout)
        return self._client

    async def find_track(self, tone: str, mood: str) -> Optional[str]:
        for tags in tag_strategies(tone, mood):
            url = await self._search(tags)
            if url:
                return url
        logger.info(f"Music: nothing found for tone={tone} mood={mood}")
        return None

    async def _search(self, tags: list[str]) -> Optional[str]:
        response = await self.client.get(
            self.TRACKS_URL,
            params={
                "client_id": self.client_id,
                "format": "json",
                "limit": 100,
                "include": "musicinfo",
                "order": "popularity_total",
                "audioformat": "mp32",
                "tags": "+".join(tags),
            },
        )
        response.raise_for_status()

        valid = [
            track for track in response.json().get("results", [])
            if (track.get("audiodownload") or track.get("audio"))
            and MIN_TRACK_SECONDS <= (track.get("duration") or 0) <= MAX_TRACK_SECONDS
        ]
        if not valid:
            logger.debug(f"Music: no usable tracks for tags {tags}")
            return None

        track = random.choice(valid[:10])
        logger.info(f"Music: '{track.get('name', '?')}' ({track.get('duration')}s) for tags {tags}")
        return track.get("audiodownload") or track["audio"]

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
