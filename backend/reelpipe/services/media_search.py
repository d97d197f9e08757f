"""Stock-media search clients (Pexels, Pixabay).

Video assets are chosen for b-roll and talking-head scenes, photos for
static-image and overlay scenes. Portrait assets are preferred since the
output is a vertical reel.

Usage:
    search = FallbackMediaSearch([PexelsMediaSearch(key), PixabayMediaSearch(key)])
    media = await search.search(["city skyline", "night"], VisualType.B_ROLL)
"""

import logging
from typing import Optional, Sequence

import httpx

from reelpipe.orchestrator.policy import ServiceError, classify, ErrorKind
from reelpipe.schemas.timeline import VisualType
from reelpipe.services.base import MediaResult, MediaSearch

logger = logging.getLogger(__name__)

VIDEO_VISUAL_TYPES = {VisualType.B_ROLL, VisualType.TALKING_HEAD}

_MAX_QUERY_KEYWORDS = 3
_PER_PAGE = 10
_TARGET_WIDTH = 1080


def wants_video(visual_type: VisualType) -> bool:
    return visual_type in VIDEO_VISUAL_TYPES


def candidate_queries(keywords: Sequence[str]) -> list[str]:
    """Queries to try in order: the leading keywords together, then each alone."""
    cleaned = [kw.strip() for kw in keywords if kw and kw.strip()]
    if not cleaned:
        return []
    queries = [" ".join(cleaned[:_MAX_QUERY_KEYWORDS])]
    for kw in cleaned[:_MAX_QUERY_KEYWORDS]:
        if kw not in queries:
            queries.append(kw)
    return queries


def _is_portrait(width: Optional[int], height: Optional[int]) -> bool:
    return bool(width and height and height > width)


def _rank(result: MediaResult) -> tuple[bool, int]:
    # Portrait first, then closest to the target width without going far above it
    width = result.width or 0
    return (_is_portrait(result.width, result.height), -abs(width - _TARGET_WIDTH))


class _HttpMediaSearch(MediaSearch):
    source = ""

    def __init__(self, api_key: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        if not api_key:
            raise ValueError(f"{type(self).__name__} requires an API key")
        self.api_key = api_key
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self._timeout, connect=10.0),
            )
        return self._client

    async def search(self, keywords: list[str], visual_type: VisualType) -> MediaResult:
        queries = candidate_queries(keywords)
        if not queries:
            raise ServiceError(f"No keywords to search {self.source} with")

        for query in queries:
            if wants_video(visual_type):
                results = await self._search_videos(query)
            else:
                results = await self._search_images(query)
            if results:
                best = max(results, key=_rank)
                logger.debug(f"{self.source}: '{query}' -> {best.kind} {best.width}x{best.height}")
                return best
            logger.debug(f"{self.source}: no results for '{query}'")

        raise ServiceError(
            f"No {self.source} {'video' if wants_video(visual_type) else 'image'} found for {queries[0]!r}"
        )

    async def _search_videos(self, query: str) -> list[MediaResult]:
        raise NotImplementedError

    async def _search_images(self, query: str) -> list[MediaResult]:
        raise NotImplementedError

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class PexelsMediaSearch(_HttpMediaSearch):
    """Pexels videos/photos search API."""

    source = "pexels"
    VIDEO_URL = "https://api.pexels.com/videos/search"
    PHOTO_URL = "https://api.pexels.com/v1/search"

    def _headers(self) -> dict:
        return {"Authorization": self.api_key}

    async def _search_videos(self, query: str) -> list[MediaResult]:
        response = await self.client.get(
            self.VIDEO_URL,
            params={"query": query, "per_page": _PER_PAGE, "orientation": "portrait"},
            headers=self._headers(),
        )
        response.raise_for_status()
        results = []
        for video in response.json().get("videos", []):
            files = [
                f for f in video.get("video_files", [])
                if f.get("link") and f.get("file_type", "video/mp4") == "video/mp4"
            ]
            if not files:
                continue
            candidates = [
                MediaResult(url=f["link"], kind="video", width=f.get("width"), height=f.get("height"), source=self.source)
                for f in files
            ]
            results.append(max(candidates, key=_rank))
        return results

    async def _search_images(self, query: str) -> list[MediaResult]:
        response = await self.client.get(
            self.PHOTO_URL,
            params={"query": query, "per_page": _PER_PAGE, "orientation": "portrait"},
            headers=self._headers(),
        )
        response.raise_for_status()
        results = []
        for photo in response.json().get("photos", []):
            src = photo.get("src", {})
            url = src.get("portrait") or src.get("large2x") or src.get("original")
            if url:
                results.append(MediaResult(
                    url=url, kind="image",
                    width=photo.get("width"), height=photo.get("height"),
                    source=self.source,
                ))
        return results


class PixabayMediaSearch(_HttpMediaSearch):
    """Pixabay videos/images search API."""

    source = "pixabay"
    VIDEO_URL = "https://pixabay.com/api/videos/"
    IMAGE_URL = "https://pixabay.com/api/"

    async def _search_videos(self, query: str) -> list[MediaResult]:
        response = await self.client.get(
            self.VIDEO_URL,
            params={"key": self.api_key, "q": query[:100], "per_page": _PER_PAGE, "safesearch": "true"},
        )
        response.raise_for_status()
        results = []
        for hit in response.json().get("hits", []):
            renditions = hit.get("videos", {})
            for size in ("large", "medium", "small"):
                rendition = renditions.get(size) or {}
                if rendition.get("url"):
                    results.append(MediaResult(
                        url=rendition["url"], kind="video",
                        width=rendition.get("width"), height=rendition.get("height"),
                        source=self.source,
                    ))
                    break
        return results

    async def _search_images(self, query: str) -> list[MediaResult]:
        response = await self.client.get(
            self.IMAGE_URL,
            params={
                "key": self.api_key,
                "q": query[:100],
                "image_type": "photo",
                "orientation": "vertical",
                "per_page": _PER_PAGE,
                "safesearch": "true",
            },
        )
        response.raise_for_status()
        return [
            MediaResult(
                url=hit["largeImageURL"], kind="image",
                width=hit.get("imageWidth"), height=hit.get("imageHeight"),
                source=self.source,
            )
            for hit in response.json().get("hits", [])
            if hit.get("largeImageURL")
        ]


class FallbackMediaSearch(MediaSearch):
    """Try each provider in order; the first match wins.

    Transient errors from a provider propagate so the caller's retry
    policy can retry the whole lookup; a provider that simply has no
    match (or rejects the request) falls through to the next one.
    """

    def __init__(self, providers: Sequence[MediaSearch]):
        if not providers:
            raise ValueError("FallbackMediaSearch needs at least one provider")
        self.providers = list(providers)

    async def search(self, keywords: list[str], visual_type: VisualType) -> MediaResult:
        last_error: Optional[Exception] = None
        for provider in self.providers:
            try:
                return await provider.search(keywords, visual_type)
            except Exception as e:
                if classify(e) is ErrorKind.TRANSIENT and provider is self.providers[-1]:
                    raise
                logger.info(f"{type(provider).__name__} failed for {keywords[:3]}: {e}; trying next provider")
                last_error = e
        raise ServiceError(f"No stock media found for {keywords[:3]}") from last_error
