"""GatherVisuals stage: one stock asset per scene, plus optional music.

Scenes that share a keyword group and visual type share one search, and
assets that resolve to the same URL are downloaded once. Searches and
downloads run concurrently; the stage waits for every call to settle
before reporting a failure so no download can land after cleanup.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from reelpipe.orchestrator.policy import ErrorPolicy
from reelpipe.pipeline import settle
from reelpipe.schemas.timeline import SceneTimeline, TimelineScene, VisualType
from reelpipe.services import PipelineServices
from reelpipe.services.base import MediaResult
from reelpipe.services.temp_files import TempScope

logger = logging.getLogger(__name__)

KeywordGroup = tuple[tuple[str, ...], VisualType]


@dataclass
class VisualAssets:
    scene_paths: list[Path]
    media: list[MediaResult]
    music_path: Optional[Path] = None
    keywords: list[str] = field(default_factory=list)


def collect_keywords(timeline: SceneTimeline) -> list[str]:
    """Union of per-scene and overall keywords, duplicates removed."""
    return timeline.all_keywords()


def keyword_group(scene: TimelineScene, fallback: list[str]) -> KeywordGroup:
    """Search key for a scene: its own keywords, else the reel-wide set."""
    seen: set[str] = set()
    words = []
    for kw in scene.keywords or fallback or [scene.description]:
        kw = kw.strip().lower()
        if kw and kw not in seen:
            seen.add(kw)
            words.append(kw)
    return tuple(words), scene.visual_type


async def _find_music(
    services: PipelineServices,
    policy: ErrorPolicy,
    scope: TempScope,
    tone: str,
    mood: str,
) -> Optional[Path]:
    """Best-effort background music; any failure means narration only."""
    if services.music is None:
        return None
    try:
        url = await policy.call("Music search", services.music.find_track, tone, mood)
        if not url:
            return None
        return await policy.call("Music download", scope.download, url, "music", ".mp3")
    except Exception as e:
        logger.warning(f"Background music skipped: {type(e).__name__}: {e}")
        return None


async def gather_visuals(
    services: PipelineServices,
    policy: ErrorPolicy,
    scope: TempScope,
    timeline: SceneTimeline,
    *,
    tone: str = "professional",
) -> VisualAssets:
    keywords = collect_keywords(timeline)
    groups = [keyword_group(scene, keywords) for scene in timeline.scenes]
    distinct = list(dict.fromkeys(groups))
    logger.info(
        f"Gathering visuals: {len(keywords)} keywords, {len(distinct)} searches "
        f"for {len(timeline.scenes)} scenes"
    )

    found = await settle([
        policy.call(f"Stock media search {list(words[:3])}", services.media_search.search, list(words), visual_type)
        for words, visual_type in distinct
    ])
    media_by_group = dict(zip(distinct, found))
    media = [media_by_group[group] for group in groups]

    unique = list({m.url: m for m in media}.values())
    downloads = settle([
        policy.call("Stock media download", scope.download, m.url, f"{m.kind}-{m.source or 'stock'}", m.extension)
        for m in unique
    ])
    music = _find_music(services, policy, scope, tone, timeline.mood)
    paths, music_path = await settle([downloads, music])
    path_by_url = {m.url: p for m, p in zip(unique, paths)}

    logger.info(
        f"Visuals ready: {len(unique)} assets downloaded"
        f"{', with background music' if music_path else ''}"
    )
    return VisualAssets(
        scene_paths=[path_by_url[m.url] for m in media],
        media=media,
        music_path=music_path,
        keywords=keywords,
    )
