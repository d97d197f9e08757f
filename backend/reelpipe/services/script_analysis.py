"""Script analysis backed by the LLM adapter layer.

Asks the configured model for a SceneTimeline as structured output. The
prompt carries the duration windows so the model aims for a timeline the
Analyze stage will accept; the stage still validates the result.
"""

import logging

from pydantic import ValidationError

from reelpipe.config import PipelineConfig
from reelpipe.orchestrator.policy import InvalidInputError
from reelpipe.schemas.timeline import SceneTimeline, TransitionType, VisualType
from reelpipe.services.base import ScriptAnalyzer
from reelpipe.services.llm.base import LLMAdapter, Prompt

logger = logging.getLogger(__name__)

_TONE_DIRECTION = {
    "professional": "Formal pacing; prefer fade and crossfade transitions.",
    "casual": "Relaxed, friendly pacing; slide transitions suit progression.",
    "dramatic": "Punchy pacing with contrast; zoom, flash_white and glitch transitions fit high-energy moments.",
}

SYSTEM_PROMPT = """You are a video producer who turns short news scripts into
vertical short-form reels built entirely from stock footage and photos.

Rules:
1. The reel must total between {min_total:g} and {max_total:g} seconds.
2. Every scene lasts between {min_scene:g} and {max_scene:g} seconds.
3. Scenes are contiguous: each start_time equals the previous scene's
   start_time + duration. The first scene starts at 0.
4. Keywords must be concrete, searchable stock-library terms
   ("city skyline at night", "crowd cheering"), most specific first.
5. visual_type is one of: {visual_types}.
   Use static-image for still photos, overlay for text-heavy moments.
6. transition.type is one of: {transitions}.

Also return the overall mood and 3-6 keywords describing the reel as a whole."""


class LLMScriptAnalyzer(ScriptAnalyzer):
    """ScriptAnalyzer that prompts an LLMAdapter for a SceneTimeline."""

    def __init__(self, adapter: LLMAdapter, pipeline_config: PipelineConfig, temperature: float = 0.4):
        self._adapter = adapter
        self._config = pipeline_config
        self._temperature = temperature

    def _system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(
            min_total=self._config.min_total_duration,
            max_total=self._config.max_total_duration,
            min_scene=self._config.min_scene_duration,
            max_scene=self._config.max_scene_duration,
            visual_types=", ".join(v.value for v in VisualType),
            transitions=", ".join(t.value for t in TransitionType),
        )

    @staticmethod
    def _analysis_prompt(script_text: str, tone: str) -> str:
        direction = _TONE_DIRECTION.get(tone, _TONE_DIRECTION["professional"])
        return (
            f"Break this script into a scene timeline for a ~30 second reel in a {tone} tone.\n"
            f"{direction}\n\n"
            f'SCRIPT:\n"""\n{script_text}\n"""'
        )

    async def analyze(self, script_text: str, *, tone: str = "professional") -> SceneTimeline:
        try:
            timeline = await self._adapter.generate(
                Prompt(
                    user=self._analysis_prompt(script_text, tone),
                    system=self._system_prompt(),
                    temperature=self._temperature,
                ),
                SceneTimeline,
            )
        except ValidationError as e:
            raise InvalidInputError(
                f"Script analysis returned a malformed scene timeline ({e.error_count()} errors)"
            ) from e

        logger.info(
            f"Analysis produced {len(timeline.scenes)} scenes, "
            f"{timeline.total_duration:.1f}s total, mood={timeline.mood}"
        )
        return timeline
