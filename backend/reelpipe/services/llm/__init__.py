"""Analysis model providers (Vertex AI and Ollama).

Usage:
    from reelpipe.services.llm import Prompt, get_adapter

    adapter = get_adapter("ollama/llama3.1")
    timeline = await adapter.generate(Prompt(user=text, system=rules), SceneTimeline)
"""

from reelpipe.services.llm.base import LLMAdapter, Prompt
from reelpipe.services.llm.registry import get_adapter, provider_for

__all__ = ["LLMAdapter", "Prompt", "get_adapter", "provider_for"]
