"""Route an analysis model id to its provider adapter.

Model ids carry the provider as a prefix: ``ollama/llama3.1`` runs on an
Ollama server, anything else (``gemini-2.5-flash``) on Vertex AI.
"""

import logging

from reelpipe.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def provider_for(model_id: str) -> str:
    """Return "ollama" or "vertex" for a model id."""
    prefix, sep, _ = model_id.partition("/")
    return "ollama" if sep and prefix == "ollama" else "vertex"


def get_adapter(model_id: str, settings=None) -> LLMAdapter:
    """Build the adapter for model_id from the services and google_cloud settings.

    Raises:
        RuntimeError: If the routed provider is missing required configuration.
    """
    if settings is None:
        from reelpipe.config import settings

    if provider_for(model_id) == "ollama":
        from reelpipe.services.llm.ollama_adapter import DEFAULT_OLLAMA_URL, OllamaAdapter

        services = settings.services
        base_url = services.ollama_endpoint or DEFAULT_OLLAMA_URL
        logger.debug(f"Routing {model_id} to Ollama at {base_url}")
        return OllamaAdapter(model_id, base_url=base_url, api_key=services.ollama_api_key)

    from reelpipe.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug(f"Routing {model_id} to Vertex AI")
    return VertexAIAdapter(
        model_id,
        project_id=settings.google_cloud.project_id,
        location=settings.google_cloud.location,
    )
