"""Vertex AI provider for script analysis (google-genai SDK).

Authentication uses Application Default Credentials; a .env file may
point GOOGLE_APPLICATION_CREDENTIALS at a service account key. Clients
are cached per (project, location) so repeated calls are cheap.

google-genai ServerError and ClientError propagate unchanged; the
ErrorPolicy classifies them (5xx and 429 are retried).
"""

import logging
import os
from typing import Optional, Type

from dotenv import load_dotenv
from google import genai
from google.genai import types as genai_types

from reelpipe.orchestrator.policy import ServiceError
from reelpipe.services.llm.base import LLMAdapter, Prompt, SchemaT, parse_reply

logger = logging.getLogger(__name__)

load_dotenv()

# Preview models only served from the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
}

_clients: dict[tuple[str, str], genai.Client] = {}


def location_for_model(model_id: str, default_location: str) -> str:
    return "global" if model_id in GLOBAL_REGION_MODELS else default_location


def get_vertex_client(project_id: str, location: str) -> genai.Client:
    key = (project_id, location)
    if key not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        os.environ["GOOGLE_CLOUD_PROJECT"] = project_id
        _clients[key] = genai.Client(vertexai=True, project=project_id, location=location)
        logger.debug(f"Created Vertex AI client for {project_id} in {location}")
    return _clients[key]


class VertexAIAdapter(LLMAdapter):
    """Adapter for Gemini models on Vertex AI with response_schema output.

    Raises:
        RuntimeError: At construction if no Google Cloud project is configured.
    """

    def __init__(self, model_id: str, project_id: Optional[str], location: str = "us-central1") -> None:
        if not project_id:
            raise RuntimeError(
                "google_cloud.project_id is not set. Set REELPIPE_GOOGLE_CLOUD__PROJECT_ID "
                "or choose an ollama/* analysis model."
            )
        self.model_id = model_id
        self.project_id = project_id
        self.location = location_for_model(model_id, location)

    async def generate(self, prompt: Prompt, schema: Type[SchemaT]) -> SchemaT:
        client = get_vertex_client(self.project_id, self.location)
        config = genai_types.GenerateContentConfig(
            temperature=prompt.temperature,
            response_mime_type="application/json",
            response_schema=schema,
            system_instruction=prompt.system or None,
        )
        response = await client.aio.models.generate_content(
            model=self.model_id,
            contents=prompt.user,
            config=config,
        )
        if not response.text:
            raise ServiceError(f"{self.model_id} returned no text (possibly blocked by safety filters)")
        return parse_reply(response.text, schema)
