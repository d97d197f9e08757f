"""Ollama provider for script analysis.

Uses format='json' plus a schema description in the system prompt rather
than format=<schema>, since hosted Ollama endpoints do not reliably
enforce JSON schema constraints.
"""

import json
import logging
from typing import Any, Optional, Type

from ollama import AsyncClient, ResponseError

from reelpipe.orchestrator.policy import ServiceError, TransientServiceError
from reelpipe.services.llm.base import LLMAdapter, Prompt, SchemaT, parse_reply

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def schema_instruction(schema: Type[SchemaT]) -> str:
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "Respond with a single JSON object and nothing else (no markdown, no commentary). "
        f"It must conform to this JSON schema:\n{schema_json}"
    )


class OllamaAdapter(LLMAdapter):
    """Adapter for a local or hosted Ollama server.

    Args:
        model_id: Model id, with or without the "ollama/" routing prefix.
        base_url: Ollama server URL.
        api_key: Bearer token for hosted deployments.
        client: Preconfigured ollama.AsyncClient (mainly for tests).
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = DEFAULT_OLLAMA_URL,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.model_id = model_id
        self._model = model_id.removeprefix("ollama/")
        if client is None:
            headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
            client = AsyncClient(host=base_url, headers=headers)
        self._client = client

    async def generate(self, prompt: Prompt, schema: Type[SchemaT]) -> SchemaT:
        system = f"{prompt.system}\n\n{schema_instruction(schema)}".strip()
        try:
            response = await self._client.chat(
                model=self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt.user},
                ],
                format="json",
                options={"temperature": prompt.temperature},
                stream=False,
            )
        except ResponseError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransientServiceError(f"Ollama {self._model} unavailable ({e.status_code}): {e.error}") from e
            raise ServiceError(f"Ollama rejected the request ({e.status_code}): {e.error}") from e

        content = response.message.content or ""
        if not content.strip():
            raise ServiceError(f"Ollama {self._model} returned an empty reply")
        logger.debug(f"Ollama {self._model} replied with {len(content)} chars")
        return parse_reply(content, schema)
