"""Structured-output contract shared by the analysis model providers.

An adapter sends a prompt exactly once and parses the reply into the
caller's schema. Retrying belongs to the caller's ErrorPolicy, so
adapters translate provider faults into TransientServiceError or
ServiceError rather than looping themselves.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Type, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class Prompt:
    """One system/user exchange with its sampling temperature."""

    user: str
    system: str = ""
    temperature: float = 0.4


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence if the model added one."""
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    return stripped


def parse_reply(raw: str, schema: Type[SchemaT]) -> SchemaT:
    """Validate a JSON reply against schema.

    Raises:
        pydantic.ValidationError: If the reply is not valid JSON for schema.
    """
    return schema.model_validate_json(strip_code_fences(raw))


class LLMAdapter(ABC):
    """A model that answers a Prompt with an instance of a pydantic schema."""

    model_id: str

    @abstractmethod
    async def generate(self, prompt: Prompt, schema: Type[SchemaT]) -> SchemaT:
        """Send the prompt once and parse the reply.

        Raises:
            TransientServiceError: The provider is overloaded or rate limiting.
            ServiceError: The provider rejected the request or answered empty.
            pydantic.ValidationError: The reply does not match the schema.
        """
        ...
