"""Tool registry — catalog of the tools the chat model may call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from turnengine.llm.intent import CAPABILITY_ENTITY_LOOKUP, CAPABILITY_IMAGE_GENERATION

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

FETCH_DOCUMENTS = "fetch_documents"
GENERATE_IMAGE = "generate_image"


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    The JSON schema is generated via model_json_schema() for the tool
    definitions sent to the model.
    """


class FetchEntitiesParams(ToolParams):
    ids: list[str] = Field(
        min_length=1,
        description="Ids of the documents, notes, conversations or reports to load",
    )
    reason: str = Field(default="", description="Why this material is needed")


class GenerateImageParams(ToolParams):
    prompt: str = Field(min_length=1, description="Detailed description of the image to generate")


@dataclass
class ToolDef:
    """A tool the model may call, gated by the capability that enables it."""

    name: str
    description: str
    capability: str
    params_model: type[ToolParams]


class ToolRegistry:
    """Tool definitions keyed by name.

    Execution is not done here: the resolver decides how each tool is
    carried out. The registry only supplies schemas.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def register(self, tool_def: ToolDef) -> None:
        self._tools[tool_def.name] = tool_def

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_schemas(self, capabilities: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Anthropic tool schemas, optionally only for *capabilities*."""
        wanted = set(capabilities) if capabilities is not None else None
        return [
            self._tool_schema(t)
            for t in self._tools.values()
            if wanted is None or t.capability in wanted
        ]

    @staticmethod
    def _tool_schema(tool_def: ToolDef) -> dict[str, Any]:
        return {
            "name": tool_def.name,
            "description": tool_def.description,
            "input_schema": tool_def.params_model.model_json_schema(),
        }


def default_registry(*, images: bool = True) -> ToolRegistry:
    """Registry with the engine's built-in tools.

    ``generate_image`` is only offered when an image backend is configured.
    """
    registry = ToolRegistry()
    registry.register(ToolDef(
        name=FETCH_DOCUMENTS,
        description=(
            "Load the full content of documents, notes, earlier conversations or "
            "reports by id when you need them to answer."
        ),
        capability=CAPABILITY_ENTITY_LOOKUP,
        params_model=FetchEntitiesParams,
    ))
    if not images:
        return registry
    registry.register(ToolDef(
        name=GENERATE_IMAGE,
        description=(
            "Generate an image from a text description. The image is delivered "
            "to the chat separately; reply with a short acknowledgement."
        ),
        capability=CAPABILITY_IMAGE_GENERATION,
        params_model=GenerateImageParams,
    ))
    return registry
