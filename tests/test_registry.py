"""Tests for the tool registry."""

import pytest
from pydantic import ValidationError

from turnengine.llm.intent import CAPABILITY_ENTITY_LOOKUP, CAPABILITY_IMAGE_GENERATION
from turnengine.tools.registry import (
    FETCH_DOCUMENTS,
    GENERATE_IMAGE,
    FetchEntitiesParams,
    GenerateImageParams,
    ToolDef,
    ToolParams,
    ToolRegistry,
    default_registry,
)

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


class EchoParams(ToolParams):
    message: str


# -- Registration ------------------------------------------------------------


def test_register_and_get(reg: ToolRegistry) -> None:
    reg.register(ToolDef("echo", "Echo", "test", EchoParams))
    assert reg.tool_names == ["echo"]
    assert reg.get("echo").description == "Echo"
    assert reg.get("missing") is None


def test_register_replaces_same_name(reg: ToolRegistry) -> None:
    reg.register(ToolDef("echo", "First", "test", EchoParams))
    reg.register(ToolDef("echo", "Second", "test", EchoParams))
    assert reg.tool_names == ["echo"]
    assert reg.get("echo").description == "Second"


# -- Schemas -----------------------------------------------------------------


def test_schema_shape(reg: ToolRegistry) -> None:
    reg.register(ToolDef("echo", "Echo", "test", EchoParams))
    (schema,) = reg.get_schemas()
    assert schema["name"] == "echo"
    assert schema["description"] == "Echo"
    assert schema["input_schema"]["type"] == "object"
    assert "message" in schema["input_schema"]["properties"]
    assert schema["input_schema"]["required"] == ["message"]


def test_schemas_filtered_by_capability() -> None:
    reg = default_registry()
    names = [s["name"] for s in reg.get_schemas([CAPABILITY_ENTITY_LOOKUP])]
    assert names == [FETCH_DOCUMENTS]
    assert reg.get_schemas([]) == []


def test_default_registry_capabilities() -> None:
    reg = default_registry()
    assert reg.get(FETCH_DOCUMENTS).capability == CAPABILITY_ENTITY_LOOKUP
    assert reg.get(GENERATE_IMAGE).capability == CAPABILITY_IMAGE_GENERATION


def test_default_registry_without_images() -> None:
    reg = default_registry(images=False)
    assert reg.tool_names == [FETCH_DOCUMENTS]
    assert reg.get(GENERATE_IMAGE) is None


# -- Params ------------------------------------------------------------------


def test_fetch_params_require_ids() -> None:
    with pytest.raises(ValidationError):
        FetchEntitiesParams.model_validate({"ids": []})
    params = FetchEntitiesParams.model_validate({"ids": ["doc_1"]})
    assert params.reason == ""


def test_image_params_require_prompt() -> None:
    with pytest.raises(ValidationError):
        GenerateImageParams.model_validate({"prompt": ""})
