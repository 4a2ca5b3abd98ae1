"""Tests for JSON extraction and structured-output schema validation."""

import pytest

from praxis.llm.errors import StructuredOutputError
from praxis.llm.extraction import (
    JSONExtractionError,
    extract_json_object,
)
from praxis.llm.schemas import (
    INTENT_ANALYSIS_SCHEMA,
    PLAN_SCHEMA,
    decide_schema,
    tool_parameters_schema,
)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
@pytest.mark.parametrize(
    "text",
    [
        '{"tool": "echo"}',
        '<json>{"tool": "echo"}</json>',
        'Sure! <JSON>\n{"tool": "echo"}\n</JSON> Hope that helps.',
        '```json\n{"tool": "echo"}\n```',
        'I will call {"tool": "echo"} now.',
    ],
)
def test_extract_json_object(text: str) -> None:
    assert extract_json_object(text) == {"tool": "echo"}


def test_extract_handles_braces_inside_strings() -> None:
    text = 'Result: {"note": "use {curly} and \\"quotes\\"", "n": {"a": 1}} trailing'
    assert extract_json_object(text) == {"note": 'use {curly} and "quotes"', "n": {"a": 1}}


def test_extract_strips_control_characters() -> None:
    assert extract_json_object('{"a":\x00 1}') == {"a": 1}


@pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]", '{"a": 1'])
def test_extract_rejects(text: str) -> None:
    with pytest.raises(JSONExtractionError):
        extract_json_object(text)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def test_plan_schema_accepts_valid_plan() -> None:
    data = {"thinking": "Easy.", "steps": [{"tool": "echo", "note": "say hi"}]}
    assert PLAN_SCHEMA.validate_data(data) is data


@pytest.mark.parametrize(
    "data, problem",
    [
        ({"steps": []}, "missing required field 'thinking'"),
        ({"thinking": None, "steps": []}, "missing required field 'thinking'"),
        ({"thinking": "x", "steps": "echo"}, "expected array"),
        ({"thinking": "x", "steps": [{"tool": "echo"}]}, "$.steps[0]: missing required field 'note'"),
        ("not an object", "expected object"),
    ],
)
def test_plan_schema_rejects(data: object, problem: str) -> None:
    with pytest.raises(StructuredOutputError) as info:
        PLAN_SCHEMA.validate_data(data, raw_response="raw")
    assert problem in str(info.value)
    assert info.value.schema_name == "plan"
    assert info.value.raw_response == "raw"
    assert info.value.retriable is False


def test_enum_is_enforced() -> None:
    with pytest.raises(StructuredOutputError):
        INTENT_ANALYSIS_SCHEMA.validate_data({"intent_type": "maybe"})


def test_boolean_is_not_an_integer() -> None:
    schema = tool_parameters_schema("t", {"properties": {"n": {"type": "integer"}}})
    with pytest.raises(StructuredOutputError):
        schema.validate_data({"_thoughts": "x", "n": True})
    assert schema.validate_data({"_thoughts": "x", "n": 3})


def test_decide_schema_constrains_tool_names() -> None:
    schema = decide_schema(["web_fetch", "echo"])
    assert schema.schema_["properties"]["tool"]["enum"] == ["echo", "web_fetch"]
    assert schema.required == ["_thoughts", "tool"]
    assert "enum" not in decide_schema().schema_["properties"]["tool"]


def test_tool_parameters_schema_adds_thoughts_first() -> None:
    schema = tool_parameters_schema(
        "echo",
        {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )
    assert schema.name == "tool-parameters-echo"
    assert list(schema.schema_["properties"]) == ["_thoughts", "text"]
    assert schema.required == ["_thoughts", "text"]
    assert schema.schema_["additionalProperties"] is False
