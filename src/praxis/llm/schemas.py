"""
Named JSON schemas for the structured outputs requested at each orchestrator stage.

Every schema is a closed object (``additionalProperties: false``) with an explicit ``required`` list.
Field names are read verbatim by the prompts and by the final-answer synthesis, so they must not be
renamed.
"""

import logging
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.llm.errors import StructuredOutputError

logger = logging.getLogger(__name__)

_JSON_TYPES: Dict[str, tuple] = {
    "object": (dict,),
    "array": (list,),
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "null": (type(None),),
}


class StructuredOutputSchema(BaseModel):
    """A named schema the LLM response must conform to."""

    name: str
    description: str = ""
    schema_: Dict[str, Any] = Field(..., alias="schema")
    strict: bool = True

    model_config = {"populate_by_name": True}

    @property
    def required(self) -> List[str]:
        """Top-level required field names."""
        return list(self.schema_.get("required", []))

    def validate_data(self, data: Any, raw_response: str = "") -> Dict[str, Any]:
        """
        Check *data* against the schema and return it.

        Raises
        ------
        StructuredOutputError
            If a required field is missing or a value has the wrong JSON type.
        """
        problems = _check(self.schema_, data, "$")
        if problems:
            logger.debug("Schema '%s' rejected response: %s", self.name, problems)
            raise StructuredOutputError(
                f"Response does not match schema '{self.name}': {'; '.join(problems)}",
                schema_name=self.name,
                raw_response=raw_response,
            )
        return data


def _check(schema: Mapping[str, Any], value: Any, path: str) -> List[str]:
    problems: List[str] = []
    expected = schema.get("type")
    if isinstance(expected, str) and expected in _JSON_TYPES:
        # bool is an int subclass; keep them apart
        if expected in ("integer", "number") and isinstance(value, bool):
            return [f"{path}: expected {expected}, got boolean"]
        if not isinstance(value, _JSON_TYPES[expected]):
            return [f"{path}: expected {expected}, got {type(value).__name__}"]

    if "enum" in schema and value not in schema["enum"]:
        problems.append(f"{path}: {value!r} is not one of {schema['enum']}")

    if isinstance(value, dict):
        for key in schema.get("required", []):
            if key not in value or value[key] is None:
                problems.append(f"{path}: missing required field '{key}'")
        for key, sub_schema in schema.get("properties", {}).items():
            if key in value and value[key] is not None:
                problems.extend(_check(sub_schema, value[key], f"{path}.{key}"))
    elif isinstance(value, list) and "items" in schema:
        for idx, item in enumerate(value):
            problems.extend(_check(schema["items"], item, f"{path}[{idx}]"))
    return problems


# ---------------------------------------------------------------------------
# Stage schemas
# ---------------------------------------------------------------------------
INTENT_ANALYSIS_SCHEMA = StructuredOutputSchema(
    name="intent_analysis",
    description="Analyze user intent and determine next action",
    schema={
        "type": "object",
        "properties": {
            "intent_type": {
                "type": "string",
                "enum": ["tool_call", "other"],
                "description": "Type of intent detected",
            },
            "content": {"type": "string", "description": "Content to be stored or processed"},
            "tool": {"type": "string", "description": "Name of the tool to be called, if any"},
            "params": {
                "type": "object",
                "description": "Parameters for the tool call",
                "additionalProperties": False,
            },
            "userMessage": {
                "type": "string",
                "description": "Message to display to the user about what is being done",
            },
        },
        "required": ["intent_type"],
        "additionalProperties": False,
    },
)

PLAN_SCHEMA = StructuredOutputSchema(
    name="plan",
    description="Action plan for completing user request",
    schema={
        "type": "object",
        "properties": {
            "thinking": {
                "type": "string",
                "description": "1-3 sentences of inner thoughts about the task",
            },
            "steps": {
                "type": "array",
                "description": "List of steps to take",
                "items": {
                    "type": "object",
                    "properties": {
                        "tool": {
                            "type": "string",
                            "description": "Exact name of the tool from available tools",
                        },
                        "note": {
                            "type": "string",
                            "description": "Brief description of how to use the tool",
                        },
                    },
                    "required": ["tool", "note"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["thinking", "steps"],
        "additionalProperties": False,
    },
)

IMAGE_PREVIEW_SCHEMA = StructuredOutputSchema(
    name="image_preview",
    description="Brief description of image content",
    schema={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Filename with extension"},
            "preview": {
                "type": "string",
                "description": "Concise description of the image content",
            },
        },
        "required": ["name", "preview"],
        "additionalProperties": False,
    },
)

IMAGE_CONTEXT_SCHEMA = StructuredOutputSchema(
    name="image_context",
    description="Contextual information for images in article",
    schema={
        "type": "object",
        "properties": {
            "images": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Filename with extension"},
                        "context": {
                            "type": "string",
                            "description": "1-3 detailed sentences of context related to this image",
                        },
                    },
                    "required": ["name", "context"],
                    "additionalProperties": False,
                },
            }
        },
        "required": ["images"],
        "additionalProperties": False,
    },
)


def decide_schema(tool_names: Iterable[str] | None = None) -> StructuredOutputSchema:
    """Return the decision schema, constraining ``tool`` to *tool_names* when given."""
    tool_field: Dict[str, Any] = {
        "type": "string",
        "description": "Precisely pointed out name of the tool to use",
    }
    if tool_names:
        tool_field["enum"] = sorted(tool_names)
    return StructuredOutputSchema(
        name="decide",
        description="Select next tool to execute",
        schema={
            "type": "object",
            "properties": {
                "_thoughts": {
                    "type": "string",
                    "description": "1-3 sentences about the tool you need to use",
                },
                "tool": tool_field,
            },
            "required": ["_thoughts", "tool"],
            "additionalProperties": False,
        },
    )


def tool_parameters_schema(tool_name: str, input_schema: Mapping[str, Any]) -> StructuredOutputSchema:
    """Merge a tool's input schema with the mandatory ``_thoughts`` reasoning field."""
    properties = {
        "_thoughts": {
            "type": "string",
            "description": "Internal thinking process about the values to add",
        },
        **dict(input_schema.get("properties", {})),
    }
    required = ["_thoughts", *[r for r in input_schema.get("required", []) if r != "_thoughts"]]
    return StructuredOutputSchema(
        name=f"tool-parameters-{tool_name}",
        description=f"Parameters for {tool_name} tool",
        schema={
            "type": "object",
            "properties": properties,
            "required": required,
            "additionalProperties": False,
        },
    )
