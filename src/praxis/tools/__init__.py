"""
Tool registry for Praxis.

This module provides the :class:`Tool` base class, a decorator to collect built-in tool classes and a
:class:`ToolRegistry` to look them up by name.  A tool declares its parameters as a pydantic model;
the registry derives the JSON input schema from it and renders tool definitions in the format the
active provider family expects.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from pathlib import Path
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Type,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from praxis.config import settings
from praxis.core.schema import (
    ToolResult,
    ToolRisk,
    ToolSpec,
)

logger = logging.getLogger(__name__)

ResultMode = Literal["auto", "inline", "persist"]

BUILTIN_TOOLS: Dict[str, Type["Tool"]] = {}
"""Global collection of built-in tool classes, keyed by tool name."""


def register_tool(cls: Type["Tool"]) -> Type["Tool"]:
    """
    Register a built-in tool class.

    The class is used as a decorator:
        @register_tool
        class EchoTool(Tool):
            name = "echo"
            ...

    Parameters
    ----------
    cls: Type[Tool]
        The tool class.  Its ``name`` must be unique.
    Returns
    -------
    Type[Tool]
        The class itself, unchanged.
    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if cls.name in BUILTIN_TOOLS:
        raise ValueError(f"Tool '{cls.name}' is already registered.")
    logger.debug("Registering tool '%s'", cls.name)
    BUILTIN_TOOLS[cls.name] = cls
    return cls


class ToolExecutionContext(BaseModel):
    """Per-call context handed to tools."""

    run_id: Optional[str] = None
    conversation_id: Optional[str] = None
    workspace: Path = Field(default_factory=lambda: Path(settings.DATA_DIR) / "workspace")
    tool_outputs: Path = Field(default_factory=lambda: Path(settings.DATA_DIR) / "tool-outputs")
    # Describes fetched images and transcribes fetched audio; see praxis.tools.web.MediaDescriber
    media: Any = Field(default=None, exclude=True)


def _clean_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Drop pydantic ``title`` keys and close the object."""
    cleaned: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "title":
            continue
        if key == "properties":
            cleaned[key] = {
                name: {k: v for k, v in prop.items() if k != "title"} for name, prop in value.items()
            }
        else:
            cleaned[key] = value
    cleaned.setdefault("properties", {})
    cleaned["additionalProperties"] = False
    return cleaned


# ---------------------------------------------------------------------------
# Tool base class
# ---------------------------------------------------------------------------
class Tool(ABC):
    """A capability the orchestrator can invoke."""

    name: ClassVar[str]
    description: ClassVar[str]
    params_model: ClassVar[Type[BaseModel]]
    risk: ClassVar[ToolRisk] = ToolRisk.READ_ONLY
    cacheable: ClassVar[bool] = True
    approval_required: ClassVar[Optional[bool]] = None  # None -> derived from risk
    # "auto": stored outside history when large, "inline": only past the hard limit, "persist": always
    result_mode: ClassVar[ResultMode] = "auto"

    @classmethod
    def input_schema(cls) -> Dict[str, Any]:
        """JSON schema of the tool's parameters."""
        return _clean_schema(cls.params_model.model_json_schema())

    def validate(self, parameters: Mapping[str, Any]) -> BaseModel:
        """Validate raw parameters; raises ``pydantic.ValidationError``."""
        return self.params_model.model_validate(dict(parameters))

    def preview(self, parameters: Mapping[str, Any]) -> str:
        """Human-readable summary shown when approval is requested."""
        return f"{self.name}({json.dumps(dict(parameters), ensure_ascii=False)})"

    async def execute(self, payload: Mapping[str, Any], context: ToolExecutionContext) -> ToolResult:
        """Validate *payload*, run the tool and wrap its return value."""
        params = self.validate(payload)
        return ToolResult.ok(await self.run(params, context))

    @abstractmethod
    async def run(self, params: Any, context: ToolExecutionContext) -> Any:
        """Do the actual work and return JSON-serialisable data."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Name -> Tool lookup with per-provider rendering."""

    def __init__(self, approval_overrides: Mapping[str, bool] | None = None):
        self._tools: Dict[str, Tool] = {}
        self._overrides = dict(
            settings.TOOL_APPROVAL_OVERRIDES if approval_overrides is None else approval_overrides
        )

    def register(self, tool: Tool) -> Tool:
        """Add *tool*; raises ``ValueError`` on a duplicate name."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return list(self._tools)

    def requires_approval(self, name: str) -> bool:
        """Configuration override, then the tool's static flag, then its risk class."""
        if name in self._overrides:
            return bool(self._overrides[name])
        tool = self._tools[name]
        if tool.approval_required is not None:
            return tool.approval_required
        return tool.risk.requires_approval

    def spec(self, name: str) -> ToolSpec:
        tool = self._tools[name]
        return ToolSpec(
            name=tool.name,
            description=tool.description,
            input_schema=tool.input_schema(),
            requires_approval=self.requires_approval(name),
            risk=tool.risk,
        )

    def specs(self) -> List[ToolSpec]:
        return [self.spec(name) for name in self._tools]

    def render(self, tool_format: str) -> List[Dict[str, Any]]:
        """
        Render tool definitions for a provider family.

        ``"native"`` yields Anthropic ``{name, description, input_schema}`` objects, ``"text"`` a JSON
        description list (``{name, description, parameters}``) for prompts.
        """
        if tool_format == "native":
            return [
                {"name": s.name, "description": s.description, "input_schema": s.input_schema}
                for s in self.specs()
            ]
        if tool_format == "text":
            return [
                {"name": s.name, "description": s.description, "parameters": s.input_schema}
                for s in self.specs()
            ]
        raise ValueError(f"Unknown tool format: {tool_format}")


def build_registry(
    approval_overrides: Mapping[str, bool] | None = None,
    extra: Callable[[ToolRegistry], None] | None = None,
) -> ToolRegistry:
    """Return a registry holding every built-in tool."""
    # Importing the modules populates BUILTIN_TOOLS
    from praxis.tools import (  # pylint: disable=import-outside-toplevel,unused-import
        builtin,
        files,
        outputs,
        web,
    )

    registry = ToolRegistry(approval_overrides)
    for cls in BUILTIN_TOOLS.values():
        registry.register(cls())
    if extra is not None:
        extra(registry)
    return registry
