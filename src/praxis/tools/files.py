"""File tools rooted at ``DATA_DIR/workspace``."""

import asyncio
import logging
from pathlib import Path
from typing import (
    Any,
    ClassVar,
    Dict,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.core.schema import ToolRisk
from praxis.tools import (
    Tool,
    ToolExecutionContext,
    register_tool,
)

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 200


def resolve_in_workspace(workspace: Path, relative: str) -> Path:
    """
    Resolve *relative* inside *workspace*.

    Raises
    ------
    PermissionError
        If the resolved path escapes the workspace.
    """
    root = workspace.resolve()
    target = (root / relative).resolve()
    if target != root and root not in target.parents:
        raise PermissionError(f"Path '{relative}' is outside the workspace")
    return target


class ReadFileParams(BaseModel):
    path: str = Field(..., description="File path relative to the workspace")


class WriteFileParams(BaseModel):
    path: str = Field(..., description="File path relative to the workspace")
    content: str = Field(..., description="Text to write")
    append: bool = Field(False, description="Append instead of overwriting")


@register_tool
class ReadFileTool(Tool):
    """Read a UTF-8 text file from the workspace."""

    name: ClassVar[str] = "read_file"
    description: ClassVar[str] = "Read a text file from the workspace directory"
    params_model = ReadFileParams
    cacheable: ClassVar[bool] = False

    async def run(self, params: ReadFileParams, context: ToolExecutionContext) -> Dict[str, Any]:
        target = resolve_in_workspace(context.workspace, params.path)
        if not target.is_file():
            raise FileNotFoundError(f"No such file in workspace: {params.path}")
        text = await asyncio.to_thread(target.read_text, encoding="utf-8")
        return {"path": params.path, "content": text}


@register_tool
class WriteFileTool(Tool):
    """Write (or append to) a UTF-8 text file in the workspace."""

    name: ClassVar[str] = "write_file"
    description: ClassVar[str] = "Write text to a file in the workspace directory"
    params_model = WriteFileParams
    risk: ClassVar[ToolRisk] = ToolRisk.MODIFYING
    cacheable: ClassVar[bool] = False

    def preview(self, parameters: Mapping[str, Any]) -> str:
        content = str(parameters.get("content", ""))
        if len(content) > _PREVIEW_CHARS:
            content = content[:_PREVIEW_CHARS] + "..."
        mode = "append to" if parameters.get("append") else "write"
        return f"{mode} {parameters.get('path')}:\n{content}"

    async def run(self, params: WriteFileParams, context: ToolExecutionContext) -> Dict[str, Any]:
        target = resolve_in_workspace(context.workspace, params.path)

        def _write() -> int:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("a" if params.append else "w", encoding="utf-8") as f:
                return f.write(params.content)

        written = await asyncio.to_thread(_write)
        logger.info("Wrote %d chars to %s", written, target)
        return {"path": params.path, "written": written, "append": params.append}
