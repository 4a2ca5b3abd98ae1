"""Paged access to tool outputs that were stored outside the run history."""

import asyncio
import json
from typing import (
    Any,
    ClassVar,
    Dict,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.core.tool_outputs import ToolOutputStore
from praxis.tools import (
    ResultMode,
    Tool,
    ToolExecutionContext,
    register_tool,
)


class ReadToolOutputParams(BaseModel):
    id: str = Field(..., description="The output_ref.id of a stored tool output")
    offset: int = Field(0, ge=0, description="Character offset to start reading from")
    limit: int = Field(4000, ge=1, le=8000, description="Maximum number of characters to return")


@register_tool
class ReadToolOutputTool(Tool):
    """Return a slice of a stored tool output."""

    name: ClassVar[str] = "read_tool_output"
    description: ClassVar[str] = (
        "Read part of a large tool output that was stored outside the conversation"
    )
    params_model = ReadToolOutputParams
    # Pages are bounded by ``limit``; never stored again
    result_mode: ClassVar[ResultMode] = "inline"

    async def run(
        self, params: ReadToolOutputParams, context: ToolExecutionContext
    ) -> Dict[str, Any]:
        store = ToolOutputStore(context.tool_outputs)
        record = await asyncio.to_thread(store.read, params.id)
        output = record.output
        text = output if isinstance(output, str) else json.dumps(output, ensure_ascii=False)
        end = params.offset + params.limit
        return {
            "id": record.id,
            "tool_name": record.tool_name,
            "offset": params.offset,
            "content": text[params.offset : end],
            "total_chars": len(text),
            "has_more": end < len(text),
        }
