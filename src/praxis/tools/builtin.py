"""Built-in tools that need no external resources."""

from typing import ClassVar

from pydantic import (
    BaseModel,
    Field,
)

from praxis.tools import (
    Tool,
    ToolExecutionContext,
    register_tool,
)

FINAL_ANSWER = "final_answer"


class FinalAnswerParams(BaseModel):
    answer: str = Field(..., description="The answer to give the user")


class EchoParams(BaseModel):
    text: str = Field(..., description="Text to echo back")


@register_tool
class FinalAnswerTool(Tool):
    """Terminal marker; the orchestrator leaves the loop when this tool is chosen."""

    name: ClassVar[str] = FINAL_ANSWER
    description: ClassVar[str] = (
        "Use this tool to write a message to the user when the task is complete "
        "or no other tool fits"
    )
    params_model = FinalAnswerParams
    cacheable: ClassVar[bool] = False

    async def run(self, params: FinalAnswerParams, context: ToolExecutionContext) -> str:
        return params.answer


@register_tool
class EchoTool(Tool):
    """Echo the input text back to the caller."""

    name: ClassVar[str] = "echo"
    description: ClassVar[str] = "Echo the input text back to the caller"
    params_model = EchoParams

    async def run(self, params: EchoParams, context: ToolExecutionContext) -> str:
        return params.text
