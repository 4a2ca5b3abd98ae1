"""Global pytest configuration and fixtures."""

from pathlib import Path
from typing import (
    Any,
    Callable,
)

import pytest
from fakes import (
    FailingTool,
    ScriptedProvider,
    SlowTool,
)

from praxis.config import settings
from praxis.core.attachments import AttachmentPreprocessor
from praxis.core.orchestrator import Orchestrator
from praxis.llm.registry import ModelInfo
from praxis.memory.memory_store import InMemoryConversationStore
from praxis.tools import ToolRegistry
from praxis.tools.builtin import (
    EchoTool,
    FinalAnswerTool,
)
from praxis.tools.files import (
    ReadFileTool,
    WriteFileTool,
)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point DATA_DIR at a temporary directory and return the tool workspace inside it."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    return tmp_path / "workspace"


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def slow_tool() -> SlowTool:
    return SlowTool()


@pytest.fixture
def registry(slow_tool: SlowTool) -> ToolRegistry:
    reg = ToolRegistry(approval_overrides={})
    for tool in (
        FinalAnswerTool(),
        EchoTool(),
        ReadFileTool(),
        WriteFileTool(),
        slow_tool,
        FailingTool(),
    ):
        reg.register(tool)
    return reg


@pytest.fixture
def make_orchestrator(
    provider: ScriptedProvider, registry: ToolRegistry, workspace: Path
) -> Callable[..., Orchestrator]:
    """Factory for orchestrators wired to the scripted provider."""

    def _factory(model_id: str) -> Any:
        return provider, ModelInfo(model_id=model_id, provider="scripted", api_model=model_id)

    def _make(**kwargs: Any) -> Orchestrator:
        options: dict[str, Any] = {
            "registry": registry,
            "store": InMemoryConversationStore(),
            "provider_factory": _factory,
            "preprocessor": AttachmentPreprocessor(
                transcriber=(provider, "whisper"), vision=(provider, "vision")
            ),
            "max_iterations": 3,
            "intent_analysis": False,
            "cache_scope": "run",
        }
        options.update(kwargs)
        return Orchestrator(**options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., Orchestrator]) -> Orchestrator:
    return make_orchestrator()
