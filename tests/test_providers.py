"""Tests for provider message rendering and both structured-output families."""

import json
from types import SimpleNamespace
from typing import (
    Any,
    Dict,
    List,
)
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from fakes import ScriptedProvider

from praxis.config import settings
from praxis.core.schema import (
    ImagePart,
    Message,
    Role,
    ToolCallRef,
)
from praxis.llm.errors import (
    LLMProviderError,
    RefusalError,
    StructuredOutputError,
)
from praxis.llm.providers import (
    AnthropicProvider,
    OpenAIProvider,
    TGIProvider,
)
from praxis.llm.schemas import PLAN_SCHEMA

PLAN = {"thinking": "Short plan.", "steps": [{"tool": "echo", "note": "say it"}]}
ECHO_TOOL = {
    "name": "echo",
    "description": "Echo text",
    "input_schema": {"type": "object", "properties": {"text": {"type": "string"}}},
}


def _tool_history() -> List[Message]:
    return [
        Message(role=Role.USER, content="Echo a"),
        Message(role=Role.ASSISTANT, content="<plan>\necho it\n</plan>"),
        Message(
            role=Role.ASSISTANT,
            tool_call=ToolCallRef(id="call_1", name="echo", input={"text": "a"}),
        ),
        Message(role=Role.TOOL_RESULT, content="a", tool_call_id="call_1", tool_name="echo"),
    ]


# ---------------------------------------------------------------------------
# Text family rendering
# ---------------------------------------------------------------------------
def test_text_family_renders_tool_turns_as_tags() -> None:
    rendered = TGIProvider().render_messages(_tool_history())

    assert rendered == [
        {"role": "user", "content": "Echo a"},
        {"role": "assistant", "content": "<plan>\necho it\n</plan>"},
        {
            "role": "assistant",
            "content": '<tool_call name="echo" id="call_1">{"text": "a"}</tool_call>',
        },
        {
            "role": "user",
            "content": '<tool_result name="echo" id="call_1">\na\n</tool_result>',
        },
    ]


@pytest.mark.asyncio
async def test_default_stream_yields_the_completion() -> None:
    provider = ScriptedProvider(["whole answer"])
    chunks = [c async for c in provider.stream("m", [Message(role=Role.USER, content="hi")])]
    assert chunks == ["whole answer"]


@pytest.mark.asyncio
async def test_transcription_unsupported_by_default() -> None:
    with pytest.raises(LLMProviderError):
        await TGIProvider().transcribe(b"...", "a.wav", "whisper-1")


# ---------------------------------------------------------------------------
# Native family (Anthropic)
# ---------------------------------------------------------------------------
def _anthropic(response: Any) -> tuple[AnthropicProvider, AsyncMock]:
    provider = AnthropicProvider(api_key="test-key")
    create = AsyncMock(return_value=response)
    provider._client = SimpleNamespace(  # pylint: disable=protected-access
        messages=SimpleNamespace(create=create)
    )
    return provider, create


def _response(*blocks: Any, stop_reason: str = "tool_use") -> SimpleNamespace:
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
    )


def test_anthropic_renders_native_tool_blocks() -> None:
    rendered = AnthropicProvider(api_key="k").render_messages(_tool_history())

    assert [m["role"] for m in rendered] == ["user", "assistant", "user"]
    assistant = rendered[1]["content"]
    assert assistant[0] == {"type": "text", "text": "<plan>\necho it\n</plan>"}
    assert assistant[1] == {"type": "tool_use", "id": "call_1", "name": "echo", "input": {"text": "a"}}
    assert rendered[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "call_1", "content": "a"}
    ]


def test_anthropic_renders_tagged_text_without_tools() -> None:
    rendered = AnthropicProvider(api_key="k").render_messages(_tool_history(), tool_blocks=False)

    blocks = [block for message in rendered for block in message["content"]]
    assert all(block["type"] == "text" for block in blocks)
    assert blocks[2]["text"].startswith('<tool_call name="echo"')
    assert blocks[3]["text"].startswith('<tool_result name="echo"')


def test_anthropic_conversation_shape_is_repaired() -> None:
    rendered = AnthropicProvider(api_key="k").render_messages(
        [Message(role=Role.ASSISTANT, content="Earlier answer")]
    )

    assert rendered[0] == {"role": "user", "content": [{"type": "text", "text": "Begin."}]}
    assert rendered[1]["role"] == "assistant"
    assert rendered[2] == {"role": "user", "content": [{"type": "text", "text": "Continue."}]}


def test_anthropic_renders_images_before_text() -> None:
    message = Message(
        role=Role.USER, content="What is this?", images=[ImagePart(data="AAAA", media_type="image/png")]
    )
    [rendered] = AnthropicProvider(api_key="k").render_messages([message])

    image, text = rendered["content"]
    assert image["type"] == "image"
    assert image["source"] == {"type": "base64", "media_type": "image/png", "data": "AAAA"}
    assert text == {"type": "text", "text": "What is this?"}


@pytest.mark.asyncio
async def test_anthropic_structured_forces_the_schema_tool() -> None:
    provider, create = _anthropic(
        _response(
            SimpleNamespace(type="text", text="Let me plan."),
            SimpleNamespace(type="tool_use", name="plan", input=PLAN),
        )
    )

    result = await provider.structured_completion(
        "claude-x", _tool_history(), PLAN_SCHEMA, system="Plan carefully", tools=[ECHO_TOOL]
    )

    kwargs = create.call_args.kwargs
    assert kwargs["tool_choice"] == {"type": "tool", "name": "plan"}
    assert [t["name"] for t in kwargs["tools"]] == ["echo", "plan"]
    assert kwargs["tools"][1]["input_schema"] == PLAN_SCHEMA.schema_
    assert kwargs["system"] == "Plan carefully"
    assert kwargs["model"] == "claude-x"
    assert result.data == PLAN
    assert json.loads(result.raw_response) == PLAN
    assert result.usage.total_tokens == 15


@pytest.mark.asyncio
async def test_anthropic_structured_without_tool_block() -> None:
    provider, _ = _anthropic(
        _response(SimpleNamespace(type="text", text="I'd rather talk."), stop_reason="end_turn")
    )

    with pytest.raises(StructuredOutputError) as info:
        await provider.structured_completion("claude-x", _tool_history(), PLAN_SCHEMA)
    assert info.value.raw_response == "I'd rather talk."
    assert info.value.provider == "anthropic"


@pytest.mark.asyncio
async def test_anthropic_structured_missing_field() -> None:
    provider, _ = _anthropic(
        _response(SimpleNamespace(type="tool_use", name="plan", input={"thinking": "only this"}))
    )

    with pytest.raises(StructuredOutputError) as info:
        await provider.structured_completion("claude-x", _tool_history(), PLAN_SCHEMA)
    assert "steps" in str(info.value)
    assert info.value.provider == "anthropic"


@pytest.mark.asyncio
async def test_anthropic_refusal() -> None:
    provider, _ = _anthropic(_response(stop_reason="refusal"))

    with pytest.raises(RefusalError):
        await provider.complete("claude-x", _tool_history())


@pytest.mark.asyncio
async def test_anthropic_complete_with_tools_disables_tool_use() -> None:
    provider, create = _anthropic(
        _response(
            SimpleNamespace(type="text", text="First part."),
            SimpleNamespace(type="text", text="Second part."),
            stop_reason="end_turn",
        )
    )

    completion = await provider.complete("claude-x", _tool_history(), tools=[ECHO_TOOL])

    assert completion.text == "First part.\nSecond part."
    assert create.call_args.kwargs["tool_choice"] == {"type": "none"}
    assert completion.stop_reason == "end_turn"


# ---------------------------------------------------------------------------
# Text family over HTTP
# ---------------------------------------------------------------------------
def _chat_response(content: str | None, refusal: str | None = None) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content, "refusal": refusal},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
    }


def _openai(response: httpx.Response) -> tuple[OpenAIProvider, List[httpx.Request]]:
    """Provider whose SDK client talks to a mock transport; returns the captured requests."""
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return response

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIProvider(api_key="sk-test", http_client=client), requests


@pytest.mark.asyncio
async def test_openai_structured_uses_json_mode() -> None:
    provider, requests = _openai(httpx.Response(200, json=_chat_response(json.dumps(PLAN))))

    result = await provider.structured_completion(
        "gpt-4o-mini", [Message(role=Role.USER, content="hi")], PLAN_SCHEMA, system="Be brief"
    )

    [request] = requests
    assert request.url.path.endswith("/chat/completions")
    body = json.loads(request.content)
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"
    assert body["messages"][0]["content"].startswith("Be brief")
    assert '"plan"' in body["messages"][0]["content"]
    assert body["messages"][1] == {"role": "user", "content": "hi"}
    assert result.data == PLAN
    assert result.usage.total_tokens == 12


@pytest.mark.asyncio
async def test_openai_sends_images_as_data_urls() -> None:
    provider, requests = _openai(httpx.Response(200, json=_chat_response("A cat.")))

    completion = await provider.complete(
        "gpt-4o-mini",
        [Message(role=Role.USER, content="What?", images=[ImagePart(data="AAAA")])],
    )

    body = json.loads(requests[-1].content)
    assert "response_format" not in body
    image, text = body["messages"][0]["content"]
    assert image == {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,AAAA"}}
    assert text == {"type": "text", "text": "What?"}
    assert completion.text == "A cat."


@pytest.mark.asyncio
async def test_openai_refusal() -> None:
    provider, _ = _openai(httpx.Response(200, json=_chat_response(None, refusal="I can't help.")))

    with pytest.raises(RefusalError) as info:
        await provider.complete("gpt-4o-mini", [Message(role=Role.USER, content="hi")])
    assert info.value.reason == "I can't help."


@pytest.mark.asyncio
async def test_openai_client_error_is_not_retriable() -> None:
    provider, requests = _openai(httpx.Response(400, json={"error": {"message": "bad request"}}))

    with pytest.raises(LLMProviderError) as info:
        await provider.complete("gpt-4o-mini", [Message(role=Role.USER, content="hi")])
    assert info.value.retriable is False
    assert info.value.provider == "openai"
    # 4xx answers are not retried by the SDK
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_tgi_structured_extracts_tagged_json() -> None:
    with respx.mock() as router:
        route = router.post(settings.TGI_ENDPOINT).mock(
            return_value=httpx.Response(
                200,
                json={
                    "generated_text": f"Sure. <json>{json.dumps(PLAN)}</json>",
                    "details": {"generated_tokens": 9, "finish_reason": "eos_token"},
                },
            )
        )
        result = await TGIProvider().structured_completion(
            "mistral", _tool_history(), PLAN_SCHEMA, system="Plan"
        )

    body = json.loads(route.calls.last.request.content)
    assert body["inputs"].startswith("Plan")
    assert body["inputs"].endswith("Assistant:")
    assert "User: Echo a" in body["inputs"]
    assert body["parameters"]["details"] is True
    assert result.data == PLAN
    assert result.usage.completion_tokens == 9


@pytest.mark.asyncio
async def test_tgi_unparseable_answer() -> None:
    with respx.mock() as router:
        router.post(settings.TGI_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"generated_text": "no idea"})
        )
        with pytest.raises(StructuredOutputError) as info:
            await TGIProvider().structured_completion("mistral", _tool_history(), PLAN_SCHEMA)
    assert info.value.raw_response == "no idea"
    assert info.value.provider == "tgi"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mock, retriable",
    [
        ({"return_value": httpx.Response(503)}, True),
        ({"return_value": httpx.Response(422)}, False),
        ({"side_effect": httpx.ConnectError("refused")}, True),
    ],
)
async def test_tgi_errors(mock: Dict[str, Any], retriable: bool) -> None:
    with respx.mock() as router:
        router.post(settings.TGI_ENDPOINT).mock(**mock)
        with pytest.raises(LLMProviderError) as info:
            await TGIProvider().complete("mistral", _tool_history())
    assert info.value.retriable is retriable
