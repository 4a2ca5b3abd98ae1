"""
Provider interface for Praxis.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
attachment preprocessing) stays model-agnostic and talks to :class:`LLMProvider`.

Two provider families are bridged behind the same ``structured_completion`` capability:

1. **Text family** (OpenAI JSON mode, Hugging Face Text-Generation-Inference): the schema is given as
   instructions and the answer arrives as free text that must be extracted, parsed and validated.
2. **Native family** (Anthropic): the schema is passed as a forced tool definition and the structured
   data comes back as the ``input`` of a ``tool_use`` block.

Additional providers can be added by subclassing :class:`LLMProvider` and registering via
:func:`register_provider`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Sequence,
    Tuple,
    Type,
)

import anthropic
import httpx
import openai
from pydantic import (
    BaseModel,
    Field,
)

from praxis.config import settings
from praxis.core.schema import (
    Message,
    Role,
    TokenUsage,
    ToolCallRef,
)
from praxis.llm.errors import (
    LLMProviderError,
    RefusalError,
    StructuredOutputError,
    UnknownModelError,
)
from praxis.llm.extraction import (
    JSONExtractionError,
    extract_json_object,
)
from praxis.llm.registry import (
    CredentialStore,
    ModelInfo,
    ModelRegistry,
    SettingsCredentialStore,
    model_registry,
)
from praxis.llm.schemas import StructuredOutputSchema

logger = logging.getLogger(__name__)

ToolDefinitions = Sequence[Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Pydantic models for provider responses
# ---------------------------------------------------------------------------
class Completion(BaseModel):
    """Free-text completion."""

    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    stop_reason: str | None = None


class StructuredResult(BaseModel):
    """Schema-validated completion."""

    data: Dict[str, Any]
    raw_response: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["LLMProvider"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["LLMProvider"]) -> Type["LLMProvider"]:
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_provider(
    model_id: str,
    registry: ModelRegistry | None = None,
    credentials: CredentialStore | None = None,
) -> Tuple["LLMProvider", ModelInfo]:
    """
    Resolve *model_id* and return an instantiated provider plus the resolved model entry.

    Raises
    ------
    UnknownModelError
        If the model or its provider is unknown.
    MissingCredentialError
        If the provider needs a credential that is not configured.
    """
    info = (registry or model_registry).resolve(model_id)
    cls = _PROVIDER_REGISTRY.get(info.provider)
    if cls is None:
        raise UnknownModelError(f"Provider '{info.provider}' is not registered.")
    api_key = None
    if info.credential_ref:
        api_key = (credentials or SettingsCredentialStore()).get(info.credential_ref)
    return cls(api_key=api_key), info


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class LLMProvider(ABC):
    """Abstract provider: completions, structured completions, streaming, transcription."""

    name: ClassVar[str] = "base"
    tool_format: ClassVar[str] = "text"  # "text" or "native"

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS

    @abstractmethod
    def render_messages(self, messages: Sequence[Message], tool_blocks: bool = True) -> List[Any]:
        """Convert internal history into the provider's wire format."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> Completion:
        """Return a free-text completion."""

    @abstractmethod
    async def _structured(
        self,
        model: str,
        messages: Sequence[Message],
        schema: StructuredOutputSchema,
        system: str | None,
        tools: ToolDefinitions | None,
    ) -> Tuple[Any, str, TokenUsage]:
        """Return ``(data, raw_response, usage)`` before validation."""

    async def structured_completion(
        self,
        model: str,
        messages: Sequence[Message],
        schema: StructuredOutputSchema,
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> StructuredResult:
        """
        Return data guaranteed to carry every required field of *schema*.

        Raises
        ------
        StructuredOutputError
            If the response cannot be parsed or misses required fields.
        """
        data, raw, usage = await self._structured(model, messages, schema, system, tools)
        try:
            schema.validate_data(data, raw_response=raw)
        except StructuredOutputError as exc:
            exc.provider = self.name
            raise
        logger.debug("[%s] structured '%s' -> %s", self.name, schema.name, raw)
        return StructuredResult(data=data, raw_response=raw, usage=usage)

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> AsyncIterator[str]:
        """Yield the completion in chunks (single chunk unless overridden)."""
        completion = await self.complete(model, messages, system=system, tools=tools)
        yield completion.text

    async def transcribe(self, audio: bytes, filename: str, model: str) -> str:
        """Speech-to-text; unsupported unless overridden."""
        raise LLMProviderError(f"Provider '{self.name}' does not support transcription", self.name)


# ---------------------------------------------------------------------------
# Text family
# ---------------------------------------------------------------------------
def _tool_call_text(call: ToolCallRef) -> str:
    return (
        f'<tool_call name="{call.name}" id="{call.id}">'
        f"{json.dumps(call.input, ensure_ascii=False)}</tool_call>"
    )


def _tool_result_text(message: Message) -> str:
    return (
        f'<tool_result name="{message.tool_name or ""}" id="{message.tool_call_id or ""}">\n'
        f"{message.content}\n</tool_result>"
    )


class JSONTextProvider(LLMProvider, ABC):
    """Providers that only understand instructions plus free text."""

    tool_format: ClassVar[str] = "text"

    SCHEMA_INSTRUCTIONS: ClassVar[
        str
    ] = """\
Respond with exactly one JSON object, no extra text. You may wrap it in <json></json> tags.
The object must conform to the JSON schema "{name}" ({description}):
{schema}
Every field listed in "required" must be present."""

    @abstractmethod
    async def _complete(
        self, model: str, messages: Sequence[Message], system: str | None, json_mode: bool
    ) -> Completion:
        """Provider call shared by free-text and structured completions."""

    def render_messages(self, messages: Sequence[Message], tool_blocks: bool = True) -> List[Any]:
        rendered: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == Role.TOOL_RESULT:
                role, text = "user", _tool_result_text(message)
            elif message.role == Role.ASSISTANT:
                role = "assistant"
                parts = [message.content] if message.content else []
                if message.tool_call is not None:
                    parts.append(_tool_call_text(message.tool_call))
                text = "\n".join(parts)
            else:
                role, text = "user", message.content
            if not text and not message.images:
                continue
            rendered.append({"role": role, "content": self._content(text, message)})
        return rendered

    def _content(self, text: str, message: Message) -> Any:
        return text

    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> Completion:
        return await self._complete(model, messages, system, json_mode=False)

    async def _structured(
        self,
        model: str,
        messages: Sequence[Message],
        schema: StructuredOutputSchema,
        system: str | None,
        tools: ToolDefinitions | None,
    ) -> Tuple[Any, str, TokenUsage]:
        instructions = self.SCHEMA_INSTRUCTIONS.format(
            name=schema.name,
            description=schema.description,
            schema=json.dumps(schema.schema_, indent=2),
        )
        full_system = f"{system}\n\n{instructions}" if system else instructions
        completion = await self._complete(model, messages, full_system, json_mode=True)
        try:
            data = extract_json_object(completion.text)
        except JSONExtractionError as exc:
            logger.error("[%s] could not parse '%s' response: %s", self.name, schema.name, exc)
            raise StructuredOutputError(
                f"Failed to parse JSON response for schema '{schema.name}': {exc}",
                schema_name=schema.name,
                raw_response=completion.text,
                provider=self.name,
            ) from exc
        return data, completion.text, completion.usage


def _openai_retriable(exc: Exception) -> bool:
    return isinstance(
        exc,
        (
            openai.APIConnectionError,
            openai.APITimeoutError,
            openai.RateLimitError,
            openai.InternalServerError,
        ),
    )


@register_provider("openai")
class OpenAIProvider(JSONTextProvider):
    """OpenAI chat completions in JSON mode."""

    name: ClassVar[str] = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        self._client = openai.AsyncOpenAI(
            api_key=api_key, timeout=self.timeout, http_client=http_client
        )

    def _content(self, text: str, message: Message) -> Any:
        if not message.images:
            return text
        parts: List[Dict[str, Any]] = [
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image.media_type};base64,{image.data}"},
            }
            for image in message.images
        ]
        parts.append({"type": "text", "text": text})
        return parts

    def _payload(self, messages: Sequence[Message], system: str | None) -> List[Dict[str, Any]]:
        payload: List[Dict[str, Any]] = []
        if system:
            payload.append({"role": "system", "content": system})
        payload.extend(self.render_messages(messages))
        return payload

    async def _complete(
        self, model: str, messages: Sequence[Message], system: str | None, json_mode: bool
    ) -> Completion:
        extra: Dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}
        try:
            resp = await self._client.chat.completions.create(
                model=model,
                messages=self._payload(messages, system),  # type: ignore[arg-type]
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
                **extra,
            )
        except openai.APIError as exc:
            logger.error("OpenAI request error: %s", exc)
            raise LLMProviderError(
                f"Error calling OpenAI: {exc}", self.name, retriable=_openai_retriable(exc)
            ) from exc

        choice = resp.choices[0]
        refusal = getattr(choice.message, "refusal", None)
        if refusal:
            raise RefusalError("OpenAI refused to generate a response", refusal, self.name)

        usage = TokenUsage()
        if resp.usage is not None:
            usage = TokenUsage(
                prompt_tokens=resp.usage.prompt_tokens,
                completion_tokens=resp.usage.completion_tokens,
                total_tokens=resp.usage.total_tokens,
            )
        content = choice.message.content or ""
        logger.debug("OpenAI response: %s", content)
        return Completion(text=content, usage=usage, stop_reason=choice.finish_reason)

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> AsyncIterator[str]:
        try:
            chunks = await self._client.chat.completions.create(
                model=model,
                messages=self._payload(messages, system),  # type: ignore[arg-type]
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
                stream=True,
            )
            async for chunk in chunks:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.APIError as exc:
            logger.error("OpenAI stream error: %s", exc)
            raise LLMProviderError(
                f"Error streaming from OpenAI: {exc}", self.name, retriable=_openai_retriable(exc)
            ) from exc

    async def transcribe(self, audio: bytes, filename: str, model: str) -> str:
        try:
            resp = await self._client.audio.transcriptions.create(
                model=model, file=(filename, audio)
            )
        except openai.APIError as exc:
            logger.error("OpenAI transcription error: %s", exc)
            raise LLMProviderError(
                f"Error transcribing audio: {exc}", self.name, retriable=_openai_retriable(exc)
            ) from exc
        return resp.text


@register_provider("tgi")
class TGIProvider(JSONTextProvider):
    """Self-hosted Text-Generation-Inference endpoint via httpx."""

    name: ClassVar[str] = "tgi"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        endpoint: str | None = None,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        self.endpoint = endpoint or settings.TGI_ENDPOINT

    def _prompt(self, messages: Sequence[Message], system: str | None) -> str:
        lines = [system] if system else []
        for entry in self.render_messages(messages):
            speaker = "User" if entry["role"] == "user" else "Assistant"
            lines.append(f"{speaker}: {entry['content']}")
        lines.append("Assistant:")
        return "\n\n".join(lines)

    async def _complete(
        self, model: str, messages: Sequence[Message], system: str | None, json_mode: bool
    ) -> Completion:
        if any(message.images for message in messages):
            logger.warning("TGI provider ignores image inputs")
        payload = {
            "inputs": self._prompt(messages, system),
            "parameters": {
                "max_new_tokens": settings.LLM_MAX_TOKENS,
                "temperature": settings.LLM_TEMPERATURE,
                "stop": ["User:", "</s>"],
                "details": True,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.endpoint, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("TGI request error: %s", exc)
            raise LLMProviderError(
                f"Error calling TGI endpoint: {exc}",
                self.name,
                retriable=exc.response.status_code >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("TGI request error: %s", exc)
            raise LLMProviderError(
                f"Error calling TGI endpoint: {exc}", self.name, retriable=True
            ) from exc

        content = body.get("generated_text", "")
        generated = (body.get("details") or {}).get("generated_tokens", 0)
        logger.debug("TGI response: %s", content)
        return Completion(
            text=content,
            usage=TokenUsage(completion_tokens=generated, total_tokens=generated),
            stop_reason=(body.get("details") or {}).get("finish_reason"),
        )


# ---------------------------------------------------------------------------
# Native family
# ---------------------------------------------------------------------------
def _anthropic_retriable(exc: Exception) -> bool:
    return isinstance(
        exc,
        (
            anthropic.APIConnectionError,
            anthropic.APITimeoutError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ),
    )


@register_provider("anthropic")
class AnthropicProvider(LLMProvider):
    """Anthropic Messages API with native tool-use blocks."""

    name: ClassVar[str] = "anthropic"
    tool_format: ClassVar[str] = "native"

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        super().__init__(api_key=api_key, timeout=timeout)
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=self.timeout)

    def render_messages(self, messages: Sequence[Message], tool_blocks: bool = True) -> List[Any]:
        rendered: List[Dict[str, Any]] = []
        for message in messages:
            blocks: List[Dict[str, Any]] = []
            if message.role == Role.TOOL_RESULT:
                role = "user"
                if tool_blocks and message.tool_call_id:
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": message.tool_call_id,
                            "content": message.content or "(empty)",
                        }
                    )
                else:
                    blocks.append({"type": "text", "text": _tool_result_text(message)})
            elif message.role == Role.ASSISTANT:
                role = "assistant"
                if message.content.strip():
                    blocks.append({"type": "text", "text": message.content})
                if message.tool_call is not None:
                    if tool_blocks:
                        blocks.append(
                            {
                                "type": "tool_use",
                                "id": message.tool_call.id,
                                "name": message.tool_call.name,
                                "input": message.tool_call.input,
                            }
                        )
                    else:
                        blocks.append({"type": "text", "text": _tool_call_text(message.tool_call)})
            else:
                role = "user"
                for image in message.images:
                    blocks.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": image.media_type,
                                "data": image.data,
                            },
                        }
                    )
                if message.content.strip():
                    blocks.append({"type": "text", "text": message.content})
            if not blocks:
                continue
            # Consecutive same-role turns are merged into one message
            if rendered and rendered[-1]["role"] == role:
                rendered[-1]["content"].extend(blocks)
            else:
                rendered.append({"role": role, "content": blocks})

        if not rendered or rendered[0]["role"] != "user":
            rendered.insert(0, {"role": "user", "content": [{"type": "text", "text": "Begin."}]})
        if rendered[-1]["role"] == "assistant":
            rendered.append({"role": "user", "content": [{"type": "text", "text": "Continue."}]})
        return rendered

    def _request(
        self,
        model: str,
        messages: Sequence[Message],
        system: str | None,
        tools: ToolDefinitions | None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": settings.LLM_MAX_TOKENS,
            "temperature": settings.LLM_TEMPERATURE,
            "messages": self.render_messages(messages, tool_blocks=bool(tools)),
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [dict(tool) for tool in tools]
            kwargs["tool_choice"] = {"type": "none"}
        return kwargs

    @staticmethod
    def _usage(response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
        )

    async def _create(self, **kwargs: Any) -> Any:
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            logger.error("Anthropic request error: %s", exc)
            raise LLMProviderError(
                f"Error calling Anthropic: {exc}", self.name, retriable=_anthropic_retriable(exc)
            ) from exc
        if response.stop_reason == "refusal":
            raise RefusalError("Anthropic refused to generate a response", provider=self.name)
        return response

    async def complete(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> Completion:
        response = await self._create(**self._request(model, messages, system, tools))
        text = "\n".join(block.text for block in response.content if block.type == "text")
        logger.debug("Anthropic response: %s", text)
        return Completion(text=text, usage=self._usage(response), stop_reason=response.stop_reason)

    async def _structured(
        self,
        model: str,
        messages: Sequence[Message],
        schema: StructuredOutputSchema,
        system: str | None,
        tools: ToolDefinitions | None,
    ) -> Tuple[Any, str, TokenUsage]:
        schema_tool = {
            "name": schema.name,
            "description": schema.description or schema.name,
            "input_schema": schema.schema_,
        }
        all_tools = [tool for tool in (tools or []) if tool.get("name") != schema.name]
        all_tools.append(schema_tool)
        kwargs = self._request(model, messages, system, all_tools)
        kwargs["tool_choice"] = {"type": "tool", "name": schema.name}

        response = await self._create(**kwargs)
        block = next(
            (b for b in response.content if b.type == "tool_use" and b.name == schema.name), None
        )
        if block is None:
            raw = "\n".join(b.text for b in response.content if b.type == "text")
            raise StructuredOutputError(
                f"Anthropic returned no '{schema.name}' tool_use block",
                schema_name=schema.name,
                raw_response=raw,
                provider=self.name,
            )
        data = block.input if isinstance(block.input, dict) else {}
        return data, json.dumps(data, ensure_ascii=False), self._usage(response)

    async def stream(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        system: str | None = None,
        tools: ToolDefinitions | None = None,
    ) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(
                **self._request(model, messages, system, tools)
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.APIError as exc:
            logger.error("Anthropic stream error: %s", exc)
            raise LLMProviderError(
                f"Error streaming from Anthropic: {exc}",
                self.name,
                retriable=_anthropic_retriable(exc),
            ) from exc
