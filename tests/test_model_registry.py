"""Tests for model resolution, credentials and provider loading."""

import pytest

from praxis.config import settings
from praxis.llm.errors import (
    MissingCredentialError,
    UnknownModelError,
)
from praxis.llm.providers import (
    AnthropicProvider,
    OpenAIProvider,
    TGIProvider,
    load_provider,
)
from praxis.llm.registry import (
    ModelRegistry,
    SettingsCredentialStore,
)


@pytest.mark.parametrize(
    "model_id, provider, credential_ref, api_model",
    [
        ("gpt-4o-mini", "openai", "openai", "gpt-4o-mini"),
        ("o3-mini", "openai", "openai", "o3-mini"),
        ("claude-3-5-haiku-latest", "anthropic", "anthropic", "claude-3-5-haiku-latest"),
        ("tgi:mistral-7b", "tgi", None, "mistral-7b"),
    ],
)
def test_prefix_resolution(
    model_id: str, provider: str, credential_ref: str | None, api_model: str
) -> None:
    info = ModelRegistry().resolve(model_id)
    assert info.provider == provider
    assert info.credential_ref == credential_ref
    assert info.api_model == api_model


def test_explicit_entry_wins() -> None:
    registry = ModelRegistry()
    registry.register("gpt-local", "tgi", api_model="llama")

    info = registry.resolve("gpt-local")

    assert info.provider == "tgi"
    assert info.api_model == "llama"


@pytest.mark.parametrize("model_id", ["", "llama-3"])
def test_unknown_model(model_id: str) -> None:
    with pytest.raises(UnknownModelError):
        ModelRegistry().resolve(model_id)


def test_missing_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", None)
    with pytest.raises(MissingCredentialError):
        SettingsCredentialStore().get("anthropic")
    with pytest.raises(MissingCredentialError):
        SettingsCredentialStore().get("unknown")


def test_load_provider_builds_the_right_family(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "ak-test")

    openai_provider, _ = load_provider("gpt-4o-mini")
    anthropic_provider, _ = load_provider("claude-3-5-haiku-latest")
    tgi_provider, info = load_provider("tgi:mistral")

    assert isinstance(openai_provider, OpenAIProvider)
    assert openai_provider.api_key == "sk-test"
    assert isinstance(anthropic_provider, AnthropicProvider)
    assert anthropic_provider.tool_format == "native"
    assert isinstance(tgi_provider, TGIProvider)
    assert tgi_provider.tool_format == "text"
    assert info.api_model == "mistral"


def test_load_provider_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    with pytest.raises(MissingCredentialError):
        load_provider("gpt-4o-mini")


def test_load_provider_unregistered_provider() -> None:
    registry = ModelRegistry()
    registry.register("mystery", "nobody")
    with pytest.raises(UnknownModelError):
        load_provider("mystery", registry=registry)
