"""
Model registry and credential lookup.

A model identifier selected by the caller (``"gpt-4o-mini"``, ``"claude-3-5-haiku-latest"``,
``"tgi:mistral"``) resolves to the provider that serves it and to the reference of the credential
that provider needs.  Secrets themselves live behind :class:`CredentialStore`.
"""

import logging
from typing import (
    Dict,
    Optional,
    Protocol,
    Tuple,
)

from pydantic import BaseModel

from praxis.config import settings
from praxis.llm.errors import (
    MissingCredentialError,
    UnknownModelError,
)

logger = logging.getLogger(__name__)


class ModelInfo(BaseModel):
    """Resolved model entry."""

    model_id: str
    provider: str
    credential_ref: Optional[str] = None
    api_model: str  # identifier sent to the provider API


_PREFIX_RULES: Tuple[Tuple[str, str, Optional[str]], ...] = (
    ("gpt-", "openai", "openai"),
    ("o1", "openai", "openai"),
    ("o3", "openai", "openai"),
    ("o4", "openai", "openai"),
    ("whisper-", "openai", "openai"),
    ("claude-", "anthropic", "anthropic"),
    ("tgi:", "tgi", None),
)


class ModelRegistry:
    """Resolves model identifiers to providers."""

    def __init__(self) -> None:
        self._models: Dict[str, ModelInfo] = {}

    def register(
        self,
        model_id: str,
        provider: str,
        credential_ref: Optional[str] = None,
        api_model: Optional[str] = None,
    ) -> ModelInfo:
        """Add an explicit entry; explicit entries win over prefix rules."""
        info = ModelInfo(
            model_id=model_id,
            provider=provider,
            credential_ref=credential_ref,
            api_model=api_model or model_id,
        )
        self._models[model_id] = info
        logger.debug("Registered model '%s' -> %s", model_id, provider)
        return info

    def resolve(self, model_id: str) -> ModelInfo:
        """
        Return the :class:`ModelInfo` for *model_id*.

        Raises
        ------
        UnknownModelError
            If neither an explicit entry nor a prefix rule matches.
        """
        if not model_id:
            raise UnknownModelError("No model selected")
        if model_id in self._models:
            return self._models[model_id]
        for prefix, provider, credential_ref in _PREFIX_RULES:
            if model_id.startswith(prefix):
                api_model = model_id[len(prefix) :] if prefix.endswith(":") else model_id
                return ModelInfo(
                    model_id=model_id,
                    provider=provider,
                    credential_ref=credential_ref,
                    api_model=api_model,
                )
        raise UnknownModelError(f"Model '{model_id}' is not registered")


class CredentialStore(Protocol):
    """Secret lookup used when building providers."""

    def get(self, credential_ref: str) -> str:
        """Return the secret for *credential_ref* or raise MissingCredentialError."""


class SettingsCredentialStore:
    """Reads provider API keys from the application settings / environment."""

    _FIELDS = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}

    def get(self, credential_ref: str) -> str:
        field = self._FIELDS.get(credential_ref)
        value = getattr(settings, field, None) if field else None
        if not value:
            raise MissingCredentialError(f"No API key found for provider: {credential_ref}")
        return value


model_registry = ModelRegistry()
"""Process-wide model registry."""
