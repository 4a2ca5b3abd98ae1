"""Provider-level errors."""


class LLMProviderError(RuntimeError):
    """Base exception for LLM provider errors.

    Raised when a provider call fails in a way the caller cannot recover from locally.
    """

    def __init__(self, message: str, provider: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


class StructuredOutputError(LLMProviderError):
    """Raised when a response does not parse into the requested schema.

    Never retriable: the same prompt is expected to produce the same malformed answer.
    """

    def __init__(
        self,
        message: str,
        schema_name: str,
        raw_response: str = "",
        provider: str | None = None,
    ):
        super().__init__(message, provider=provider, retriable=False)
        self.schema_name = schema_name
        self.raw_response = raw_response


class RefusalError(LLMProviderError):
    """Raised when the model refuses to answer."""

    def __init__(self, message: str, reason: str = "", provider: str | None = None):
        super().__init__(message, provider=provider, retriable=False)
        self.reason = reason


class UnknownModelError(LookupError):
    """Raised when a model identifier cannot be resolved to a provider."""


class MissingCredentialError(LookupError):
    """Raised when no credential is available for a provider."""
