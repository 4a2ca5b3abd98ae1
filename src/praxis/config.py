"""Configuration settings for the application."""

from typing import Dict

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    DEFAULT_MODEL: str = "gpt-4o-mini"
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    TGI_ENDPOINT: str = "http://tgi:8080/generate"
    TRANSCRIPTION_MODEL: str = "whisper-1"
    VISION_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_TOKENS: int = 4096
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Orchestrator
    MAX_ITERATIONS: int = 4
    HISTORY_TURNS: int = 6
    INTENT_ANALYSIS: bool = False
    INTENT_FAILURE_POLICY: str = "degrade"  # Options: degrade, fail

    # Tool execution
    TOOL_TIMEOUT_SECONDS: float = 30.0
    TOOL_MAX_RETRIES: int = 0
    ENABLE_TOOL_CACHE: bool = True
    TOOL_CACHE_SCOPE: str = "run"  # Options: run, conversation
    TOOL_CACHE_TTL_SECONDS: float = 300.0
    TOOL_CACHE_MAX_ENTRIES: int = 128
    TOOL_APPROVAL_OVERRIDES: Dict[str, bool] = {}
    TOOL_OUTPUT_INLINE_MAX_CHARS: int = 4096
    TOOL_OUTPUT_INLINE_HARD_MAX_CHARS: int = 16384
    TOOL_OUTPUT_PREVIEW_CHARS: int = 1200

    # Web fetcher
    WEB_FETCH_CONTEXT_LENGTH: int = 100
    WEB_FETCH_MAX_CHARS: int = 20000
    WEB_FETCH_MAX_MEDIA: int = 5  # fetched images and audio described per page

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
