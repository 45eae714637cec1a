"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    PORT: int = 5000
    LOG_LEVEL: str = "INFO"

    # Footium live API
    MATCH_STREAM_BASE_URL: str = "https://live.api.footium.club/api/sse"
    GRAPHQL_URL: str = "https://live.api.footium.club/api/graphql"

    # Stream ingestion
    STREAM_TIMEOUT_SECONDS: float = 30.0  # Max wait for the first qualifying message
    STREAM_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # Identity lookups (GraphQL)
    IDENTITY_TIMEOUT_SECONDS: float = 10.0
    IDENTITY_MAX_CONCURRENCY: int = 8
    IDENTITY_CACHE_TTL_SECONDS: int = 3600  # 0 = no cross-request cache
    IDENTITY_CACHE_MAXSIZE: int = 10000  # LRU bound across players and clubs

    # Workflow feature flags
    RESOLVE_NAMES: bool = True
    GENERATE_IMAGE: bool = False
    IMAGE_FAILURE_FATAL: bool = False  # False = digest is returned without imageUrl

    # Completion provider selection (openai | gemini)
    COMPLETION_PROVIDER: str = "openai"
    COMPLETION_TIMEOUT_SECONDS: float = 60.0
    COMPLETION_TEMPERATURE: float = 0.7
    COMPLETION_MAX_RETRIES: int = 0  # 0 = single attempt
    COMPLETION_MAX_TOKENS: int = 800

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_IMAGE_MODEL: str = "dall-e-3"
    OPENAI_IMAGE_SIZE: str = "1024x1024"

    # Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"

    # Prompt directives
    DIGEST_STYLE_DIRECTIVE: str = (
        "Digest this passage of play, abstracted from a football match, "
        "into a coherent narrative in the voice of a live match commentator."
    )
    IMAGE_STYLE_DIRECTIVE: str = (
        "A dramatic, painterly illustration of this football match moment, "
        "no text or logos:"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
