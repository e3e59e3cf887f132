"""Application configuration using Pydantic settings."""
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Dict, List, Literal, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment: dev (relaxed) vs prod (strict, fail fast on missing credentials)
    app_env: Literal["dev", "prod"] = Field(default="dev", description="APP_ENV: dev or prod")

    # Application
    app_name: str = "Storygate Generation Gateway"
    app_version: str = "1.0.0"
    debug: bool = False

    # API Keys
    gemini_api_key: Optional[str] = None  # Required for generation; required in prod (validated at startup)

    # Account store: sql (DATABASE_URL), redis (REDIS_URL) or memory (single process, tests)
    account_store_backend: Literal["sql", "redis", "memory"] = "sql"
    database_url: str = "sqlite:///./data/storygate.db"
    redis_url: str = "redis://localhost:6379/0"
    usage_retention_days: int = 35  # TTL on redis usage buckets

    # Quota. Env: PLAN_LIMITS='{"free": 2, "paid": 10}'
    plan_limits: Dict[str, int] = Field(default_factory=lambda: {"free": 2, "paid": 10})
    default_plan: str = "free"

    # Upstream models
    text_model: str = "gemini-2.5-flash"
    text_temperature: float = 0.9
    text_max_tokens: int = 2048
    image_model: str = "imagen-3.0-generate-002"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    default_voice: str = "Kore"
    audio_format: Literal["wav", "mp3"] = "wav"  # mp3 needs ffmpeg (pydub)

    # Bounded waits (seconds); keep below the hosting platform's own request timeout
    text_timeout_seconds: float = 20
    image_timeout_seconds: float = 28
    audio_timeout_seconds: float = 20

    # Result usability thresholds
    min_text_chars: int = 50
    min_audio_bytes: int = 512

    # Bearer token verification
    auth_jwt_secret: Optional[str] = None  # Unset -> every request is rejected with 401
    auth_jwt_algorithms: List[str] = Field(default_factory=lambda: ["HS256"])
    auth_jwt_audience: Optional[str] = None

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore"  # Ignore extra environment variables
    }


settings = Settings()
