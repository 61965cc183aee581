import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    debug_endpoints: bool = Field(False, alias="LEARNING_GPS_DEBUG_ENDPOINTS")
    database_url: Optional[str] = Field(None, alias="LEARNING_GPS_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LEARNING_GPS_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LEARNING_GPS_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LEARNING_GPS_DATABASE_ECHO")
    text_generation_backend: Literal["off", "openai", "http"] = Field(
        "off",
        alias="LEARNING_GPS_TEXT_GENERATION_BACKEND",
    )
    text_generation_model: str = Field("gpt-4o-mini", alias="LEARNING_GPS_TEXT_GENERATION_MODEL")
    text_generation_url: str = Field(
        "http://127.0.0.1:8001/generate",
        alias="LEARNING_GPS_TEXT_GENERATION_URL",
    )
    text_generation_timeout_ms: int = Field(8000, alias="LEARNING_GPS_TEXT_GENERATION_TIMEOUT_MS")
    max_active_plans: int = Field(3, alias="LEARNING_GPS_MAX_ACTIVE_PLANS")
    default_weekly_hours: float = Field(3.0, alias="LEARNING_GPS_DEFAULT_WEEKLY_HOURS")
    milestone_check_interval_weeks: int = Field(1, ge=1, alias="LEARNING_GPS_MILESTONE_CHECK_INTERVAL_WEEKS")
    milestone_session_ttl_seconds: int = Field(3600, alias="LEARNING_GPS_MILESTONE_SESSION_TTL_SECONDS")
    milestone_time_limit_seconds: int = Field(1200, alias="LEARNING_GPS_MILESTONE_TIME_LIMIT_SECONDS")
    velocity_answers_per_concept: float = Field(
        10.0,
        gt=0,
        alias="LEARNING_GPS_VELOCITY_ANSWERS_PER_CONCEPT",
    )

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[arg-type]
        if settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
            os.environ["OPENAI_API_KEY"] = settings.openai_api_key
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
