import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = Field("INFO", alias="STUDYPLAN_LOG_LEVEL")
    schedule_cache_enabled: bool = Field(True, alias="STUDYPLAN_SCHEDULE_CACHE_ENABLED")
    schedule_cache_ttl_seconds: int = Field(120, alias="STUDYPLAN_SCHEDULE_CACHE_TTL_SECONDS")
    performance_store_path: Optional[str] = Field(None, alias="STUDYPLAN_PERFORMANCE_STORE_PATH")
    default_window_start: str = Field("09:00", alias="STUDYPLAN_DEFAULT_WINDOW_START")
    default_window_end: Optional[str] = Field(None, alias="STUDYPLAN_DEFAULT_WINDOW_END")
    default_block_minutes: int = Field(90, alias="STUDYPLAN_DEFAULT_BLOCK_MINUTES")
    default_break_minutes: int = Field(10, alias="STUDYPLAN_DEFAULT_BREAK_MINUTES")
    backlog_quota_ratio: float = Field(0.35, alias="STUDYPLAN_BACKLOG_QUOTA_RATIO")
    backlog_lookahead_days: int = Field(10, alias="STUDYPLAN_BACKLOG_LOOKAHEAD_DAYS")
    backlog_max_subjects_per_day: int = Field(2, alias="STUDYPLAN_BACKLOG_MAX_SUBJECTS_PER_DAY")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid study plan configuration: {exc}") from exc
