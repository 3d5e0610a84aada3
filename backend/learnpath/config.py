import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="LEARNPATH_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LEARNPATH_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LEARNPATH_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LEARNPATH_DATABASE_ECHO")
    schedule_cache_ttl_seconds: float = Field(300.0, ge=0.0, alias="LEARNPATH_SCHEDULE_CACHE_TTL_SECONDS")
    migration_reference_pace: int = Field(5, ge=1, alias="LEARNPATH_MIGRATION_REFERENCE_PACE")
    debug_endpoints: bool = Field(False, alias="LEARNPATH_DEBUG_ENDPOINTS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid learning path engine configuration: {exc}") from exc
