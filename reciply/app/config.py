from __future__ import annotations

from typing import Literal, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    APP_ENV: str = "local"
    STORAGE_BACKEND: Literal["supabase", "memory"] = "supabase"

    SUPABASE_URL: Optional[AnyUrl] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"

    SUPADATA_API_KEY: Optional[str] = None
    SUPADATA_BASE_URL: str = "https://api.supadata.ai/v1"

    # Shared secret for /jobs/process and /billing/reset; unset disables them.
    INTERNAL_API_TOKEN: Optional[str] = None

    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
    )

    FETCH_TIMEOUT_SECONDS: float = 60.0
    ANALYZE_TIMEOUT_SECONDS: float = 90.0
    JOB_TIMEOUT_SECONDS: float = 240.0
    URL_RESOLVE_TIMEOUT_SECONDS: float = 5.0
    EXTRACTION_WORKERS: int = Field(default=2, ge=1)

    FREE_PLAN_LIMIT: int = 10
    PRO_PLAN_LIMIT: int = 100
    MIN_RECIPE_CONFIDENCE: float = Field(default=0.3, ge=0.0, le=1.0)


settings = Settings()
