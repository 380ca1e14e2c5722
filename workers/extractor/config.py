# workers/extractor/config.py
"""
Configuration for the extraction worker trigger.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class WorkerConfig:
    """Configuration for the extraction worker."""

    worker_id: str = field(default_factory=lambda: os.getenv("WORKER_ID", f"extractor-{os.getpid()}"))

    # "supabase" in deployments; "memory" only makes sense for smoke runs
    storage_backend: str = field(default_factory=lambda: os.getenv("STORAGE_BACKEND", "supabase"))

    # Keep going after a job that fails or was already processed
    continue_on_error: bool = field(
        default_factory=lambda: os.getenv("WORKER_CONTINUE_ON_ERROR", "true").lower() == "true",
    )

    supabase_url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""))
    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.storage_backend not in ("supabase", "memory"):
            errors.append(f"STORAGE_BACKEND must be 'supabase' or 'memory', got {self.storage_backend!r}")
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required")
            if not self.supabase_key:
                errors.append("SUPABASE_SERVICE_ROLE_KEY is required")
        if not self.gemini_api_key:
            errors.append("GEMINI_API_KEY is required")

        return errors


def get_config() -> WorkerConfig:
    """Get worker configuration from environment."""
    return WorkerConfig()
