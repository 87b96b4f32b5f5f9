from __future__ import annotations

import logging
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Brain
    brain_url: str = ""
    brain_model: str = ""
    max_tool_rounds: int = 6

    # Edge functions (call-now, place-details, call-status)
    functions_base: str = ""
    supabase_anon_key: str = ""
    dev_token: str = ""
    call_source: str = "jason"

    # Resolution
    reference_timezone: str = "America/New_York"
    known_businesses_path: str = ""

    http_timeout_seconds: float = 20.0
    log_level: str = "INFO"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.supabase_anon_key:
            headers["Authorization"] = f"Bearer {self.supabase_anon_key}"
            headers["apikey"] = self.supabase_anon_key
        if self.dev_token:
            headers["x-dev-token"] = self.dev_token
        return headers

    def validate_startup(self) -> List[str]:
        """Return configuration warnings; nothing here is fatal."""
        warnings: List[str] = []
        if not self.brain_url:
            warnings.append("BRAIN_URL is not set; every turn will fail with a transport error.")
        if not self.functions_base:
            warnings.append("FUNCTIONS_BASE is not set; calls and place lookups are disabled.")
        if not self.supabase_anon_key:
            warnings.append("SUPABASE_ANON_KEY is not set; edge function requests are unauthenticated.")
        for warning in warnings:
            logger.warning("config.warning %s", warning)
        return warnings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
