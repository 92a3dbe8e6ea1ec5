"""Application configuration utilities."""
from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json or the environment."""

    supabase_url: str = Field(..., alias="supabase_url")
    supabase_anon_key: str = Field(..., alias="supabase_anon_key")
    session_file: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=15.0)
    emit_local_session_as_initial_session: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @property
    def base_url(self) -> str:
        return self.supabase_url.rstrip("/")

    @property
    def resolved_session_path(self) -> Optional[Path]:
        """Return the absolute path of the session cache file, if one is configured."""
        if not self.session_file:
            return None
        return (Path(__file__).resolve().parents[1] / self.session_file).resolve()


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def _config_from_env() -> Dict[str, Any]:
    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise RuntimeError(
            "Missing SUPABASE_URL/SUPABASE_ANON_KEY. Set them in the environment or copy"
            f" config.example.json to {_config_path()}."
        )
    contents: Dict[str, Any] = {"supabase_url": url, "supabase_anon_key": anon_key}
    session_file = os.getenv("SANTACALL_SESSION_FILE")
    if session_file:
        contents["session_file"] = session_file
    log_level = os.getenv("SANTACALL_LOG_LEVEL")
    if log_level:
        contents["log_level"] = log_level
    return contents


@lru_cache
def load_config() -> AppConfig:
    """Load configuration from config.json, falling back to environment variables."""

    config_file = _config_path()
    if config_file.exists():
        contents: Dict[str, Any] = json.loads(config_file.read_text())
    else:
        contents = _config_from_env()
    return AppConfig(**contents)
