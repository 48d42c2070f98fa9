"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    # ── Query limits ─────────────────────────────────────
    max_query_rows: int = 1000
    default_query_limit: int = 1000

    # ── Timeouts ─────────────────────────────────────────
    query_timeout_seconds: float = 30.0
    connection_test_timeout_seconds: float = 10.0

    # ── Record store / audit ─────────────────────────────
    record_store_path: str = str(_PROJECT_ROOT / "config" / "workspace.yml")
    audit_database_url: str = ""  # empty -> audit events go to the log only

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llm_model: str = ""  # empty -> provider default
    llm_max_tokens: int = 1024

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    class Config:
        env_prefix = "QUERYGATE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
