from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

APP_VERSION = "0.3.0"
REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

TRUTHY = {"1", "true", "yes", "on"}


def resolve_db_path() -> str:
    db_env = (os.getenv("DIARY_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "diarycompanion.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


def is_dev_mode() -> bool:
    value = os.getenv("DIARY_DEV_MODE", "").strip().lower()
    alt = os.getenv("DEV_MODE", "").strip().lower()
    return value in TRUTHY or alt in TRUTHY


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class Settings:
    db_path: str
    secret_key: str
    storage_password: str
    kdf_iterations: int
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_model: str
    llm_max_tokens: int
    llm_temperature: float
    llm_timeout: float
    min_analysis_chars: int
    lexicon_path: Optional[str]
    dev_mode: bool
    log_level: str


def load_settings() -> Settings:
    return Settings(
        db_path=resolve_db_path(),
        secret_key=os.getenv("DIARY_SECRET_KEY", "CHANGE_ME"),
        storage_password=os.getenv("DIARY_STORAGE_PASSWORD", "LOCAL_STORAGE_PASSWORD_CHANGE_ME"),
        kdf_iterations=_int_env("DIARY_KDF_ITERATIONS", 100_000),
        llm_api_key=(os.getenv("DIARY_LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or "").strip() or None,
        llm_base_url=os.getenv("DIARY_LLM_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        llm_model=os.getenv("DIARY_LLM_MODEL", "gpt-3.5-turbo"),
        llm_max_tokens=_int_env("DIARY_LLM_MAX_TOKENS", 200),
        llm_temperature=_float_env("DIARY_LLM_TEMPERATURE", 0.8),
        llm_timeout=_float_env("DIARY_LLM_TIMEOUT", 30.0),
        min_analysis_chars=_int_env("DIARY_MIN_ANALYSIS_CHARS", 20),
        lexicon_path=(os.getenv("DIARY_LEXICON_PATH") or "").strip() or None,
        dev_mode=is_dev_mode(),
        log_level=os.getenv("DIARY_LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
