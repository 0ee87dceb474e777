from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

from .turn import EngineTiming

load_dotenv()

def _split_csv_ints(s: str) -> List[int]:
    out = []
    for part in (s or "").split(","):
        part = part.strip()
        if part:
            out.append(int(part))
    return out

def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false)")

def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise RuntimeError(f"{name} must be an integer") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value

@dataclass(frozen=True)
class Settings:
    bot_token: str
    admin_ids: List[int]
    database_url: str
    gemini_api_key: str | None
    llm_model: str
    ui_default_lang: str = "en"  # en/uk
    narration_enabled: bool = True
    dictation_enabled: bool = True
    tts_lang: str = "en"
    stt_lang: str = "en-US"
    dictation_timeout_s: float = 30.0
    session_quota: int = 5
    base_bonus: int = 5
    penalty_per_wrong: int = 1
    hint_after: int = 2
    default_difficulty: str = "easy"  # easy|medium|hard
    timing: EngineTiming = field(default_factory=EngineTiming)

def load_settings() -> Settings:
    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required")

    admin_ids = _split_csv_ints(os.getenv("ADMIN_IDS", ""))
    database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/app.db")
    gemini_api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY") or None
    llm_model = os.getenv("LLM_MODEL", "gemini-2.5-flash").strip()
    ui_default_lang = os.getenv("UI_DEFAULT_LANG", "en").strip().lower()
    if ui_default_lang not in {"en", "uk"}:
        raise RuntimeError("UI_DEFAULT_LANG must be en or uk")
    default_difficulty = os.getenv("DEFAULT_DIFFICULTY", "easy").strip().lower()
    if default_difficulty not in {"easy", "medium", "hard"}:
        raise RuntimeError("DEFAULT_DIFFICULTY must be easy, medium, or hard")

    return Settings(
        bot_token=bot_token,
        admin_ids=admin_ids,
        database_url=database_url,
        gemini_api_key=gemini_api_key,
        llm_model=llm_model,
        ui_default_lang=ui_default_lang,
        narration_enabled=_env_bool("NARRATION_ENABLED", True),
        dictation_enabled=_env_bool("DICTATION_ENABLED", True),
        tts_lang=os.getenv("TTS_LANG", "en").strip() or "en",
        stt_lang=os.getenv("STT_LANG", "en-US").strip() or "en-US",
        dictation_timeout_s=float(_env_int("DICTATION_TIMEOUT_S", 30, minimum=1)),
        session_quota=_env_int("SESSION_QUOTA", 5, minimum=1),
        base_bonus=_env_int("BASE_BONUS", 5),
        penalty_per_wrong=_env_int("PENALTY_PER_WRONG", 1),
        hint_after=_env_int("HINT_AFTER", 2, minimum=1),
        default_difficulty=default_difficulty,
    )
