import pytest

from drillbot.config import load_settings

_KEYS = [
    "BOT_TOKEN", "ADMIN_IDS", "DATABASE_URL", "GOOGLE_API_KEY", "GEMINI_API_KEY", "LLM_MODEL",
    "UI_DEFAULT_LANG", "NARRATION_ENABLED", "DICTATION_ENABLED", "TTS_LANG", "STT_LANG", "DICTATION_TIMEOUT_S", "SESSION_QUOTA",
    "BASE_BONUS", "PENALTY_PER_WRONG", "HINT_AFTER", "DEFAULT_DIFFICULTY",
]

@pytest.fixture
def env(monkeypatch):
    # keep a developer's .env out of the picture
    monkeypatch.setattr("drillbot.config.load_dotenv", lambda *a, **k: False)
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    return monkeypatch

def test_defaults(env):
    settings = load_settings()
    assert settings.bot_token == "123:abc"
    assert settings.admin_ids == []
    assert settings.database_url == "sqlite+aiosqlite:///./data/app.db"
    assert settings.gemini_api_key is None
    assert settings.session_quota == 5
    assert settings.base_bonus == 5
    assert settings.penalty_per_wrong == 1
    assert settings.narration_enabled and settings.dictation_enabled
    assert settings.timing.feedback_min_s == 1.2
    assert settings.timing.reveal_delay_s == 2.5
    assert settings.stt_lang == "en-US"
    assert settings.dictation_timeout_s == 30.0

def test_overrides(env):
    env.setenv("ADMIN_IDS", "1, 2")
    env.setenv("GEMINI_API_KEY", "k")
    env.setenv("NARRATION_ENABLED", "off")
    env.setenv("SESSION_QUOTA", "8")
    env.setenv("DEFAULT_DIFFICULTY", "Hard")
    env.setenv("UI_DEFAULT_LANG", "uk")
    env.setenv("STT_LANG", "uk-UA")
    env.setenv("DICTATION_TIMEOUT_S", "12")
    settings = load_settings()
    assert settings.admin_ids == [1, 2]
    assert settings.gemini_api_key == "k"
    assert settings.narration_enabled is False
    assert settings.session_quota == 8
    assert settings.default_difficulty == "hard"
    assert settings.ui_default_lang == "uk"
    assert settings.stt_lang == "uk-UA"
    assert settings.dictation_timeout_s == 12.0

@pytest.mark.parametrize(
    "key,value",
    [
        ("BOT_TOKEN", ""),
        ("SESSION_QUOTA", "0"),
        ("SESSION_QUOTA", "many"),
        ("NARRATION_ENABLED", "maybe"),
        ("UI_DEFAULT_LANG", "fr"),
        ("DEFAULT_DIFFICULTY", "extreme"),
    ],
)
def test_invalid_values_raise_runtime_error(env, key, value):
    env.setenv(key, value)
    with pytest.raises(RuntimeError):
        load_settings()
