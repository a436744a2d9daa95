import os

import pytest

from fitnessmate_proxy.config import DEFAULT_ALLOWED_ORIGINS, DEFAULT_UPSTREAM_URL, Settings

_VARS = [
    "OPENROUTER_API_KEY",
    "OPENROUTER_URL",
    "PROXY_ALLOWED_ORIGINS",
    "PROXY_CORS_MODE",
    "PROXY_RETRY_BUDGET",
    "PROXY_ERROR_PASSTHROUGH",
    "PROXY_TIMEOUT_S",
    "PROXY_CLOSE_CONNECTIONS",
    "PORT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes straight into os.environ
    for name in _VARS:
        os.environ.pop(name, None)


def test_defaults_from_empty_env(tmp_path):
    s = Settings.from_env(env_dir=tmp_path)
    assert s.api_key == ""
    assert not s.has_api_key
    assert s.upstream_url == DEFAULT_UPSTREAM_URL
    assert s.allowed_origins == DEFAULT_ALLOWED_ORIGINS
    assert s.cors_mode == "allowlist"
    assert s.retry_budget == 1
    assert s.timeout_s == 60.0
    assert s.port == 5501


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENROUTER_API_KEY", " sk-live ")
    monkeypatch.setenv("OPENROUTER_URL", "https://api.openrouter.ai/api/v1/chat/completions")
    monkeypatch.setenv("PROXY_ALLOWED_ORIGINS", "https://a.test, https://b.test,")
    monkeypatch.setenv("PROXY_CORS_MODE", "ECHO")
    monkeypatch.setenv("PROXY_RETRY_BUDGET", "3")
    monkeypatch.setenv("PROXY_CLOSE_CONNECTIONS", "no")
    monkeypatch.setenv("PORT", "8080")
    s = Settings.from_env(env_dir=tmp_path)
    assert s.api_key == "sk-live"
    assert s.upstream_url.startswith("https://api.openrouter.ai")
    assert s.allowed_origins == ("https://a.test", "https://b.test")
    assert s.cors_mode == "echo"
    assert s.retry_budget == 3
    assert s.close_connections is False
    assert s.port == 8080


def test_malformed_numbers_fall_back(monkeypatch, tmp_path):
    monkeypatch.setenv("PROXY_RETRY_BUDGET", "lots")
    monkeypatch.setenv("PROXY_TIMEOUT_S", "soon")
    s = Settings.from_env(env_dir=tmp_path)
    assert s.retry_budget == 1
    assert s.timeout_s == 60.0


def test_dotenv_file_is_loaded(tmp_path):
    (tmp_path / ".env").write_text("OPENROUTER_API_KEY=sk-from-file\n", encoding="utf-8")
    s = Settings.from_env(env_dir=tmp_path)
    assert s.api_key == "sk-from-file"


def test_real_env_wins_over_dotenv(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text("OPENROUTER_API_KEY=sk-from-file\n", encoding="utf-8")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-from-env")
    assert Settings.from_env(env_dir=tmp_path).api_key == "sk-from-env"


def test_unknown_modes_are_rejected():
    with pytest.raises(ValueError):
        Settings(cors_mode="strict")
    with pytest.raises(ValueError):
        Settings(error_passthrough="xml")


def test_negative_retry_budget_clamps():
    assert Settings(retry_budget=-2).retry_budget == 0


def test_non_positive_timeout_falls_back():
    assert Settings(timeout_s=0).timeout_s == 60.0
    assert Settings(timeout_s=-3).timeout_s == 60.0
    assert Settings(timeout_s=0.5).timeout_s == 0.5


def test_negative_preview_clamps():
    assert Settings(preview_chars=-10).preview_chars == 0
