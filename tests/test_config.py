"""
設定載入測試
"""
import pytest

from crash_catcher.config import DEFAULT_TARGET_URL, Settings

ENV_VARS = [
    "DEBUG_PORT", "CHROME_TARGET_URL", "MONITOR_INTERVAL", "CSV_RESULTS_DIR",
    "CLOSE_DEBUG_BROWSER_WHEN_BOT_STOP", "CHROME_PATH", "READY_MAX_ATTEMPTS", "READY_DELAY_MS",
    "BANNER_TIMEOUT_MS", "PAGE_MATCH", "HOST", "PORT", "AUTO_START", "SHUTDOWN_TIMEOUT", "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # 先 setenv 再 delenv，測試結束時 .env 載入的值也會被還原
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # 不讀取工作目錄下的 .env
    return str(tmp_path / "missing.env")


def test_defaults(clean_env):
    settings = Settings.from_env(clean_env)

    assert settings.debug_port == 9225
    assert settings.target_url == DEFAULT_TARGET_URL
    assert settings.monitor_interval_ms == 500
    assert settings.close_browser_on_stop is True
    assert settings.chrome_path is None
    assert settings.page_match == ("bc.game", "crash")
    assert settings.server_port == 8001
    assert settings.endpoint_url == "http://localhost:9225"


def test_overrides(clean_env, monkeypatch):
    monkeypatch.setenv("DEBUG_PORT", "9333")
    monkeypatch.setenv("MONITOR_INTERVAL", "250")
    monkeypatch.setenv("CSV_RESULTS_DIR", "/data/results")
    monkeypatch.setenv("PAGE_MATCH", "example.com, game ,")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env(clean_env)

    assert settings.debug_port == 9333
    assert settings.monitor_interval_ms == 250
    assert settings.results_dir == "/data/results"
    assert settings.page_match == ("example.com", "game")
    assert settings.log_level == "DEBUG"
    assert settings.endpoint_url == "http://localhost:9333"


@pytest.mark.parametrize("raw,expected", [("true", True), ("TRUE", True), ("false", False), ("1", False), ("yes", False)])
def test_close_browser_flag(clean_env, monkeypatch, raw, expected):
    monkeypatch.setenv("CLOSE_DEBUG_BROWSER_WHEN_BOT_STOP", raw)
    assert Settings.from_env(clean_env).close_browser_on_stop is expected


def test_env_file_is_loaded(clean_env, tmp_path):
    env_file = tmp_path / "test.env"
    env_file.write_text("DEBUG_PORT=9444\nAUTO_START=false\n")

    settings = Settings.from_env(str(env_file))

    assert settings.debug_port == 9444
    assert settings.auto_start is False


def test_invalid_integer(clean_env, monkeypatch):
    monkeypatch.setenv("DEBUG_PORT", "abc")
    with pytest.raises(ValueError, match="DEBUG_PORT"):
        Settings.from_env(clean_env)
