#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
設定載入 - 從 .env / 環境變數建立 Settings，建構時傳給各元件
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

DEFAULT_TARGET_URL = "https://bc.game/en/game/crash?type=classic"


def _env_bool(name: str, default: str) -> bool:
    # 與原本行為一致：只有字串 "true" 才算開啟
    return os.getenv(name, default).strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """執行期設定"""
    debug_port: int = 9225
    target_url: str = DEFAULT_TARGET_URL
    monitor_interval_ms: int = 500
    results_dir: str = field(default_factory=lambda: os.path.join(os.getcwd(), "results"))
    close_browser_on_stop: bool = True
    chrome_path: Optional[str] = None

    # 啟動流程
    ready_max_attempts: int = 30
    ready_delay_ms: int = 2000
    banner_timeout_ms: int = 40000
    page_match: Tuple[str, ...] = ("bc.game", "crash")

    # 控制介面
    server_host: str = "0.0.0.0"
    server_port: int = 8001
    auto_start: bool = True
    shutdown_timeout: float = 15.0
    log_level: str = "INFO"

    @property
    def endpoint_url(self) -> str:
        return f"http://localhost:{self.debug_port}"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """載入 .env 後讀取環境變數"""
        load_dotenv(env_file)

        page_match = tuple(
            p.strip() for p in os.getenv("PAGE_MATCH", "bc.game,crash").split(",") if p.strip()
        )

        return cls(
            debug_port=_env_int("DEBUG_PORT", 9225),
            target_url=os.getenv("CHROME_TARGET_URL") or DEFAULT_TARGET_URL,
            monitor_interval_ms=_env_int("MONITOR_INTERVAL", 500),
            results_dir=os.getenv("CSV_RESULTS_DIR") or os.path.join(os.getcwd(), "results"),
            close_browser_on_stop=_env_bool("CLOSE_DEBUG_BROWSER_WHEN_BOT_STOP", "true"),
            chrome_path=os.getenv("CHROME_PATH") or None,
            ready_max_attempts=_env_int("READY_MAX_ATTEMPTS", 30),
            ready_delay_ms=_env_int("READY_DELAY_MS", 2000),
            banner_timeout_ms=_env_int("BANNER_TIMEOUT_MS", 40000),
            page_match=page_match,
            server_host=os.getenv("HOST", "0.0.0.0"),
            server_port=_env_int("PORT", 8001),
            auto_start=_env_bool("AUTO_START", "true"),
            shutdown_timeout=float(os.getenv("SHUTDOWN_TIMEOUT", "15")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
