"""
測試共用設定 - 路徑、設定物件與假的 Playwright 物件
"""
import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from crash_catcher.config import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug_port=9225,
        monitor_interval_ms=5,
        results_dir=str(tmp_path / "results"),
        ready_max_attempts=30,
        ready_delay_ms=0,
        banner_timeout_ms=1000,
        auto_start=False,
        shutdown_timeout=2.0,
    )


def snapshot(*items: Dict[str, Any], found: bool = True) -> Dict[str, Any]:
    """頁面快照（與 SNAPSHOT_SCRIPT 回傳格式相同）"""
    return {"found": found, "items": list(items)}


def item(game_id: Optional[str], multiplier: Optional[str], raw: str = "") -> Dict[str, Any]:
    return {"gameId": game_id, "multiplier": multiplier, "raw": raw or f"{game_id} {multiplier}"}


def make_page(url: str = "https://bc.game/en/game/crash?type=classic", evaluate_result: Any = None) -> MagicMock:
    page = MagicMock()
    page.url = url
    page.wait_for_selector = AsyncMock(return_value=None)
    page.evaluate = AsyncMock(return_value=evaluate_result)
    return page


def make_playwright(pages: List[MagicMock], contexts: Optional[List[MagicMock]] = None):
    """回傳 (async_playwright 替身, playwright, browser)"""
    if contexts is None:
        context = MagicMock()
        context.pages = pages
        context.new_page = AsyncMock(return_value=make_page(url="about:blank"))
        contexts = [context]

    browser = MagicMock()
    browser.contexts = contexts
    browser.close = AsyncMock()
    browser.new_context = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    factory = MagicMock()
    factory.return_value.start = AsyncMock(return_value=playwright)
    return factory, playwright, browser
