#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Crash Result Catcher - 連接調試模式的 Chrome，從結果橫幅擷取最新的 crash 結果

去重只看 gameId：游標與最新一筆不同才算新結果。輪詢一次只跑一個 tick，
前一個 tick 完成後才排下一個，不會在同一個連線上並行讀 DOM。
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from crash_catcher.config import Settings
from crash_catcher.errors import ConnectivityError, ExtractionError
from crash_catcher.utils import PlaywrightUtils, maybe_await

# DOM 選擇器（改動視為版本變更）
BANNER_SELECTOR = "#crash-banner"
ITEM_SELECTOR = "div.flex.items-center.justify-center.gap-1.px-2.h-full.cursor-pointer"
GAME_ID_SELECTOR = "span.text-tertiary.font-semibold"
MULTIPLIER_SELECTOR = "span.font-extrabold"

SNAPSHOT_SCRIPT = """
(sel) => {
  const banner = document.querySelector(sel.banner);
  if (!banner) {
    return { found: false, items: [] };
  }
  const textOf = (el) => {
    const t = el && el.textContent ? el.textContent.trim() : '';
    return t || null;
  };
  let nodes = Array.from(banner.querySelectorAll(sel.item));
  // 最新結果永遠在容器最後面
  if (sel.lastOnly && nodes.length > 0) {
    nodes = [nodes[nodes.length - 1]];
  }
  const items = nodes.map((item) => ({
    gameId: textOf(item.querySelector(sel.gameId)),
    multiplier: textOf(item.querySelector(sel.multiplier)),
    raw: (item.textContent || '').trim(),
  }));
  return { found: true, items };
}
"""

BALANCE_SCRIPT = """
() => {
  const parse = (text) => {
    const n = parseFloat((text || '').replace(/[$,]/g, '').trim());
    return isNaN(n) ? null : n;
  };

  // 1. 餘額欄位
  const balanceDiv = document.querySelector('div.flex.w-0.flex-auto.items-center.truncate.font-extrabold');
  if (balanceDiv) {
    const n = parse(balanceDiv.textContent);
    if (n !== null) return n;
  }

  // 2. 幣別圖示旁的數字
  const coinImages = Array.from(document.querySelectorAll('img[src*="USDT"], img[src*="coin"]'));
  for (const img of coinImages) {
    const container = img.closest('div.flex.items-center');
    const div = container ? container.querySelector('div.font-extrabold') : null;
    if (div) {
      const text = div.textContent || '';
      if (text.includes('$') || /^[\\d,]+\\.?\\d*$/.test(text.trim())) {
        const n = parse(text);
        if (n !== null) return n;
      }
    }
  }

  // 3. 任何看起來像金額的粗體數字
  for (const el of document.querySelectorAll('div.font-extrabold')) {
    const text = el.textContent || '';
    if (/^\\$?[\\d,]+\\.?\\d*$/.test(text.trim())) {
      const n = parse(text);
      if (n !== null) return n;
    }
  }
  return null;
}
"""


@dataclass(frozen=True)
class CrashResult:
    """一局 crash 結果；multiplier 保留原字串不轉數字"""
    game_id: str
    multiplier: str
    raw: str = ""

    @classmethod
    def from_snapshot(cls, item: Any) -> Optional["CrashResult"]:
        """從頁面快照建立記錄，缺 gameId 或 multiplier 回傳 None"""
        if not isinstance(item, dict):
            return None
        game_id = str(item.get("gameId") or "").strip()
        multiplier = str(item.get("multiplier") or "").strip()
        if not game_id or not multiplier:
            return None
        return cls(game_id=game_id, multiplier=multiplier, raw=str(item.get("raw") or "").strip())

    def to_dict(self) -> Dict[str, str]:
        return {"gameId": self.game_id, "multiplier": self.multiplier, "raw": self.raw}


ResultCallback = Callable[[CrashResult], Union[None, Awaitable[None]]]


class MonitorHandle:
    """輪詢的取消把手；cancel 只阻止之後的 tick，進行中的 tick 會自然完成"""

    def __init__(self):
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sleep(self, seconds: float) -> bool:
        """等待下一個 tick；被取消時提早返回 True"""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """等待輪詢結束，逾時回傳 False"""
        if self._task is None:
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)


@dataclass
class MonitoringSession:
    """一次輪詢的狀態：游標只由驅動它的輪詢迴圈修改"""
    interval_ms: int
    handle: MonitorHandle
    last_game_id: Optional[str] = None
    last_error: Optional[str] = None
    emitted: int = 0


class CrashResultCatcher:
    """結果擷取引擎"""

    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None):
        self.settings = settings
        self.logger = logger or logging.getLogger("crash-catcher.catcher")
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.page: Optional[Page] = None
        self.stats = {
            "start_time": time.time(),
            "ticks": 0,
            "extraction_errors": 0,
            "results_emitted": 0,
            "callback_errors": 0,
        }

    @property
    def is_connected(self) -> bool:
        return self.page is not None

    def _require_page(self) -> Page:
        if self.page is None:
            raise ConnectivityError("Not connected to Chrome. Call connect() first.")
        return self.page

    def _matches_target(self, url: str) -> bool:
        patterns = self.settings.page_match
        return bool(patterns) and all(p in url for p in patterns)

    async def connect(self, endpoint: Optional[str] = None) -> bool:
        """連接到調試端點並選定目標頁面"""
        endpoint = endpoint or self.settings.endpoint_url
        if self.browser is not None:
            await self.disconnect()

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.connect_over_cdp(endpoint)

            contexts = self.browser.contexts
            pages = [p for ctx in contexts for p in ctx.pages]
            target_pages = [p for p in pages if self._matches_target(p.url)]

            if target_pages:
                self.page = target_pages[0]
                self.logger.info(f"Found target page: {self.page.url}")
            elif pages:
                # 頁面可能還沒導航完成，先用第一個頁面
                self.page = pages[0]
                self.logger.warning(f"No crash page found, using first available page: {self.page.url}")
            else:
                context = contexts[0] if contexts else await self.browser.new_context()
                self.page = await context.new_page()
                self.logger.warning("No crash page found, opened a new blank page")
        except PlaywrightError as e:
            self.logger.error(f"Failed to connect to Chrome: {e}")
            await self.disconnect()
            raise ConnectivityError(f"Failed to connect to Chrome at {endpoint}: {e}") from e

        self.logger.info("Connected to Chrome browser")
        return True

    async def await_banner_visible(self, timeout_ms: int = 10000) -> bool:
        """等待結果橫幅出現"""
        page = self._require_page()
        try:
            await page.wait_for_selector(BANNER_SELECTOR, state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ExtractionError(f"Crash banner not visible after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise ConnectivityError(f"Lost connection to page: {e}") from e
        return True

    def _selector_args(self, last_only: bool) -> Dict[str, Any]:
        return {
            "banner": BANNER_SELECTOR,
            "item": ITEM_SELECTOR,
            "gameId": GAME_ID_SELECTOR,
            "multiplier": MULTIPLIER_SELECTOR,
            "lastOnly": last_only,
        }

    async def _snapshot(self, last_only: bool) -> Dict[str, Any]:
        page = self._require_page()
        await self.await_banner_visible()
        snapshot = await PlaywrightUtils.safe_evaluate(page, SNAPSHOT_SCRIPT, self._selector_args(last_only))
        return snapshot if isinstance(snapshot, dict) else {"found": False, "items": []}

    async def extract_latest(self) -> CrashResult:
        """取最新一筆（容器內最後一個項目）；任何欄位缺失都視為錯誤"""
        snapshot = await self._snapshot(last_only=True)
        if not snapshot.get("found"):
            raise ExtractionError("Crash banner container not found")

        items = snapshot.get("items") or []
        if not items:
            raise ExtractionError("No crash results found in history bar")

        result = CrashResult.from_snapshot(items[-1])
        if result is None:
            raise ExtractionError("Could not extract crash result from history bar")
        return result

    async def extract_all(self) -> List[CrashResult]:
        """依文件順序取所有結果，格式不完整的項目直接略過"""
        snapshot = await self._snapshot(last_only=False)
        results: List[CrashResult] = []
        for item in snapshot.get("items") or []:
            result = CrashResult.from_snapshot(item)
            if result is not None:
                results.append(result)
        return results

    async def get_balance(self) -> float:
        """讀取帳戶餘額"""
        page = self._require_page()
        balance = await PlaywrightUtils.safe_evaluate(page, BALANCE_SCRIPT)
        if balance is None:
            raise ExtractionError("Could not extract account balance from page")
        try:
            return float(balance)
        except (TypeError, ValueError) as e:
            raise ExtractionError(f"Unexpected balance value: {balance!r}") from e

    def poll_loop(self, on_new_result: ResultCallback, interval_ms: Optional[int] = None,
                  initial_cursor: Optional[str] = None) -> MonitoringSession:
        """
        啟動輪詢，回傳 MonitoringSession（含取消把手）

        第一個 tick 立即執行，之後每次在前一個 tick 完成後等 interval_ms。
        """
        interval = interval_ms or self.settings.monitor_interval_ms
        session = MonitoringSession(interval_ms=interval, handle=MonitorHandle(), last_game_id=initial_cursor)
        task = asyncio.get_running_loop().create_task(self._run_poll_loop(session, on_new_result))
        session.handle._attach(task)
        return session

    async def _run_poll_loop(self, session: MonitoringSession, on_new_result: ResultCallback) -> None:
        handle = session.handle
        self.logger.info(f"[POLL] started with {session.interval_ms}ms interval")
        while not handle.cancelled:
            await self._poll_once(session, on_new_result)
            if await handle.sleep(session.interval_ms / 1000.0):
                break
        self.logger.info(f"[POLL] stopped, {session.emitted} new result(s) this session")

    async def _poll_once(self, session: MonitoringSession, on_new_result: ResultCallback) -> None:
        self.stats["ticks"] += 1
        try:
            result = await self.extract_latest()
        except Exception as e:
            # 單次擷取失敗不影響輪詢
            self.stats["extraction_errors"] += 1
            self.logger.debug(f"Monitoring error: {e}")
            return

        if result.game_id == session.last_game_id:
            return

        session.last_game_id = result.game_id
        session.emitted += 1
        self.stats["results_emitted"] += 1
        try:
            await maybe_await(on_new_result(result))
        except Exception as e:
            self.stats["callback_errors"] += 1
            session.last_error = str(e)
            self.logger.exception(f"[POLL] Result handler failed for game {result.game_id}: {e}")

    async def disconnect(self) -> None:
        """釋放連線（不會關閉 Chrome 本身）"""
        browser, playwright = self.browser, self.playwright
        self.browser = None
        self.page = None
        self.playwright = None

        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                self.logger.debug(f"Browser disconnect error: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as e:
                self.logger.debug(f"Playwright stop error: {e}")
            if browser is not None:
                self.logger.info("Disconnected from Chrome browser")

    def get_stats(self) -> Dict[str, Any]:
        """取得統計資訊"""
        uptime = time.time() - self.stats["start_time"]
        return {
            **self.stats,
            "uptime_seconds": round(uptime, 1),
            "uptime": str(timedelta(seconds=int(uptime))),
            "is_connected": self.is_connected,
        }
