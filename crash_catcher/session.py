#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Session Coordinator - 把 Chrome 管理、結果擷取與 CSV 寫入串成一個可啟停的監控流程

狀態：IDLE → LAUNCHING → AWAITING_READINESS → CONNECTING → AWAITING_BANNER
      → MONITORING → SHUTTING_DOWN → IDLE
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from crash_catcher.chrome_manager import ChromeManager
from crash_catcher.config import Settings
from crash_catcher.csv_log import CsvResultLog
from crash_catcher.errors import CatcherError, ConnectivityError, SessionStartError
from crash_catcher.result_catcher import CrashResult, CrashResultCatcher, MonitoringSession

# 停止時等待進行中 tick 的上限（秒）
TICK_DRAIN_TIMEOUT = 15.0


class SessionState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    AWAITING_READINESS = "awaiting_readiness"
    CONNECTING = "connecting"
    AWAITING_BANNER = "awaiting_banner"
    MONITORING = "monitoring"
    SHUTTING_DOWN = "shutting_down"


class SessionCoordinator:
    """監控流程協調器；同一時間只允許一個非 IDLE 的流程"""

    def __init__(self, settings: Settings, chrome: ChromeManager, catcher: CrashResultCatcher,
                 result_log: CsvResultLog, logger: Optional[logging.Logger] = None):
        self.settings = settings
        self.chrome = chrome
        self.catcher = catcher
        self.result_log = result_log
        self.logger = logger or logging.getLogger("crash-catcher.session")
        # 啟動時就決定，之後不再讀設定
        self.close_browser_on_stop = settings.close_browser_on_stop
        self.state = SessionState.IDLE
        self.monitor: Optional[MonitoringSession] = None
        self.last_start_error: Optional[str] = None
        self._lock = asyncio.Lock()
        # 進行中的啟動流程；stop() 會取消它
        self._start_task: Optional[asyncio.Task] = None
        self._start_stage = SessionState.IDLE
        self._start_cancelled = False
        # 由 start_monitor 在 IDLE 連線上開的輪詢
        self._monitor_from_idle = False

    @property
    def is_active(self) -> bool:
        return self.state != SessionState.IDLE

    async def start(self) -> None:
        """依序啟動 Chrome、等待就緒、連線、等待橫幅，然後開始輪詢並寫入 CSV"""
        if self.is_active or self.catcher.is_connected:
            self.logger.info("Previous session still active, stopping it first")
            await self.stop()

        self._start_cancelled = False
        self._start_stage = SessionState.IDLE
        task = asyncio.get_running_loop().create_task(self._run_start())
        self._start_task = task
        try:
            await task
        except asyncio.CancelledError:
            if not self._start_cancelled:
                raise
            stage = self._start_stage.value
            self.last_start_error = f"Start cancelled during {stage}"
            raise SessionStartError(stage, CatcherError("Start cancelled by stop request")) from None
        finally:
            if self._start_task is task:
                self._start_task = None

        self.last_start_error = None
        self.logger.info(f"Monitoring started, saving to {self.result_log.current_file_path()}")

    def _enter(self, stage: SessionState) -> None:
        self._start_stage = stage
        self.state = stage

    async def _run_start(self) -> None:
        async with self._lock:
            self.logger.info("=== Crash Result Catcher ===")
            stage = SessionState.LAUNCHING
            try:
                self._enter(stage)
                await self.chrome.launch()

                stage = SessionState.AWAITING_READINESS
                self._enter(stage)
                await self.chrome.wait_until_ready(
                    max_attempts=self.settings.ready_max_attempts,
                    delay_ms=self.settings.ready_delay_ms,
                )

                stage = SessionState.CONNECTING
                self._enter(stage)
                await self.catcher.connect(self.chrome.endpoint_url)

                stage = SessionState.AWAITING_BANNER
                self._enter(stage)
                await self.catcher.await_banner_visible(self.settings.banner_timeout_ms)
                self.logger.info("Crash banner found")

                stage = SessionState.MONITORING
                self._start_stage = stage
                self.result_log.initialize()
                cursor = self.result_log.last_game_id()
                if cursor:
                    self.logger.info(f"Resuming after last logged game {cursor}")
                self.monitor = self.catcher.poll_loop(
                    self.result_log.save,
                    interval_ms=self.settings.monitor_interval_ms,
                    initial_cursor=cursor,
                )
                self._monitor_from_idle = False
                self.state = SessionState.MONITORING
            except asyncio.CancelledError:
                self.logger.info(f"Start cancelled during {stage.value}, rolling back")
                await self._abort_start()
                raise
            except Exception as e:
                self.last_start_error = str(e)
                self.logger.error(f"Start failed during {stage.value}: {e}")
                await self._abort_start()
                raise SessionStartError(stage.value, e) from e

    async def _cancel_start(self) -> None:
        task = self._start_task
        if task is None or task.done():
            return
        self.logger.info(f"Start in progress ({self._start_stage.value}), cancelling it")
        self._start_cancelled = True
        task.cancel()
        await asyncio.wait({task})

    async def _abort_start(self) -> None:
        try:
            await self.catcher.disconnect()
        except Exception as e:
            self.logger.error(f"Error disconnecting from Chrome: {e}")
        await self._maybe_close_browser()
        self.state = SessionState.IDLE

    async def _maybe_close_browser(self) -> None:
        if self.close_browser_on_stop:
            await self.chrome.terminate()
        else:
            self.logger.info("Chrome browser left open (CLOSE_DEBUG_BROWSER_WHEN_BOT_STOP=false)")

    async def _cancel_monitor(self) -> bool:
        monitor, self.monitor = self.monitor, None
        if monitor is None:
            return False
        monitor.handle.cancel()
        if not await monitor.handle.wait(TICK_DRAIN_TIMEOUT):
            self.logger.warning("In-flight poll tick did not finish in time")
        self.logger.info("Stopped monitoring")
        return True

    async def stop(self) -> None:
        """取消輪詢、斷線，並依設定關閉 Chrome；重複呼叫無副作用"""
        # 啟動中的流程會自行回滾（斷線、依設定關閉 Chrome）
        await self._cancel_start()

        async with self._lock:
            # connect_only 之後也可能是 IDLE 但持有連線
            if not self.is_active and not self.catcher.is_connected:
                return

            self.logger.info("Shutting down...")
            self.state = SessionState.SHUTTING_DOWN
            try:
                await self._cancel_monitor()
                try:
                    await self.catcher.disconnect()
                except Exception as e:
                    self.logger.error(f"Error disconnecting from Chrome: {e}")
                await self._maybe_close_browser()
            finally:
                self._monitor_from_idle = False
                self.state = SessionState.IDLE
            self.logger.info("Session stopped")

    # ---- 控制介面操作 ----

    async def connect_only(self) -> bool:
        """只連線，不啟動 Chrome 也不開始輪詢"""
        return await self.catcher.connect(self.chrome.endpoint_url)

    async def fetch_last_result(self, save: bool = False) -> Dict[str, Any]:
        result = await self.catcher.extract_latest()
        payload: Dict[str, Any] = {"data": result.to_dict()}
        if save:
            try:
                self.result_log.save(result)
                payload["saved"] = True
            except Exception as e:
                self.logger.error(f"Failed to save result {result.game_id}: {e}")
                payload["saved"] = False
                payload["saveError"] = str(e)
        return payload

    async def fetch_all_results(self) -> List[CrashResult]:
        return await self.catcher.extract_all()

    async def fetch_balance(self) -> float:
        return await self.catcher.get_balance()

    async def start_monitor(self, save: bool = False) -> MonitoringSession:
        """在現有連線上開始輪詢（會先取消前一個輪詢）"""
        if not self.catcher.is_connected:
            raise ConnectivityError("Not connected to Chrome. Call connect() first.")

        async with self._lock:
            await self._cancel_monitor()

            def on_result(result: CrashResult) -> None:
                self.logger.info(f"New crash result: {result.game_id} {result.multiplier}")
                if save:
                    self.result_log.save(result)

            self.monitor = self.catcher.poll_loop(on_result, interval_ms=self.settings.monitor_interval_ms)
            if self.state == SessionState.IDLE:
                self._monitor_from_idle = True
            self.state = SessionState.MONITORING
        return self.monitor

    async def stop_monitor(self) -> bool:
        """只停止輪詢，保留連線；start() 開的流程仍視為進行中，需 stop() 拆除"""
        async with self._lock:
            cancelled = await self._cancel_monitor()
            if cancelled and self._monitor_from_idle:
                self._monitor_from_idle = False
                self.state = SessionState.IDLE
            return cancelled

    def status(self) -> Dict[str, Any]:
        monitor = self.monitor
        handle = self.chrome.handle
        return {
            "state": self.state.value,
            "connected": self.catcher.is_connected,
            "monitoring": monitor is not None and monitor.handle.running,
            "last_game_id": monitor.last_game_id if monitor else None,
            "last_error": (monitor.last_error if monitor else None) or self.last_start_error,
            "browser_owned": handle.owned_by_us if handle else None,
            "csv_file": self.result_log.current_file_path(),
            "stats": self.catcher.get_stats(),
        }


def build_coordinator(settings: Settings) -> SessionCoordinator:
    """明確組裝四個元件"""
    chrome = ChromeManager(settings)
    catcher = CrashResultCatcher(settings)
    result_log = CsvResultLog(settings.results_dir)
    return SessionCoordinator(settings, chrome, catcher, result_log)
