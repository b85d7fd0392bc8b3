#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
關機處理 - SIGINT/SIGTERM 與明確 stop 走同一條拆除流程，且只執行一次
"""

import asyncio
import logging
import signal
from typing import Optional

from crash_catcher.session import SessionCoordinator


class ShutdownHandler:
    """收到訊號時停止監控流程"""

    def __init__(self, coordinator: SessionCoordinator, timeout: float = 15.0,
                 logger: Optional[logging.Logger] = None):
        self.coordinator = coordinator
        self.timeout = timeout
        self.logger = logger or logging.getLogger("crash-catcher.shutdown")
        self.done = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def install(self) -> None:
        """在目前的 event loop 上註冊訊號"""
        self._loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                # Windows 的 event loop 不支援 add_signal_handler
                signal.signal(sig, self._on_signal)

    @property
    def requested(self) -> bool:
        return self._task is not None

    def _on_signal(self, signum, frame) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.request_shutdown, signum)

    def request_shutdown(self, sig=None) -> asyncio.Task:
        """排程關機；多次觸發只會得到同一個 task"""
        if self._task is None:
            name = signal.Signals(sig).name if sig is not None else "request"
            self.logger.info(f"Shutdown requested ({name})")
            self._task = asyncio.get_running_loop().create_task(self._perform_shutdown())
        return self._task

    async def shutdown(self) -> None:
        await self.request_shutdown()

    async def _perform_shutdown(self) -> None:
        try:
            await asyncio.wait_for(self.coordinator.stop(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"Shutdown did not complete within {self.timeout}s")
        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}")
        finally:
            self.done.set()

    async def wait(self) -> None:
        await self.done.wait()
