"""
關機處理測試
"""
import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from crash_catcher.shutdown import ShutdownHandler


def coordinator_with_stop(stop):
    coordinator = MagicMock()
    coordinator.stop = stop
    return coordinator


class TestShutdownHandler:
    @pytest.mark.asyncio
    async def test_repeated_requests_stop_once(self):
        coordinator = coordinator_with_stop(AsyncMock())
        handler = ShutdownHandler(coordinator, timeout=1)

        first = handler.request_shutdown(signal.SIGINT)
        second = handler.request_shutdown(signal.SIGTERM)
        await handler.shutdown()
        await handler.wait()

        assert first is second
        coordinator.stop.assert_awaited_once()
        assert handler.done.is_set()

    @pytest.mark.asyncio
    async def test_timeout_still_completes(self):
        async def hang():
            await asyncio.sleep(10)

        handler = ShutdownHandler(coordinator_with_stop(hang), timeout=0.05)

        await asyncio.wait_for(handler.shutdown(), timeout=2)
        assert handler.done.is_set()

    @pytest.mark.asyncio
    async def test_stop_error_still_completes(self):
        handler = ShutdownHandler(coordinator_with_stop(AsyncMock(side_effect=RuntimeError("boom"))), timeout=1)

        await handler.shutdown()
        assert handler.done.is_set()

    @pytest.mark.asyncio
    async def test_signal_triggers_shutdown(self):
        handler = ShutdownHandler(coordinator_with_stop(AsyncMock()), timeout=1)
        handler.install()

        loop = asyncio.get_running_loop()
        try:
            loop.call_soon(handler._on_signal, signal.SIGTERM, None)
            await asyncio.wait_for(handler.wait(), timeout=2)
            handler.coordinator.stop.assert_awaited_once()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                assert loop.remove_signal_handler(sig)
