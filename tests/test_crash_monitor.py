"""
Crash Monitor 主程式測試 - 啟動失敗與啟動途中收到訊號
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import crash_monitor
from crash_catcher.errors import ConnectivityError, SessionStartError


def fake_coordinator(start_error=None):
    coordinator = MagicMock()
    coordinator.start = AsyncMock(side_effect=start_error)
    coordinator.catcher.get_stats.return_value = {
        "uptime": "0:00:05", "ticks": 10, "extraction_errors": 1,
        "results_emitted": 2, "callback_errors": 0,
    }
    coordinator.result_log.current_file_path.return_value = "/tmp/results/10-19.csv"
    return coordinator


def fake_handler(requested: bool):
    handler = MagicMock()
    handler.requested = requested
    handler.wait = AsyncMock()
    return handler


async def run_main(settings, coordinator, handler):
    with patch("crash_monitor.build_coordinator", return_value=coordinator), \
            patch("crash_monitor.ShutdownHandler", return_value=handler):
        return await crash_monitor.main(settings)


@pytest.mark.asyncio
async def test_clean_run_prints_statistics(settings, capsys):
    handler = fake_handler(requested=False)

    code = await run_main(settings, fake_coordinator(), handler)

    assert code == 0
    handler.install.assert_called_once()
    handler.wait.assert_awaited_once()
    assert "FINAL STATISTICS" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_start_failure_exits_nonzero(settings):
    error = SessionStartError("awaiting_readiness", ConnectivityError("port 9225 not available"))

    code = await run_main(settings, fake_coordinator(error), fake_handler(requested=False))

    assert code == 1


@pytest.mark.asyncio
async def test_signal_during_startup_exits_cleanly(settings):
    error = SessionStartError("awaiting_banner", None)
    handler = fake_handler(requested=True)

    code = await run_main(settings, fake_coordinator(error), handler)

    assert code == 0
    handler.wait.assert_awaited_once()
