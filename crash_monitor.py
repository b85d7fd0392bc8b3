#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Crash Monitor - 不開 API，直接跑完整監控流程直到 Ctrl+C / SIGTERM
"""

import asyncio
import logging
import sys
from typing import Optional

from crash_catcher.config import Settings
from crash_catcher.errors import SessionStartError
from crash_catcher.session import build_coordinator
from crash_catcher.shutdown import ShutdownHandler

logger = logging.getLogger("crash-catcher.monitor")


async def main(settings: Optional[Settings] = None) -> int:
    """主程式入口"""
    settings = settings or Settings.from_env()

    print("=" * 80)
    print("Crash Result Catcher")
    print(f"Debug port: {settings.debug_port}  Interval: {settings.monitor_interval_ms}ms")
    print(f"Results dir: {settings.results_dir}")
    print("=" * 80)

    coordinator = build_coordinator(settings)
    shutdown_handler = ShutdownHandler(coordinator, timeout=settings.shutdown_timeout)
    shutdown_handler.install()

    try:
        await coordinator.start()
    except SessionStartError as e:
        if shutdown_handler.requested:
            # 啟動途中收到訊號，回滾已在 stop() 內完成
            await shutdown_handler.wait()
            logger.info(f"Startup interrupted by shutdown during {e.stage}")
            return 0
        logger.error(f"Monitor failed: {e}")
        return 1

    logger.info("Press Ctrl+C to stop")
    await shutdown_handler.wait()

    # 显示最终统计
    stats = coordinator.catcher.get_stats()
    print("\n" + "=" * 60)
    print("FINAL STATISTICS")
    print("=" * 60)
    print(f"Uptime: {stats['uptime']}")
    print(f"Poll Ticks: {stats['ticks']}")
    print(f"Extraction Errors: {stats['extraction_errors']}")
    print(f"New Results: {stats['results_emitted']}")
    print(f"Save Failures: {stats['callback_errors']}")
    print(f"CSV File: {coordinator.result_log.current_file_path()}")
    return 0


def run() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(main(settings)))


if __name__ == "__main__":
    run()
