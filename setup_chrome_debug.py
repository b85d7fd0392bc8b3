#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Chrome 調試模式設定助手
啟動（或沿用已在執行的）調試模式 Chrome，之後由 server / crash_monitor 附加上去
"""

import asyncio
import logging
import sys

from crash_catcher.chrome_manager import ChromeManager
from crash_catcher.config import Settings
from crash_catcher.errors import CatcherError


async def start_chrome_with_debug(settings: Settings) -> bool:
    """啟動 Chrome 並等待調試埠就緒"""
    manager = ChromeManager(settings)

    try:
        handle = await manager.launch()
        await manager.wait_until_ready(
            max_attempts=settings.ready_max_attempts,
            delay_ms=settings.ready_delay_ms,
        )
    except CatcherError as e:
        print(f"❌ 啟動 Chrome 失敗: {e}")
        print("請手動啟動 Chrome 並添加以下參數：")
        print(f"--remote-debugging-port={settings.debug_port} --user-data-dir={manager.user_data_dir}")
        return False

    if handle.owned_by_us:
        print(f"✅ Chrome 調試模式已啟動: {handle.executable_path}")
        print(f"🌐 已自動開啟: {settings.target_url}")
    else:
        print("✅ Chrome 調試模式已在運行")
    print(f"🌐 調試頁面: {manager.endpoint_url}")

    print("\n📝 接下來的步驟：")
    print(f"1. 在 {settings.debug_port} 視窗確認已開啟 crash 頁面")
    print("2. 保持該視窗開啟")
    print("3. 運行：python server.py 或 python crash_monitor.py")
    print("   （此 Chrome 不是由監控程式啟動的，停止時不會被關閉）")
    return True


def main():
    """主程式"""
    print("🔧 Chrome 調試模式設定助手")
    print("=" * 50)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    ok = asyncio.run(start_chrome_with_debug(Settings.from_env()))
    if ok:
        print("\n🎉 設定完成！")
    else:
        print("\n❌ 設定失敗，請手動操作")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
