#!/usr/bin/env python3
"""
通用工具函數 - Playwright evaluate 包裝與回呼處理
"""

import inspect
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from crash_catcher.errors import ExtractionError


class PlaywrightUtils:
    """Playwright 操作工具類"""

    @staticmethod
    async def safe_evaluate(page: Page, script: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """
        page.evaluate 包裝，失敗時轉成 ExtractionError

        Args:
            page: Playwright 頁面對象
            script: JavaScript 代碼
            args: 參數字典，會作為單一對象傳遞給 JS

        Returns:
            JavaScript 執行結果
        """
        try:
            if args is None:
                return await page.evaluate(script)
            # 統一打包成單個參數傳遞
            return await page.evaluate(script, args)
        except PlaywrightError as e:
            raise ExtractionError(f"Playwright evaluate failed: {e}") from e


async def maybe_await(value: Any) -> Any:
    """回呼可以是同步或 async，統一處理"""
    if inspect.isawaitable(value):
        return await value
    return value
