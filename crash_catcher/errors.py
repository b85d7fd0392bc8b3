#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
錯誤分類 - 行程、連線、擷取、寫檔四類
"""

from typing import Optional


class CatcherError(Exception):
    """所有錯誤的基底類別"""


class ProcessError(CatcherError):
    """Chrome 行程錯誤（找不到執行檔、啟動失敗）"""


class ConnectivityError(CatcherError):
    """調試端點無法連線、等待就緒逾時、連線中斷"""


class ExtractionError(CatcherError):
    """頁面擷取失敗（找不到容器/欄位、等待橫幅逾時）"""


class PersistenceError(CatcherError):
    """結果檔無法開啟或寫入"""


class SessionStartError(CatcherError):
    """啟動流程在某個階段失敗"""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.cause = cause
        detail = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Session start failed during {stage}: {detail}")
