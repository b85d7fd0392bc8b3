#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
結果 CSV 寫入 - 每天一個檔案（<月>-<日>.csv），只追加不改寫

欄位版面固定，下游依賴此格式：
    gameId,multiplier,timestamp
    123456,  2.34,  10:19T14:03:07
"""

import logging
import os
from datetime import datetime
from typing import Callable, Optional

from crash_catcher.errors import PersistenceError
from crash_catcher.result_catcher import CrashResult

CSV_HEADER = "gameId,multiplier,timestamp\n"
HEADER_TOKEN = "gameId"
MULTIPLIER_WIDTH = 7


def format_multiplier(multiplier: str) -> str:
    """左補空白到 7 字元，結尾若是倍率符號（x、×）則去掉"""
    padded = str(multiplier).rjust(MULTIPLIER_WIDTH)
    if padded and not padded[-1].isdigit():
        return padded[:-1]
    return padded


class CsvResultLog:
    """依日期分檔的結果記錄器；去重由呼叫端負責"""

    def __init__(self, results_dir: str, clock: Callable[[], datetime] = datetime.now,
                 logger: Optional[logging.Logger] = None):
        self.results_dir = results_dir
        self.clock = clock
        self.logger = logger or logging.getLogger("crash-catcher.csv")
        self.current_date: Optional[str] = None
        self.csv_file_path: Optional[str] = None

    def _date_key(self, now: datetime) -> str:
        return f"{now.month}-{now.day}"

    def _path_for(self, date_key: str) -> str:
        return os.path.join(self.results_dir, f"{date_key}.csv")

    def _format_timestamp(self, now: datetime) -> str:
        return now.strftime("%m:%dT%H:%M:%S")

    def _ensure_header(self, path: str) -> None:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
            if content.strip() and HEADER_TOKEN in content:
                return
            action = "Initialized"
        else:
            action = "Created"

        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(CSV_HEADER)
        self.logger.info(f"{action} {os.path.basename(path)} with headers")

    def _activate(self, date_key: str) -> None:
        try:
            if not os.path.isdir(self.results_dir):
                os.makedirs(self.results_dir, exist_ok=True)
                self.logger.info(f"Created results directory: {self.results_dir}")
            path = self._path_for(date_key)
            self._ensure_header(path)
        except OSError as e:
            raise PersistenceError(f"Cannot initialize results file for {date_key}: {e}") from e
        self.current_date = date_key
        self.csv_file_path = path

    def initialize(self) -> str:
        """建立目錄並準備今天的檔案"""
        self._activate(self._date_key(self.clock()))
        return self.csv_file_path

    def save(self, result: CrashResult) -> str:
        """追加一列；日期改變時先切換到新檔案"""
        now = self.clock()
        date_key = self._date_key(now)
        if date_key != self.current_date:
            switching = self.current_date is not None
            self._activate(date_key)
            if switching:
                self.logger.info(f"Switched to new date file: {os.path.basename(self.csv_file_path)}")

        multiplier = format_multiplier(result.multiplier)
        row = f"{result.game_id},{multiplier},  {self._format_timestamp(now)}\n"
        try:
            with open(self.csv_file_path, "a", encoding="utf-8", newline="") as f:
                f.write(row)
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.csv_file_path}: {e}") from e

        self.logger.info(f"Saved: Game {result.game_id} - Multiplier: {multiplier.strip()}")
        return row

    def last_game_id(self) -> Optional[str]:
        """今天檔案最後一筆的 gameId（用於重啟後接續去重）"""
        path = self._path_for(self._date_key(self.clock()))
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}") from e

        for line in reversed(lines):
            game_id = line.split(",", 1)[0].strip()
            if game_id and game_id != HEADER_TOKEN:
                return game_id
        return None

    def current_file_path(self) -> Optional[str]:
        return self.csv_file_path

    def results_directory(self) -> str:
        return self.results_dir
