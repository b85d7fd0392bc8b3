#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Chrome 行程管理 - 尋找、啟動、就緒檢查與關閉調試模式的 Chrome

只關閉自己啟動的 Chrome；若調試埠上已有實例，直接附加並標記為外部實例。
"""

import asyncio
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Set

import aiohttp
import psutil

from crash_catcher.config import Settings
from crash_catcher.errors import ConnectivityError, ProcessError

WINDOWS_CHROME_PATHS = [
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    os.path.join(os.path.expanduser("~"), "AppData", "Local", "Google", "Chrome", "Application", "chrome.exe"),
]
MAC_CHROME_PATHS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    os.path.expanduser("~/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"),
]
LINUX_CHROME_PATHS = [
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
]


@dataclass(frozen=True)
class BrowserProcessHandle:
    """調試模式 Chrome 的狀態；owned_by_us 建立後不再變動"""
    debug_port: int
    executable_path: Optional[str]
    user_data_dir: str
    owned_by_us: bool


class ChromeManager:
    """Chrome 行程生命週期管理器"""

    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None,
                 settle_delay: float = 2.0):
        self.settings = settings
        self.logger = logger or logging.getLogger("crash-catcher.chrome")
        self.debug_port = settings.debug_port
        self.user_data_dir = os.path.join(tempfile.gettempdir(), f"chrome_debug_{self.debug_port}")
        self.settle_delay = settle_delay
        self._handle: Optional[BrowserProcessHandle] = None
        self._process: Optional[subprocess.Popen] = None

    @property
    def handle(self) -> Optional[BrowserProcessHandle]:
        return self._handle

    @property
    def endpoint_url(self) -> str:
        return f"http://localhost:{self.debug_port}"

    def _candidate_paths(self) -> List[str]:
        paths: List[str] = []
        if self.settings.chrome_path:
            paths.append(self.settings.chrome_path)
        if sys.platform.startswith("win"):
            paths.extend(WINDOWS_CHROME_PATHS)
        elif sys.platform == "darwin":
            paths.extend(MAC_CHROME_PATHS)
        else:
            paths.extend(LINUX_CHROME_PATHS)
        return paths

    def locate(self) -> Optional[str]:
        """尋找 Chrome 瀏覽器路徑，找不到回傳 None"""
        for path in self._candidate_paths():
            if os.path.exists(path):
                return path
        return None

    def build_args(self, executable: str) -> List[str]:
        """Chrome 調試參數（目標網址必須放最後）"""
        return [
            executable,
            f"--remote-debugging-port={self.debug_port}",
            f"--user-data-dir={self.user_data_dir}",
            "--lang=en-US",
            "--accept-lang=en-US,en",
            "--disable-translate",
            "--disable-features=TranslateUI",
            "--disable-sync",
            "--no-first-run",
            "--no-default-browser-check",
            self.settings.target_url,
        ]

    async def is_endpoint_reachable(self, port: Optional[int] = None, timeout_ms: int = 1000) -> bool:
        """調試端點是否有回應（任何 HTTP 回應都算可連線）"""
        url = f"http://localhost:{port or self.debug_port}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout_ms / 1000.0)):
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
            return False

    def _reset_user_data_dir(self) -> None:
        # 清掉舊的 profile，避免殘留語言設定
        if os.path.exists(self.user_data_dir):
            self.logger.info("Clearing cached Chrome preferences...")
            shutil.rmtree(self.user_data_dir, ignore_errors=True)
        os.makedirs(self.user_data_dir, exist_ok=True)

    def _spawn(self, args: List[str]) -> subprocess.Popen:
        kwargs = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
            "close_fds": True,
        }
        # 與父行程脫鉤，父行程掛掉 Chrome 仍存活
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        return subprocess.Popen(args, **kwargs)

    async def launch(self) -> BrowserProcessHandle:
        """啟動 Chrome；埠上已有實例則直接附加"""
        if await self.is_endpoint_reachable():
            if self._handle is not None and self._handle.owned_by_us:
                self.logger.info(f"Reusing Chrome started earlier on port {self.debug_port}")
                return self._handle
            self.logger.info(f"Chrome is already running on port {self.debug_port}, using existing instance")
            self._handle = BrowserProcessHandle(
                debug_port=self.debug_port,
                executable_path=None,
                user_data_dir=self.user_data_dir,
                owned_by_us=False,
            )
            return self._handle

        self.logger.info(f"Starting Chrome with remote debugging on port {self.debug_port}...")

        executable = self.locate()
        if not executable:
            self.logger.error("Could not find Chrome executable. Install Google Chrome or set CHROME_PATH.")
            raise ProcessError("Chrome executable not found")
        self.logger.info(f"Found Chrome at: {executable}")

        self._reset_user_data_dir()

        try:
            self._process = self._spawn(self.build_args(executable))
        except OSError as e:
            self.logger.error(f"Error starting Chrome: {e}")
            raise ProcessError(f"Failed to start Chrome: {e}") from e

        self._handle = BrowserProcessHandle(
            debug_port=self.debug_port,
            executable_path=executable,
            user_data_dir=self.user_data_dir,
            owned_by_us=True,
        )
        self.logger.info(f"Chrome started (PID: {self._process.pid}), opened {self.settings.target_url}")

        # 就緒與否交給 wait_until_ready 判斷
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        return self._handle

    async def wait_until_ready(self, max_attempts: int = 30, delay_ms: int = 2000) -> bool:
        """輪詢調試埠直到可連線"""
        for attempt in range(max_attempts):
            if await self.is_endpoint_reachable():
                self.logger.info("Chrome debug port is available")
                return True
            if attempt < max_attempts - 1:
                self.logger.info(f"Waiting for Chrome to be ready... ({attempt + 1}/{max_attempts})")
                await asyncio.sleep(delay_ms / 1000.0)
        raise ConnectivityError(f"Chrome debug port {self.debug_port} did not become available in time")

    def _find_port_pids(self) -> Set[int]:
        pids: Set[int] = set()
        try:
            for conn in psutil.net_connections(kind="tcp"):
                if (conn.pid and conn.laddr and conn.laddr.port == self.debug_port
                        and conn.status == psutil.CONN_LISTEN):
                    pids.add(conn.pid)
        except psutil.AccessDenied:
            # 部分平台需權限才能讀連線表，改用命令列比對
            flag = f"--remote-debugging-port={self.debug_port}"
            for proc in psutil.process_iter(["pid", "cmdline"]):
                cmdline = " ".join(proc.info.get("cmdline") or [])
                if flag in cmdline:
                    pids.add(proc.info["pid"])
        return pids

    def _kill_tree(self, pid: int) -> int:
        try:
            parent = psutil.Process(pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return 0

        killed = 0
        for proc in procs:
            try:
                proc.kill()
                killed += 1
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                self.logger.warning(f"No permission to kill PID {proc.pid}: {e}")
        return killed

    async def terminate(self) -> None:
        """關閉 Chrome（只關閉自己啟動的），永不拋出例外"""
        handle = self._handle
        if handle is None or not handle.owned_by_us:
            self.logger.info(f"Chrome on port {self.debug_port} was not started by us, not closing it.")
            return

        self.logger.info(f"Closing Chrome on port {self.debug_port}...")
        try:
            pids = self._find_port_pids()
            if not pids:
                self.logger.info("Chrome already closed or not found")
                return

            killed = sum(self._kill_tree(pid) for pid in sorted(pids))
            self.logger.info(f"Chrome closed ({killed} process(es))")
        except Exception as e:
            self.logger.warning(f"Chrome termination incomplete: {e}")
        finally:
            # 關閉後不再持有 handle，下次 launch 重新判斷歸屬
            self._handle = None
            self._process = None
