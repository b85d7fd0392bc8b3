#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Crash Result Catcher Server - FastAPI 控制介面
提供啟動/停止監控、單次查詢與手動輪詢 API
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from crash_catcher.config import Settings
from crash_catcher.session import SessionCoordinator, build_coordinator
from crash_catcher.shutdown import ShutdownHandler

logger = logging.getLogger("crash-catcher.server")

SERVICE_NAME = "Crash Result Catcher API"
SERVICE_VERSION = "1.0.0"


# Pydantic models
class CrashResultModel(BaseModel):
    gameId: str
    multiplier: str
    raw: str = ""


class MonitorResponse(BaseModel):
    success: bool
    message: str
    csvSaving: bool
    stopEndpoint: str = "POST /crash/monitor/stop"


def _failure(e: Exception) -> Dict[str, Any]:
    return {"success": False, "error": str(e)}


def create_app(settings: Optional[Settings] = None,
               coordinator: Optional[SessionCoordinator] = None) -> FastAPI:
    """建立 FastAPI 應用（測試時可注入 coordinator）"""
    settings = settings or Settings.from_env()
    coordinator = coordinator or build_coordinator(settings)
    shutdown_handler = ShutdownHandler(coordinator, timeout=settings.shutdown_timeout)

    app = FastAPI(
        title=SERVICE_NAME,
        description="Crash 結果擷取與記錄服務",
        version=SERVICE_VERSION,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.shutdown_handler = shutdown_handler

    # 根路由
    @app.get("/")
    async def root():
        """根路由 - 服務資訊"""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    # 健康檢查
    @app.get("/health")
    async def health_check():
        """健康檢查端點"""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "session": coordinator.status(),
        }

    # 啟動完整監控流程
    @app.post("/start")
    async def start_session():
        try:
            await coordinator.start()
            return {"success": True, "message": "Crash result monitoring started"}
        except Exception as e:
            logger.error(f"Start error: {e}")
            return _failure(e)

    # 停止監控流程
    @app.post("/stop")
    async def stop_session():
        try:
            await coordinator.stop()
            return {"success": True, "message": "Crash result monitoring stopped"}
        except Exception as e:
            logger.error(f"Stop error: {e}")
            return _failure(e)

    # 只連線
    @app.get("/crash/connect")
    async def connect():
        try:
            await coordinator.connect_only()
            return {"success": True, "message": "Connected to Chrome browser"}
        except Exception as e:
            return _failure(e)

    # 最新一筆結果（save=true 時寫入 CSV）
    @app.get("/crash/last-result")
    async def get_last_result(save: Optional[str] = Query(None, description="true 時寫入 CSV")):
        try:
            payload = await coordinator.fetch_last_result(save=(save == "true"))
            return {"success": True, **payload}
        except Exception as e:
            return _failure(e)

    # 橫幅上所有結果
    @app.get("/crash/all-results")
    async def get_all_results():
        try:
            results = await coordinator.fetch_all_results()
            data: List[CrashResultModel] = [CrashResultModel(**r.to_dict()) for r in results]
            return {"success": True, "data": data}
        except Exception as e:
            return _failure(e)

    # 帳戶餘額
    @app.get("/crash/balance")
    async def get_balance():
        try:
            balance = await coordinator.fetch_balance()
            return {"success": True, "balance": balance}
        except Exception as e:
            return _failure(e)

    # 手動開始輪詢
    @app.post("/crash/monitor")
    async def start_monitoring(save: Optional[str] = Query(None, description="true 時寫入 CSV")):
        save_to_csv = save == "true"
        try:
            await coordinator.start_monitor(save=save_to_csv)
        except Exception as e:
            return _failure(e)
        return MonitorResponse(
            success=True,
            message=(
                "Monitoring started. "
                + ("Results will be saved to CSV." if save_to_csv else "Check console for results.")
            ),
            csvSaving=save_to_csv,
        )

    # 停止手動輪詢
    @app.post("/crash/monitor/stop")
    async def stop_monitoring():
        try:
            if await coordinator.stop_monitor():
                return {"success": True, "message": "Monitoring stopped"}
            return {"success": False, "message": "No active monitoring to stop"}
        except Exception as e:
            return _failure(e)

    # 啟動事件
    @app.on_event("startup")
    async def startup_event():
        """應用啟動事件"""
        logger.info("Crash Result Catcher Server starting up...")
        if not settings.auto_start:
            logger.info("AUTO_START=false, waiting for POST /start")
            return
        try:
            await coordinator.start()
        except Exception as e:
            # 啟動失敗不影響 API 服務
            logger.error(f"Failed to start crash result monitoring: {e}")

    # 關閉事件
    @app.on_event("shutdown")
    async def shutdown_event():
        """應用關閉事件"""
        logger.info("Crash Result Catcher Server shutting down...")
        await shutdown_handler.shutdown()
        logger.info("Server shutdown completed")

    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    run()
