"""
FastAPI 应用配置

配置 CORS、路由注册。
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from .routers import servers

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - API 路由
    """
    config = get_config()

    app = FastAPI(
        title="craftwatch",
        description="游戏服务器在线状态监控 API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册路由
    app.include_router(servers.router)

    @app.get("/api/health", tags=["health"])
    async def health():
        """存活检查"""
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup_event():
        logger.info("craftwatch API starting up...")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("craftwatch API shutting down...")

    return app


# 默认应用实例
app = create_app()
