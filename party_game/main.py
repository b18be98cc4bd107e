"""
FastAPI main application entry point
派对游戏主持服务主应用入口
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from party_game.api.v1.api import api_router
from party_game.core.config import settings
from party_game.core.database import close_db, init_db
from party_game.core.exceptions import GameError
from party_game.core.redis_client import close_redis, init_redis, redis_manager
from party_game.realtime.change_feed import change_feed
from party_game.schemas.common import ErrorResponse
from party_game.websocket.connection_manager import connection_manager


def configure_logging():
    """Console plus logs/app.log, configured once at import"""
    log_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "logs")
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper()),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(os.path.join(log_dir, "app.log"), encoding="utf-8"),
        ],
    )
    # 减少日志噪音
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: database, redis bridge and websocket cleanup"""
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})...")

    await init_db()
    # 单进程部署不需要 Redis
    if settings.CHANGE_FEED_REDIS_ENABLED:
        await init_redis()
        await change_feed.start_bridge(redis_manager)

    logger.info("Application startup completed")

    yield

    logger.info("Shutting down application...")
    try:
        await connection_manager.close_all()
        await change_feed.stop_bridge()
        change_feed.close_all()
        await close_redis()
        await close_db()
        logger.info("Application shutdown completed")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title="Party Game Host",
    description="Team party game host service - 团队派对游戏主持服务",
    version=settings.VERSION,
    lifespan=lifespan,
    # 禁用尾部斜杠重定向，避免 307 Redirect 导致 Authorization header 丢失
    redirect_slashes=False
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    """领域错误统一转为 ErrorResponse"""
    error = ErrorResponse(message=exc.message, error_code=exc.code, error_details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=error.model_dump(mode="json"))


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "message": "Party Game Host API",
        "status": "running",
        "version": settings.VERSION
    }
