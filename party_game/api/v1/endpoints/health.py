"""
Health check endpoints
健康检查端点
"""

from fastapi import APIRouter

from party_game.core.config import settings
from party_game.core.database import health_check as db_health_check
from party_game.core.redis_client import redis_health_check
from party_game.realtime.change_feed import change_feed
from party_game.schemas.common import SystemHealth
from party_game.websocket.connection_manager import connection_manager

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint
    基础健康检查端点
    """
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
    }


@router.get("/health/detailed", response_model=SystemHealth)
async def detailed_health_check():
    """
    Database, redis and realtime status
    数据库、Redis和实时推送状态
    """
    database = await db_health_check()
    redis = await redis_health_check()

    overall = "healthy"
    if database.get("status") != "healthy":
        overall = "error"
    elif redis.get("status") not in ("healthy", "disabled"):
        # Redis 只用于跨进程转发，失败时降级
        overall = "degraded"

    return SystemHealth(
        status=overall,
        services={
            "database": database,
            "redis": redis,
            "realtime": {
                "node_id": change_feed.node_id,
                "subscriptions": change_feed.subscription_count,
                "connections": connection_manager.get_connection_count(),
                "games": connection_manager.get_game_count(),
            },
        },
    )
