"""
Application configuration settings
应用配置设置 - 派对游戏主持服务
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings for the party game host service"""

    # Project
    PROJECT_NAME: str = "party-game-host"
    VERSION: str = "1.0.0"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]
    WORKERS: int = 1

    # Database configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./party_game.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 3
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # Recycle connections every 30 minutes

    # Redis configuration
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5

    # Change feed
    CHANGE_FEED_REDIS_ENABLED: bool = False  # 多进程部署时通过 Redis 转发行变更
    CHANGE_FEED_CHANNEL: str = "party_game:changes"
    CHANGE_FEED_QUEUE_SIZE: int = 1000

    # Identity tokens (anonymous device identities)
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    IDENTITY_TOKEN_EXPIRE_DAYS: int = 30

    # Public base URL used for join links; falls back to the request origin
    SITE_URL: Optional[str] = None

    # Game rules
    REWARD_PER_CORRECT_VOTE: int = 3
    MIN_ACTIVE_TEAMS: int = 2
    DEFAULT_MAX_TEAMS: int = 4
    DEFAULT_TEAM_SEED_COUNT: int = 4
    NICKNAME_MAX_LENGTH: int = 20

    # Backstop polling intervals (seconds)
    LEADERBOARD_REFRESH_INTERVAL: float = 5.0

    # WebSocket configuration
    MAX_WEBSOCKET_CONNECTIONS: int = 200
    WEBSOCKET_PING_INTERVAL: int = 20
    WEBSOCKET_PING_TIMEOUT: int = 10
    WEBSOCKET_MESSAGE_QUEUE_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
