"""
Common Pydantic schemas
通用响应模型 - 错误、健康检查和匿名身份
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ErrorResponse(BaseModel):
    """Body returned for every GameError"""
    status: ResponseStatus = ResponseStatus.ERROR
    message: str = Field(..., description="可直接展示给主持人/玩家的错误信息")
    error_code: Optional[str] = Field(None, description="validation_error, precondition_failed, ...")
    error_details: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class SystemHealth(BaseModel):
    """系统健康状态"""
    status: str = Field(..., description="healthy, degraded, error")
    timestamp: datetime = Field(default_factory=datetime.now)
    services: Dict[str, Any] = Field(default_factory=dict, description="database, redis, realtime")


class IdentityToken(BaseModel):
    """匿名身份令牌"""
    user_id: str = Field(..., description="稳定的匿名用户ID")
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="有效期(秒)")
