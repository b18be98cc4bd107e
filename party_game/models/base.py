"""
Shared column helpers
模型公共字段 - 主键和创建时间均在 Python 端生成
"""

import uuid
from datetime import datetime, timezone


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
