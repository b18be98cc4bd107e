"""
Anonymous identity
匿名身份服务 - 为设备签发稳定的用户ID令牌并解析
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from party_game.core.config import settings
from party_game.schemas.common import IdentityToken

logger = logging.getLogger(__name__)


class IdentityService:
    """Issue and resolve anonymous bearer tokens"""

    TOKEN_TYPE = "anonymous"

    def create_token(self, user_id: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> IdentityToken:
        user_id = user_id or str(uuid.uuid4())
        expires_delta = expires_delta or timedelta(days=settings.IDENTITY_TOKEN_EXPIRE_DAYS)
        to_encode = {
            "sub": user_id,
            "type": self.TOKEN_TYPE,
            "exp": datetime.now(timezone.utc) + expires_delta,
        }
        encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
        return IdentityToken(
            user_id=user_id,
            access_token=encoded_jwt,
            expires_in=int(expires_delta.total_seconds()),
        )

    def resolve(self, token: Optional[str]) -> Optional[str]:
        """User id carried by a token, or None when it is missing or invalid"""
        if not token:
            return None
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError as e:
            logger.debug(f"Rejected identity token: {e}")
            return None
        if payload.get("type") != self.TOKEN_TYPE:
            return None
        return payload.get("sub")


identity_service = IdentityService()
