"""
Anonymous identity endpoints
匿名身份端点 - 设备首次访问时领取稳定的用户ID
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from party_game.api.deps import get_identity
from party_game.schemas.common import IdentityToken
from party_game.services.identity import identity_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/anonymous", response_model=IdentityToken)
async def issue_anonymous_identity(user_id: Optional[str] = Depends(get_identity)):
    """
    签发匿名身份令牌

    已携带有效令牌时续期同一个 user_id
    """
    token = identity_service.create_token(user_id)
    if user_id is None:
        logger.info(f"Issued new anonymous identity {token.user_id}")
    return token


@router.get("/me")
async def whoami(user_id: Optional[str] = Depends(get_identity)):
    return {"user_id": user_id}
