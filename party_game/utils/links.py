"""
Join link builder
生成玩家加入游戏的绝对链接
"""

from typing import Optional
from urllib.parse import quote

from party_game.core.config import settings


def build_join_url(game_id: str, base_url: Optional[str] = None, origin: Optional[str] = None) -> str:
    """
    `<base>/game/<id>`; the configured site URL wins over the request origin.
    """
    base = base_url or settings.SITE_URL or origin
    if not base:
        raise ValueError("No base URL configured and no request origin available")
    return f"{base.rstrip('/')}/game/{quote(game_id, safe='')}"
