"""
API v1 router
API v1 路由配置
"""

from fastapi import APIRouter

from party_game.api.v1.endpoints import editor, games, health, identity, leaderboard, players, websocket

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(identity.router, prefix="/identity", tags=["identity"])
api_router.include_router(games.router, prefix="/games", tags=["games"])
api_router.include_router(editor.router, tags=["editor"])
api_router.include_router(players.router, tags=["players"])
api_router.include_router(leaderboard.router, tags=["leaderboard"])
api_router.include_router(websocket.router, prefix="/ws", tags=["websocket"])
