"""
API dependencies
API 依赖注入 - 存储、服务和调用者身份
"""

from typing import Optional

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from party_game.core.database import db_manager
from party_game.core.exceptions import PermissionDenied
from party_game.realtime.change_feed import change_feed
from party_game.services.game import GameStateMachine
from party_game.services.game_editor import GameEditor
from party_game.services.identity import identity_service
from party_game.services.lobby import LobbyService
from party_game.services.queries import GameReader
from party_game.services.round_actions import RoundActions
from party_game.services.scoring import ScoreService
from party_game.services.store import GameStore

# auto_error=False: 没有 token 时由我们统一返回 401
security = HTTPBearer(auto_error=False)


def get_store() -> GameStore:
    if not db_manager.session_factory:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not initialized")
    return GameStore(db_manager.session_factory, change_feed)


def get_reader(store: GameStore = Depends(get_store)) -> GameReader:
    return GameReader(store)


def get_state_machine(store: GameStore = Depends(get_store)) -> GameStateMachine:
    return GameStateMachine(store)


def get_round_actions(store: GameStore = Depends(get_store)) -> RoundActions:
    return RoundActions(store)


def get_lobby(store: GameStore = Depends(get_store)) -> LobbyService:
    return LobbyService(store)


def get_editor(store: GameStore = Depends(get_store)) -> GameEditor:
    return GameEditor(store)


def get_score_service(reader: GameReader = Depends(get_reader)) -> ScoreService:
    return ScoreService(reader)


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Caller's stable anonymous id, if a valid token was sent"""
    if credentials is None:
        return None
    return identity_service.resolve(credentials.credentials)


async def require_identity(user_id: Optional[str] = Depends(get_identity)) -> str:
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Identity token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


async def require_host(
    game_id: str = Path(...),
    user_id: Optional[str] = Depends(get_identity),
    reader: GameReader = Depends(get_reader),
) -> Optional[str]:
    """Host-only endpoints: caller must be the game's host when one is recorded"""
    game = await reader.get_game(game_id)
    if game.host_user_id and game.host_user_id != user_id:
        raise PermissionDenied("Only the host can control this game", {"game_id": game_id})
    return user_id
