"""
Player API endpoints
玩家API端点 - 加入、昵称、投票和队长选人
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from party_game.api.deps import get_lobby, get_reader, get_round_actions, require_identity
from party_game.schemas.game import (
    JoinRequest, LineupRead, LineupToggle, NicknameUpdate, ParticipantRead, VoteCreate, VoteRead,
)
from party_game.services.lobby import LobbyService
from party_game.services.queries import GameReader
from party_game.services.round_actions import RoundActions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/games/{game_id}/join", response_model=ParticipantRead, status_code=status.HTTP_200_OK)
async def join_game(
    game_id: str,
    data: JoinRequest,
    user_id: str = Depends(require_identity),
    lobby: LobbyService = Depends(get_lobby),
):
    """
    加入游戏

    同一身份重复加入返回同一个参与者
    """
    return await lobby.join_game(game_id, user_id, data.nickname)


@router.get("/games/{game_id}/me", response_model=Optional[ParticipantRead])
async def get_my_participant(
    game_id: str,
    user_id: str = Depends(require_identity),
    reader: GameReader = Depends(get_reader),
):
    """当前身份在该游戏中的参与者，未加入时返回 null"""
    await reader.get_game(game_id)
    return await reader.find_participant(game_id, user_id)


@router.patch("/participants/{participant_id}/nickname", response_model=ParticipantRead)
async def update_nickname(
    participant_id: str,
    data: NicknameUpdate,
    user_id: str = Depends(require_identity),
    lobby: LobbyService = Depends(get_lobby),
):
    return await lobby.update_nickname(participant_id, user_id, data.nickname)


@router.post("/games/{game_id}/votes", response_model=VoteRead)
async def cast_vote(
    game_id: str,
    data: VoteCreate,
    user_id: str = Depends(require_identity),
    actions: RoundActions = Depends(get_round_actions),
):
    """
    投票预测本轮会输的队伍

    每人每轮只有一票，再次投票会覆盖
    """
    return await actions.cast_vote(game_id, user_id, data.team_id)


@router.post("/games/{game_id}/lineups", response_model=List[LineupRead])
async def toggle_lineup(
    game_id: str,
    data: LineupToggle,
    user_id: str = Depends(require_identity),
    actions: RoundActions = Depends(get_round_actions),
    reader: GameReader = Depends(get_reader),
):
    """队长（或主持人）选择/取消本轮出场队员"""
    game = await reader.get_game(game_id)
    as_host = bool(game.host_user_id) and game.host_user_id == user_id
    return await actions.toggle_lineup(
        game_id, data.team_id, data.participant_id, data.add,
        user_id=user_id, as_host=as_host,
    )
