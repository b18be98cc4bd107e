"""
Host game control API endpoints
主持人游戏控制API端点 - 阶段切换、结果录入、重置和分队
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status

from party_game.api.deps import (
    get_editor, get_identity, get_lobby, get_reader, get_state_machine, require_host,
)
from party_game.schemas.game import (
    AssignmentUpdate, GameCreate, GameRead, GameSettingsUpdate, GameStateResponse, GameSummary,
    GameTeamRead, LeaderUpdate, OpenVotingRequest, OutcomeRead, OutcomeUpdate, ParticipantRead,
)
from party_game.services import aggregator
from party_game.services.game import GameStateMachine
from party_game.services.game_editor import GameEditor
from party_game.services.lobby import LobbyService
from party_game.services.queries import GameReader
from party_game.utils.links import build_join_url

logger = logging.getLogger(__name__)
router = APIRouter()


async def build_game_state(
    game_id: str,
    reader: GameReader,
    machine: GameStateMachine,
    origin: Optional[str] = None,
) -> GameStateResponse:
    """Fresh game view with the derived aggregates"""
    bundle = await reader.fetch_bundle(game_id)
    challenge = None
    if bundle.round:
        challenge = next((c for c in bundle.challenges if c.id == bundle.round.challenge_id), None) \
            or aggregator.challenge_for_sequence(bundle.challenges, bundle.round.sequence)

    try:
        join_url = build_join_url(game_id, origin=origin)
    except ValueError:
        join_url = None

    return GameStateResponse(
        game=bundle.game,
        teams=bundle.teams,
        participants=bundle.participants,
        challenges=bundle.challenges,
        round=bundle.round,
        challenge=challenge,
        votes=bundle.votes,
        lineups=bundle.lineups,
        outcomes=bundle.outcomes,
        vote_tally=aggregator.vote_tally(bundle.teams, bundle.votes),
        lineup_readiness=aggregator.lineup_readiness(
            bundle.teams, bundle.participants, bundle.lineups, aggregator.required_count(challenge)
        ),
        pending_votes=aggregator.pending_votes(bundle.participants, bundle.votes),
        is_last_round=bool(
            bundle.round and bundle.challenges
            and (bundle.round.sequence % len(bundle.challenges)) == len(bundle.challenges) - 1
        ),
        available_actions=await machine.describe(game_id),
        join_url=join_url,
    )


def request_origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


@router.post("", response_model=GameRead, status_code=status.HTTP_201_CREATED)
async def create_game(
    data: GameCreate,
    user_id: Optional[str] = Depends(get_identity),
    editor: GameEditor = Depends(get_editor),
):
    """
    创建新游戏
    默认带四支队伍和一个热身挑战
    """
    return await editor.create_game(data.title, host_user_id=user_id)


@router.get("", response_model=List[GameSummary])
async def list_games(
    user_id: Optional[str] = Depends(get_identity),
    editor: GameEditor = Depends(get_editor),
):
    """主持人面板游戏列表"""
    return await editor.list_games(host_user_id=user_id)


@router.get("/{game_id}", response_model=GameStateResponse)
async def get_game_state(
    game_id: str,
    request: Request,
    reader: GameReader = Depends(get_reader),
    machine: GameStateMachine = Depends(get_state_machine),
):
    """获取游戏完整状态"""
    return await build_game_state(game_id, reader, machine, origin=request_origin(request))


@router.get("/{game_id}/actions", response_model=List[str])
async def get_available_actions(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.describe(game_id)


@router.post("/{game_id}/launch", response_model=GameRead, dependencies=[Depends(require_host)])
async def launch_game(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.launch_game(game_id)


@router.post("/{game_id}/start-round", response_model=GameRead, dependencies=[Depends(require_host)])
async def start_round(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.start_round(game_id)


@router.post("/{game_id}/open-voting", response_model=GameRead, dependencies=[Depends(require_host)])
async def open_voting(
    game_id: str,
    data: Optional[OpenVotingRequest] = None,
    machine: GameStateMachine = Depends(get_state_machine),
):
    return await machine.open_voting(game_id, notes=data.notes if data else None)


@router.post("/{game_id}/lock-voting", response_model=GameRead, dependencies=[Depends(require_host)])
async def lock_voting(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.lock_voting(game_id)


@router.put("/{game_id}/outcomes/{team_id}", response_model=Optional[OutcomeRead],
            dependencies=[Depends(require_host)])
async def set_outcome(
    game_id: str,
    team_id: str,
    data: OutcomeUpdate,
    machine: GameStateMachine = Depends(get_state_machine),
):
    """设置/清除队伍结果；返回 null 表示该行已删除"""
    return await machine.set_outcome(
        game_id, team_id, is_loser=data.is_loser, challenge_points=data.challenge_points
    )


@router.post("/{game_id}/reveal", response_model=GameRead, dependencies=[Depends(require_host)])
async def reveal_results(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.reveal_results(game_id)


@router.post("/{game_id}/next-round", response_model=GameRead, dependencies=[Depends(require_host)])
async def next_round(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.next_round(game_id)


@router.post("/{game_id}/end", response_model=GameRead, dependencies=[Depends(require_host)])
async def end_game(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    return await machine.end_game(game_id)


@router.post("/{game_id}/reset", response_model=GameRead, dependencies=[Depends(require_host)])
async def reset_lobby(game_id: str, machine: GameStateMachine = Depends(get_state_machine)):
    """
    重置到大厅
    删除所有轮次、投票、阵容、结果和参与者
    """
    return await machine.reset_lobby(game_id)


@router.patch("/{game_id}/settings", response_model=GameRead, dependencies=[Depends(require_host)])
async def update_settings(
    game_id: str,
    data: GameSettingsUpdate,
    editor: GameEditor = Depends(get_editor),
):
    return await editor.update_settings(game_id, data)


@router.put("/{game_id}/participants/{participant_id}/team", response_model=ParticipantRead,
            dependencies=[Depends(require_host)])
async def assign_participant(
    game_id: str,
    participant_id: str,
    data: AssignmentUpdate,
    lobby: LobbyService = Depends(get_lobby),
):
    return await lobby.assign_participant(game_id, participant_id, data.team_id)


@router.put("/{game_id}/teams/{team_id}/leader", response_model=GameTeamRead,
            dependencies=[Depends(require_host)])
async def set_team_leader(
    game_id: str,
    team_id: str,
    data: LeaderUpdate,
    lobby: LobbyService = Depends(get_lobby),
):
    return await lobby.set_team_leader(game_id, team_id, data.participant_id)
