"""
Game editor API endpoints
游戏编辑API端点 - 挑战和队伍的增删改及排序
"""

from typing import List

from fastapi import APIRouter, Depends, status

from party_game.api.deps import get_editor, get_reader, require_host
from party_game.schemas.game import (
    ChallengeCreate, ChallengeRead, ChallengeUpdate, GameTeamRead, MoveRequest,
    TeamTemplateRead, TeamUpdate,
)
from party_game.services.game_editor import GameEditor
from party_game.services.queries import GameReader

router = APIRouter()


@router.get("/teams/templates", response_model=List[TeamTemplateRead])
async def list_team_templates(reader: GameReader = Depends(get_reader)):
    return await reader.list_team_templates()


# --- challenges ---

@router.get("/games/{game_id}/challenges", response_model=List[ChallengeRead])
async def list_challenges(game_id: str, reader: GameReader = Depends(get_reader)):
    await reader.get_game(game_id)
    return await reader.list_challenges(game_id)


@router.post("/games/{game_id}/challenges", response_model=ChallengeRead,
             status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_host)])
async def add_challenge(
    game_id: str,
    data: ChallengeCreate = ChallengeCreate(),
    editor: GameEditor = Depends(get_editor),
):
    return await editor.add_challenge(game_id, data)


@router.patch("/games/{game_id}/challenges/{challenge_id}", response_model=ChallengeRead,
              dependencies=[Depends(require_host)])
async def update_challenge(
    game_id: str,
    challenge_id: str,
    data: ChallengeUpdate,
    editor: GameEditor = Depends(get_editor),
):
    return await editor.update_challenge(game_id, challenge_id, data)


@router.delete("/games/{game_id}/challenges/{challenge_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_host)])
async def delete_challenge(game_id: str, challenge_id: str, editor: GameEditor = Depends(get_editor)):
    await editor.delete_challenge(game_id, challenge_id)


@router.post("/games/{game_id}/challenges/{challenge_id}/move", response_model=List[ChallengeRead],
             dependencies=[Depends(require_host)])
async def move_challenge(
    game_id: str,
    challenge_id: str,
    data: MoveRequest,
    editor: GameEditor = Depends(get_editor),
):
    return await editor.move_challenge(game_id, challenge_id, data.direction)


# --- teams ---

@router.get("/games/{game_id}/teams", response_model=List[GameTeamRead])
async def list_teams(game_id: str, reader: GameReader = Depends(get_reader)):
    await reader.get_game(game_id)
    return await reader.list_teams(game_id)


@router.post("/games/{game_id}/teams", response_model=GameTeamRead,
             status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_host)])
async def add_team(game_id: str, editor: GameEditor = Depends(get_editor)):
    return await editor.add_team(game_id)


@router.patch("/games/{game_id}/teams/{team_id}", response_model=GameTeamRead,
              dependencies=[Depends(require_host)])
async def update_team(
    game_id: str,
    team_id: str,
    data: TeamUpdate,
    editor: GameEditor = Depends(get_editor),
):
    return await editor.update_team(game_id, team_id, data)


@router.delete("/games/{game_id}/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_host)])
async def delete_team(game_id: str, team_id: str, editor: GameEditor = Depends(get_editor)):
    await editor.delete_team(game_id, team_id)


@router.post("/games/{game_id}/teams/{team_id}/move", response_model=List[GameTeamRead],
             dependencies=[Depends(require_host)])
async def move_team(
    game_id: str,
    team_id: str,
    data: MoveRequest,
    editor: GameEditor = Depends(get_editor),
):
    return await editor.move_team(game_id, team_id, data.direction)
