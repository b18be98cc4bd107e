"""
Leaderboard API endpoints
排行榜API端点 - 队伍总分、个人预测成绩和历史轮次
"""

from typing import List

from fastapi import APIRouter, Depends

from party_game.api.deps import get_score_service
from party_game.schemas.leaderboard import ParticipantResult, RoundHistoryEntry, TeamScore
from party_game.services.scoring import ScoreService

router = APIRouter()


@router.get("/games/{game_id}/scores", response_model=List[TeamScore])
async def get_team_scores(game_id: str, scores: ScoreService = Depends(get_score_service)):
    """
    获取队伍排行榜

    按总分降序，同分时按队伍显示顺序
    """
    return await scores.team_scores(game_id)


@router.get("/games/{game_id}/results", response_model=List[ParticipantResult])
async def get_game_results(game_id: str, scores: ScoreService = Depends(get_score_service)):
    """个人预测成绩"""
    return await scores.game_results(game_id)


@router.get("/games/{game_id}/rounds", response_model=List[RoundHistoryEntry])
async def get_round_history(game_id: str, scores: ScoreService = Depends(get_score_service)):
    return await scores.round_history(game_id)
