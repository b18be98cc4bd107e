"""
Leaderboard Pydantic schemas
排行榜数据验证和序列化模型
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from party_game.schemas.game import RoundRead, OutcomeRead


class TeamScore(BaseModel):
    """队伍总分（投票奖励 + 挑战积分）"""
    game_id: str = Field(..., description="游戏ID")
    team_id: str = Field(..., description="队伍ID")
    name: str = Field(..., description="队伍名称")
    color_hex: Optional[str] = Field(None, description="队伍颜色")
    position: int = Field(default=0, description="显示顺序")
    vote_points: int = Field(default=0, description="预测正确带来的积分")
    challenge_points: int = Field(default=0, description="挑战积分")
    total_score: int = Field(default=0, description="总分")


class ParticipantResult(BaseModel):
    """个人预测成绩"""
    game_id: str
    participant_id: str
    nickname: str
    game_team_id: Optional[str] = None
    correct_predictions: int = 0
    total_score: int = 0


class RoundHistoryEntry(BaseModel):
    """历史轮次"""
    round: RoundRead
    outcomes: List[OutcomeRead] = Field(default_factory=list)
    vote_count: int = 0
