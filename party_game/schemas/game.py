"""
Game Pydantic schemas
游戏数据验证和序列化模型
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime
from enum import Enum


class GameStatus(str, Enum):
    """游戏状态枚举"""
    DRAFT = "draft"
    READY = "ready"
    LIVE = "live"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class GamePhase(str, Enum):
    """游戏阶段枚举"""
    LOBBY = "lobby"
    LEADER_SELECTION = "leader_selection"
    VOTING = "voting"
    ACTION = "action"
    RESOLUTION = "resolution"
    RESULTS = "results"


class RoundState(str, Enum):
    """轮次状态枚举"""
    LEADER_SELECTION = "leader_selection"
    VOTING = "voting"
    ACTION = "action"
    RESOLUTION = "resolution"


# Phases during which Game.active_round_id must reference a round
ROUND_PHASES = frozenset({
    GamePhase.LEADER_SELECTION,
    GamePhase.VOTING,
    GamePhase.ACTION,
    GamePhase.RESOLUTION,
})


class MoveDirection(str, Enum):
    UP = "up"
    DOWN = "down"


# ---------------------------------------------------------------------------
# Row read models
# ---------------------------------------------------------------------------

class GameRead(BaseModel):
    """游戏行"""
    id: str
    title: str
    description: str = ""
    status: GameStatus
    phase: GamePhase
    active_round_id: Optional[str] = None
    current_round_sequence: int = 0
    max_teams: int = 4
    max_players_per_team: Optional[int] = None
    host_user_id: Optional[str] = None
    lobby_code: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TeamTemplateRead(BaseModel):
    """队伍模板"""
    id: str
    slug: str
    name: str
    color_hex: str

    class Config:
        from_attributes = True


class GameTeamRead(BaseModel):
    """本局游戏中的队伍"""
    id: str
    game_id: str
    name: str
    color_hex: str
    position: int
    is_active: bool = True
    leader_participant_id: Optional[str] = None
    slug: Optional[str] = None
    template_team_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ParticipantRead(BaseModel):
    """参与者"""
    id: str
    game_id: str
    user_id: str
    nickname: str
    game_team_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChallengeRead(BaseModel):
    """挑战"""
    id: str
    game_id: str
    position: int
    title: str
    description: Optional[str] = None
    participants_per_team: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoundRead(BaseModel):
    """轮次"""
    id: str
    game_id: str
    sequence: int
    state: RoundState
    challenge_id: Optional[str] = None
    leader_notes: Optional[str] = None
    losing_team_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LineupRead(BaseModel):
    """出场阵容条目"""
    id: str
    round_id: str
    team_id: str
    participant_id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VoteRead(BaseModel):
    """投票（预测哪支队伍会输）"""
    id: str
    round_id: str
    participant_id: str
    team_id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OutcomeRead(BaseModel):
    """轮次结果"""
    id: str
    round_id: str
    team_id: str
    is_loser: bool = False
    challenge_points: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class GameCreate(BaseModel):
    """创建游戏请求"""
    title: str = Field(default="", max_length=200, description="游戏标题")


class GameSettingsUpdate(BaseModel):
    """游戏设置更新"""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    status: Optional[GameStatus] = None
    max_players_per_team: Optional[int] = Field(None, description="为空表示不限制")
    clear_max_players_per_team: bool = Field(default=False, description="设置为不限制")
    max_teams: Optional[int] = None


class ChallengeCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    participants_per_team: Optional[int] = None


class ChallengeUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    participants_per_team: Optional[int] = None
    unrestricted: bool = Field(default=False, description="清除每队出场人数限制")


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    color_hex: Optional[str] = None
    is_active: Optional[bool] = None

    @validator('color_hex')
    def validate_color(cls, v):
        if v is None:
            return v
        sanitized = v.strip()
        if not sanitized.startswith('#') or len(sanitized) != 7:
            raise ValueError('颜色必须是 #rrggbb 格式')
        try:
            int(sanitized[1:], 16)
        except ValueError:
            raise ValueError('颜色必须是 #rrggbb 格式')
        return sanitized.lower()


class MoveRequest(BaseModel):
    direction: MoveDirection


class JoinRequest(BaseModel):
    """加入游戏请求"""
    nickname: str = Field(..., description="昵称，1-20个字符")


class NicknameUpdate(BaseModel):
    nickname: str


class AssignmentUpdate(BaseModel):
    """分配参与者到队伍，team_id 为空表示移出队伍"""
    team_id: Optional[str] = None


class LeaderUpdate(BaseModel):
    participant_id: Optional[str] = None


class OpenVotingRequest(BaseModel):
    notes: Optional[str] = Field(None, description="玩家将看到的标题，为空时使用阵容摘要")


class VoteCreate(BaseModel):
    """投票创建请求"""
    team_id: str = Field(..., description="预测会输的队伍ID")


class LineupToggle(BaseModel):
    team_id: str
    participant_id: str
    add: bool = True


class OutcomeUpdate(BaseModel):
    is_loser: Optional[bool] = None
    challenge_points: Optional[float] = Field(None, description="向下取整，负数按 0 处理")


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

class TeamReadiness(BaseModel):
    team_id: str
    is_active: bool
    member_count: int
    selected_count: int
    required: Optional[int] = None
    has_leader: bool = False
    ready: bool


class LineupReadiness(BaseModel):
    teams: List[TeamReadiness] = Field(default_factory=list)
    ready: bool = False


class VoteTally(BaseModel):
    team_id: str
    count: int
    percentage: int
    voter_ids: List[str] = Field(default_factory=list)


class GameSummary(BaseModel):
    """主持人面板中的游戏列表项"""
    game: GameRead
    challenge_count: int = 0
    team_count: int = 0
    participant_count: int = 0
    ready_for_show: bool = False


class GameStateResponse(BaseModel):
    """主持人/玩家视图的完整状态"""
    game: GameRead
    teams: List[GameTeamRead]
    participants: List[ParticipantRead]
    challenges: List[ChallengeRead]
    round: Optional[RoundRead] = None
    challenge: Optional[ChallengeRead] = None
    votes: List[VoteRead] = Field(default_factory=list)
    lineups: List[LineupRead] = Field(default_factory=list)
    outcomes: List[OutcomeRead] = Field(default_factory=list)
    vote_tally: List[VoteTally] = Field(default_factory=list)
    lineup_readiness: LineupReadiness = Field(default_factory=LineupReadiness)
    pending_votes: int = 0
    is_last_round: bool = False
    available_actions: List[str] = Field(default_factory=list)
    join_url: Optional[str] = None
