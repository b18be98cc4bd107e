# Pydantic schemas
from .game import (
    GameStatus, GamePhase, RoundState, MoveDirection,
    GameRead, TeamTemplateRead, GameTeamRead, ParticipantRead, ChallengeRead,
    RoundRead, LineupRead, VoteRead, OutcomeRead,
    GameCreate, GameSettingsUpdate, ChallengeCreate, ChallengeUpdate, TeamUpdate,
    MoveRequest, JoinRequest, NicknameUpdate, AssignmentUpdate, LeaderUpdate,
    OpenVotingRequest, VoteCreate, LineupToggle, OutcomeUpdate,
    TeamReadiness, LineupReadiness, VoteTally, GameSummary, GameStateResponse
)
from .leaderboard import TeamScore, ParticipantResult, RoundHistoryEntry
from .common import (
    ResponseStatus, ErrorResponse, SystemHealth, IdentityToken
)

__all__ = [
    # Game schemas
    "GameStatus", "GamePhase", "RoundState", "MoveDirection",
    "GameRead", "TeamTemplateRead", "GameTeamRead", "ParticipantRead", "ChallengeRead",
    "RoundRead", "LineupRead", "VoteRead", "OutcomeRead",
    "GameCreate", "GameSettingsUpdate", "ChallengeCreate", "ChallengeUpdate", "TeamUpdate",
    "MoveRequest", "JoinRequest", "NicknameUpdate", "AssignmentUpdate", "LeaderUpdate",
    "OpenVotingRequest", "VoteCreate", "LineupToggle", "OutcomeUpdate",
    "TeamReadiness", "LineupReadiness", "VoteTally", "GameSummary", "GameStateResponse",

    # Leaderboard schemas
    "TeamScore", "ParticipantResult", "RoundHistoryEntry",

    # Common schemas
    "ResponseStatus", "ErrorResponse", "SystemHealth", "IdentityToken",
]
