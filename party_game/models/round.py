"""
Round models
轮次、出场阵容、投票和结果模型
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Enum, ForeignKey, Text, UniqueConstraint
)
from party_game.core.database import Base
from party_game.models.base import generate_id, utcnow
from party_game.schemas.game import RoundState


class GameRound(Base):
    """One play of a challenge; older rounds are kept as history"""

    __tablename__ = "game_rounds"
    __table_args__ = (
        UniqueConstraint("game_id", "sequence", name="uq_game_rounds_game_sequence"),
    )

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    state = Column(Enum(RoundState, values_callable=lambda obj: [e.value for e in obj]),
                   default=RoundState.LEADER_SELECTION, nullable=False)
    challenge_id = Column(String(36), ForeignKey("game_challenges.id", ondelete="SET NULL"), nullable=True)

    leader_notes = Column(Text, nullable=True)  # 开放投票时的阵容快照
    losing_team_id = Column(String(36), ForeignKey("game_teams.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<GameRound(id={self.id}, sequence={self.sequence}, state={self.state})>"


class RoundLineup(Base):
    """A participant playing this round for a team"""

    __tablename__ = "round_lineups"
    __table_args__ = (
        # 每轮每人最多出现在一支队伍的阵容中
        UniqueConstraint("round_id", "participant_id", name="uq_round_lineups_round_participant"),
    )

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("game_teams.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(String(36), ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<RoundLineup(round_id={self.round_id}, team_id={self.team_id}, participant_id={self.participant_id})>"


class RoundVote(Base):
    """A participant's prediction of the losing team"""

    __tablename__ = "round_votes"
    __table_args__ = (
        UniqueConstraint("round_id", "participant_id", name="uq_round_votes_round_participant"),
    )

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = Column(String(36), ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(String(36), ForeignKey("game_teams.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<RoundVote(round_id={self.round_id}, participant_id={self.participant_id}, team_id={self.team_id})>"


class RoundOutcome(Base):
    """Host-recorded result of a round for one team"""

    __tablename__ = "round_outcomes"
    __table_args__ = (
        UniqueConstraint("round_id", "team_id", name="uq_round_outcomes_round_team"),
    )

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    round_id = Column(String(36), ForeignKey("game_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("game_teams.id", ondelete="CASCADE"), nullable=False)
    is_loser = Column(Boolean, default=False, nullable=False)
    challenge_points = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<RoundOutcome(round_id={self.round_id}, team_id={self.team_id}, is_loser={self.is_loser})>"
