"""
Team models
队伍模板和每局游戏的队伍实例
"""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from party_game.core.database import Base
from party_game.models.base import generate_id, utcnow


class Team(Base):
    """Team template catalog (red, blue, green, yellow)"""

    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    slug = Column(String(50), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    color_hex = Column(String(7), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Team(slug={self.slug}, name={self.name})>"


class GameTeam(Base):
    """Per-game team instance"""

    __tablename__ = "game_teams"

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    template_team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    slug = Column(String(50), nullable=True)

    name = Column(String(100), nullable=False)
    color_hex = Column(String(7), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    # 必须是本队成员；participants.game_team_id 已指向本表，这里不加外键
    leader_participant_id = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<GameTeam(id={self.id}, name={self.name}, active={self.is_active})>"
