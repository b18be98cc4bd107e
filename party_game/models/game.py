"""
Game model
游戏数据模型
"""

from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey, Text
from party_game.core.database import Base
from party_game.models.base import generate_id, utcnow

# 导入统一的enum定义
from party_game.schemas.game import GamePhase, GameStatus


class Game(Base):
    """Authoritative game record, one per play session"""

    __tablename__ = "games"

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    title = Column(String(200), nullable=False, default="Untitled Game")
    description = Column(Text, nullable=False, default="")

    # Game state
    status = Column(Enum(GameStatus, values_callable=lambda obj: [e.value for e in obj]),
                    default=GameStatus.DRAFT, nullable=False)
    phase = Column(Enum(GamePhase, values_callable=lambda obj: [e.value for e in obj]),
                   default=GamePhase.LOBBY, nullable=False)
    # 指向 game_rounds.id；不加外键以避免 games <-> game_rounds 循环依赖
    active_round_id = Column(String(36), nullable=True)
    current_round_sequence = Column(Integer, default=0, nullable=False)

    # Settings
    max_teams = Column(Integer, default=4, nullable=False)
    max_players_per_team = Column(Integer, nullable=True)  # 为空表示不限制

    host_user_id = Column(String(36), nullable=True, index=True)
    lobby_code = Column(String(12), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Game(id={self.id}, phase={self.phase}, status={self.status})>"


class GameChallenge(Base):
    """Ordered challenge list; round N plays challenge N modulo the list length"""

    __tablename__ = "game_challenges"

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    participants_per_team = Column(Integer, nullable=True)  # 为空表示每队人数不限

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<GameChallenge(id={self.id}, game_id={self.game_id}, position={self.position})>"
