"""
Participant model
游戏参与者模型 - 每个身份在每局游戏中只有一条记录
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from party_game.core.database import Base
from party_game.models.base import generate_id, utcnow


class Participant(Base):
    """
    游戏参与者表
    (game_id, user_id) 唯一，重复加入返回已有记录
    """

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("game_id", "user_id", name="uq_participants_game_user"),
    )

    id = Column(String(36), primary_key=True, index=True, default=generate_id)
    game_id = Column(String(36), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)

    # 玩家信息
    user_id = Column(String(64), nullable=False, index=True)
    nickname = Column(String(50), nullable=False)
    game_team_id = Column(String(36), ForeignKey("game_teams.id", ondelete="SET NULL"), nullable=True)

    # 时间戳
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Participant(id={self.id}, game_id={self.game_id}, nickname={self.nickname})>"
