"""
Read-side queries
读取服务 - 所有读取都返回 Pydantic 只读模型，调用方拿不到 ORM 对象
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select, func

from party_game.core.exceptions import NotFoundError
from party_game.models import (
    Game, GameChallenge, Team, GameTeam, Participant,
    GameRound, RoundLineup, RoundVote, RoundOutcome,
)
from party_game.schemas.game import (
    GameRead, TeamTemplateRead, GameTeamRead, ParticipantRead, ChallengeRead,
    RoundRead, LineupRead, VoteRead, OutcomeRead,
)
from party_game.services.store import GameStore

logger = logging.getLogger(__name__)


@dataclass
class GameBundle:
    """Everything a client needs to render a game"""
    game: GameRead
    teams: List[GameTeamRead] = field(default_factory=list)
    participants: List[ParticipantRead] = field(default_factory=list)
    challenges: List[ChallengeRead] = field(default_factory=list)
    round: Optional[RoundRead] = None
    votes: List[VoteRead] = field(default_factory=list)
    lineups: List[LineupRead] = field(default_factory=list)
    outcomes: List[OutcomeRead] = field(default_factory=list)


class GameReader:
    """Fresh reads against the store"""

    def __init__(self, store: GameStore):
        self.store = store

    async def get_game(self, game_id: str) -> GameRead:
        async with self.store.read() as session:
            game = await session.get(Game, game_id)
            if not game:
                raise NotFoundError("Game not found", {"game_id": game_id})
            return GameRead.model_validate(game)

    async def list_games(self) -> List[GameRead]:
        async with self.store.read() as session:
            result = await session.execute(select(Game).order_by(Game.created_at.desc()))
            return [GameRead.model_validate(g) for g in result.scalars().all()]

    async def count_by_game(self, model) -> dict:
        """{game_id: row count} for a game-owned table"""
        async with self.store.read() as session:
            result = await session.execute(
                select(model.game_id, func.count(model.id)).group_by(model.game_id)
            )
            return {game_id: count for game_id, count in result.all()}

    async def count_active_teams(self) -> dict:
        async with self.store.read() as session:
            result = await session.execute(
                select(GameTeam.game_id, func.count(GameTeam.id))
                .where(GameTeam.is_active.is_(True))
                .group_by(GameTeam.game_id)
            )
            return {game_id: count for game_id, count in result.all()}

    async def list_team_templates(self) -> List[TeamTemplateRead]:
        async with self.store.read() as session:
            result = await session.execute(select(Team).order_by(Team.display_order))
            return [TeamTemplateRead.model_validate(t) for t in result.scalars().all()]

    async def list_teams(self, game_id: str) -> List[GameTeamRead]:
        async with self.store.read() as session:
            return await self._teams(session, game_id)

    async def list_participants(self, game_id: str) -> List[ParticipantRead]:
        async with self.store.read() as session:
            return await self._participants(session, game_id)

    async def list_challenges(self, game_id: str) -> List[ChallengeRead]:
        async with self.store.read() as session:
            return await self._challenges(session, game_id)

    async def get_participant(self, participant_id: str) -> ParticipantRead:
        async with self.store.read() as session:
            participant = await session.get(Participant, participant_id)
            if not participant:
                raise NotFoundError("Participant not found", {"participant_id": participant_id})
            return ParticipantRead.model_validate(participant)

    async def find_participant(self, game_id: str, user_id: str) -> Optional[ParticipantRead]:
        async with self.store.read() as session:
            result = await session.execute(
                select(Participant).where(
                    Participant.game_id == game_id,
                    Participant.user_id == user_id,
                )
            )
            participant = result.scalar_one_or_none()
            return ParticipantRead.model_validate(participant) if participant else None

    async def get_round(self, round_id: str) -> Optional[RoundRead]:
        async with self.store.read() as session:
            game_round = await session.get(GameRound, round_id)
            return RoundRead.model_validate(game_round) if game_round else None

    async def list_rounds(self, game_id: str) -> List[RoundRead]:
        async with self.store.read() as session:
            result = await session.execute(
                select(GameRound).where(GameRound.game_id == game_id).order_by(GameRound.sequence)
            )
            return [RoundRead.model_validate(r) for r in result.scalars().all()]

    async def list_votes(self, round_id: str) -> List[VoteRead]:
        async with self.store.read() as session:
            return await self._votes(session, [round_id])

    async def list_lineups(self, round_id: str) -> List[LineupRead]:
        async with self.store.read() as session:
            return await self._lineups(session, round_id)

    async def list_outcomes(self, round_id: str) -> List[OutcomeRead]:
        async with self.store.read() as session:
            return await self._outcomes(session, [round_id])

    async def list_game_votes(self, game_id: str) -> List[VoteRead]:
        """Votes of every round of a game"""
        async with self.store.read() as session:
            return await self._votes(session, await self._round_ids(session, game_id))

    async def list_game_outcomes(self, game_id: str) -> List[OutcomeRead]:
        async with self.store.read() as session:
            return await self._outcomes(session, await self._round_ids(session, game_id))

    async def fetch_bundle(self, game_id: str) -> GameBundle:
        """One consistent read of the game and its active round"""
        async with self.store.read() as session:
            game = await session.get(Game, game_id)
            if not game:
                raise NotFoundError("Game not found", {"game_id": game_id})

            bundle = GameBundle(
                game=GameRead.model_validate(game),
                teams=await self._teams(session, game_id),
                participants=await self._participants(session, game_id),
                challenges=await self._challenges(session, game_id),
            )
            if game.active_round_id:
                game_round = await session.get(GameRound, game.active_round_id)
                if game_round:
                    bundle.round = RoundRead.model_validate(game_round)
                    bundle.votes = await self._votes(session, [game_round.id])
                    bundle.lineups = await self._lineups(session, game_round.id)
                    bundle.outcomes = await self._outcomes(session, [game_round.id])
            return bundle

    # ------------------------------------------------------------------
    # session-level helpers
    # ------------------------------------------------------------------

    async def _teams(self, session, game_id: str) -> List[GameTeamRead]:
        result = await session.execute(
            select(GameTeam).where(GameTeam.game_id == game_id).order_by(GameTeam.position)
        )
        return [GameTeamRead.model_validate(t) for t in result.scalars().all()]

    async def _participants(self, session, game_id: str) -> List[ParticipantRead]:
        result = await session.execute(
            select(Participant).where(Participant.game_id == game_id).order_by(Participant.created_at)
        )
        return [ParticipantRead.model_validate(p) for p in result.scalars().all()]

    async def _challenges(self, session, game_id: str) -> List[ChallengeRead]:
        result = await session.execute(
            select(GameChallenge).where(GameChallenge.game_id == game_id).order_by(GameChallenge.position)
        )
        return [ChallengeRead.model_validate(c) for c in result.scalars().all()]

    async def _round_ids(self, session, game_id: str) -> List[str]:
        result = await session.execute(select(GameRound.id).where(GameRound.game_id == game_id))
        return list(result.scalars().all())

    async def _votes(self, session, round_ids: List[str]) -> List[VoteRead]:
        if not round_ids:
            return []
        result = await session.execute(
            select(RoundVote).where(RoundVote.round_id.in_(round_ids)).order_by(RoundVote.created_at)
        )
        return [VoteRead.model_validate(v) for v in result.scalars().all()]

    async def _lineups(self, session, round_id: str) -> List[LineupRead]:
        result = await session.execute(
            select(RoundLineup).where(RoundLineup.round_id == round_id).order_by(RoundLineup.created_at)
        )
        return [LineupRead.model_validate(entry) for entry in result.scalars().all()]

    async def _outcomes(self, session, round_ids: List[str]) -> List[OutcomeRead]:
        if not round_ids:
            return []
        result = await session.execute(
            select(RoundOutcome).where(RoundOutcome.round_id.in_(round_ids))
        )
        return [OutcomeRead.model_validate(o) for o in result.scalars().all()]
