"""
Lobby service
大厅服务 - 加入游戏、昵称、分队和队长
"""

import logging
from typing import Optional

from sqlalchemy import select, func

from party_game.core.config import settings
from party_game.core.exceptions import (
    NotFoundError, PermissionDenied, PreconditionFailed, StoreError, ValidationError,
)
from party_game.models import Game, GameTeam, Participant, RoundLineup
from party_game.schemas.game import GamePhase, GameStatus, GameTeamRead, ParticipantRead
from party_game.services.store import GameStore, StoreTransaction, is_unique_conflict

logger = logging.getLogger(__name__)


def normalize_nickname(nickname: Optional[str]) -> str:
    """Trimmed nickname of 1-20 characters"""
    value = (nickname or "").strip()
    if not value:
        raise ValidationError("Nickname cannot be empty")
    if len(value) > settings.NICKNAME_MAX_LENGTH:
        raise ValidationError(
            f"Nickname must be at most {settings.NICKNAME_MAX_LENGTH} characters",
            {"length": len(value)},
        )
    return value


class LobbyService:
    """Player joins plus host-side team assignment"""

    def __init__(self, store: GameStore):
        self.store = store

    async def _game(self, tx: StoreTransaction, game_id: str) -> Game:
        game = await tx.session.get(Game, game_id)
        if not game:
            raise NotFoundError("Game not found", {"game_id": game_id})
        return game

    async def _participant(self, tx: StoreTransaction, game_id: str, participant_id: str) -> Participant:
        participant = await tx.session.get(Participant, participant_id)
        if not participant or participant.game_id != game_id:
            raise NotFoundError("Participant not found", {"participant_id": participant_id})
        return participant

    async def _team(self, tx: StoreTransaction, game_id: str, team_id: str) -> GameTeam:
        team = await tx.session.get(GameTeam, team_id)
        if not team or team.game_id != game_id:
            raise NotFoundError("Team not found", {"team_id": team_id})
        return team

    async def join_game(self, game_id: str, user_id: str, nickname: str) -> ParticipantRead:
        """Join once per identity; joining again returns the same row"""
        nickname = normalize_nickname(nickname)
        try:
            return await self._join(game_id, user_id, nickname)
        except StoreError as e:
            if not is_unique_conflict(e):
                raise
            # 并发重复加入，重新读取已存在的记录
            return await self._join(game_id, user_id, nickname)

    async def _join(self, game_id: str, user_id: str, nickname: str) -> ParticipantRead:
        async with self.store.transaction() as tx:
            game = await self._game(tx, game_id)
            result = await tx.session.execute(
                select(Participant).where(Participant.game_id == game_id, Participant.user_id == user_id)
            )
            participant = result.scalar_one_or_none()
            if participant:
                return ParticipantRead.model_validate(participant)

            if game.status == GameStatus.ARCHIVED:
                raise PreconditionFailed("This game has been archived", {"game_id": game_id})

            participant = Participant(game_id=game_id, user_id=user_id, nickname=nickname)
            tx.add(participant)
            await tx.flush()
            response = ParticipantRead.model_validate(participant)

        logger.info(f"User {user_id} joined game {game_id} as {nickname}")
        return response

    async def update_nickname(self, participant_id: str, user_id: str, nickname: str) -> ParticipantRead:
        nickname = normalize_nickname(nickname)
        async with self.store.transaction() as tx:
            participant = await tx.session.get(Participant, participant_id)
            if not participant:
                raise NotFoundError("Participant not found", {"participant_id": participant_id})
            if participant.user_id != user_id:
                raise PermissionDenied("Only the player can change their nickname")
            tx.update(participant, nickname=nickname)
            response = ParticipantRead.model_validate(participant)

        logger.info(f"Participant {participant_id} renamed to {nickname}")
        return response

    async def assign_participant(self, game_id: str, participant_id: str,
                                 team_id: Optional[str]) -> ParticipantRead:
        """Move a participant to a team, or out of every team with team_id=None"""
        async with self.store.transaction() as tx:
            game = await self._game(tx, game_id)
            if game.phase in (GamePhase.VOTING, GamePhase.ACTION):
                raise PreconditionFailed("Teams are locked while a round is being played",
                                         {"phase": GamePhase(game.phase).value})
            participant = await self._participant(tx, game_id, participant_id)
            previous_team_id = participant.game_team_id
            if previous_team_id == team_id:
                return ParticipantRead.model_validate(participant)

            if team_id is not None:
                team = await self._team(tx, game_id, team_id)
                if not team.is_active:
                    raise ValidationError("Team is not active", {"team_id": team_id})
                if game.max_players_per_team is not None:
                    result = await tx.session.execute(
                        select(func.count(Participant.id)).where(Participant.game_team_id == team_id)
                    )
                    if result.scalar_one() >= game.max_players_per_team:
                        raise ValidationError(
                            f"Team is full ({game.max_players_per_team} players)",
                            {"team_id": team_id},
                        )

            if previous_team_id:
                old_team = await tx.session.get(GameTeam, previous_team_id)
                if old_team and old_team.leader_participant_id == participant.id:
                    tx.update(old_team, leader_participant_id=None)

            if game.phase == GamePhase.LEADER_SELECTION and game.active_round_id:
                result = await tx.session.execute(
                    select(RoundLineup).where(
                        RoundLineup.round_id == game.active_round_id,
                        RoundLineup.participant_id == participant.id,
                    )
                )
                for entry in result.scalars().all():
                    await tx.delete(entry)

            tx.update(participant, game_team_id=team_id)
            response = ParticipantRead.model_validate(participant)

        logger.info(f"Participant {participant_id} moved from {previous_team_id} to {team_id}")
        return response

    async def set_team_leader(self, game_id: str, team_id: str,
                              participant_id: Optional[str]) -> GameTeamRead:
        async with self.store.transaction() as tx:
            await self._game(tx, game_id)
            team = await self._team(tx, game_id, team_id)
            if participant_id is not None:
                participant = await self._participant(tx, game_id, participant_id)
                if participant.game_team_id != team_id:
                    raise ValidationError("The leader must be a member of the team",
                                          {"participant_id": participant_id, "team_id": team_id})
            tx.update(team, leader_participant_id=participant_id)
            response = GameTeamRead.model_validate(team)

        logger.info(f"Team {team_id} leader set to {participant_id}")
        return response
