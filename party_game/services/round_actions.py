"""
Player round actions
玩家在轮次中的操作 - 投票和出场阵容，服务端同样校验
"""

import logging
from typing import List, Optional

from sqlalchemy import select

from party_game.core.exceptions import (
    NotFoundError, PermissionDenied, PreconditionFailed, StoreError, ValidationError,
)
from party_game.models import Game, GameChallenge, GameRound, GameTeam, Participant, RoundLineup, RoundVote
from party_game.schemas.game import ChallengeRead, GamePhase, LineupRead, RoundState, VoteRead
from party_game.services import aggregator
from party_game.services.store import GameStore, StoreTransaction, is_unique_conflict

logger = logging.getLogger(__name__)


class RoundActions:
    """Votes and lineup changes for the active round"""

    def __init__(self, store: GameStore):
        self.store = store

    async def _game_and_round(self, tx: StoreTransaction, game_id: str, state: RoundState, action: str):
        # 共享锁：阶段切换 (FOR UPDATE) 要等本事务提交后才能执行
        result = await tx.session.execute(
            select(Game).where(Game.id == game_id).with_for_update(read=True)
        )
        game = result.scalar_one_or_none()
        if not game:
            raise NotFoundError("Game not found", {"game_id": game_id})
        game_round = await tx.session.get(GameRound, game.active_round_id) if game.active_round_id else None
        if (
            not game_round
            or game.phase != GamePhase(state.value)
            or game_round.state != state
        ):
            logger.warning(f"Rejected {action} on game {game_id} in phase {GamePhase(game.phase).value}")
            raise PreconditionFailed(
                f"{action.replace('_', ' ').capitalize()} is only possible during {state.value}",
                {"action": action, "phase": GamePhase(game.phase).value},
            )
        return game, game_round

    async def _team(self, tx: StoreTransaction, game_id: str, team_id: str) -> GameTeam:
        team = await tx.session.get(GameTeam, team_id)
        if not team or team.game_id != game_id:
            raise NotFoundError("Team not found", {"team_id": team_id})
        return team

    # ------------------------------------------------------------------
    # votes
    # ------------------------------------------------------------------

    async def cast_vote(self, game_id: str, user_id: str, team_id: str) -> VoteRead:
        """Predict the losing team; a second vote replaces the first"""
        try:
            return await self._cast_vote(game_id, user_id, team_id)
        except StoreError as e:
            if not is_unique_conflict(e):
                raise
            # 同一参与者的并发投票，按更新重试
            logger.info(f"Vote by {user_id} in game {game_id} raced, retrying as update")
            return await self._cast_vote(game_id, user_id, team_id)

    async def _cast_vote(self, game_id: str, user_id: str, team_id: str) -> VoteRead:
        async with self.store.transaction() as tx:
            result = await tx.session.execute(
                select(Participant).where(Participant.game_id == game_id, Participant.user_id == user_id)
            )
            participant = result.scalar_one_or_none()
            if not participant:
                raise PermissionDenied("Join the game before voting", {"game_id": game_id})

            game, game_round = await self._game_and_round(tx, game_id, RoundState.VOTING, "cast_vote")

            team = await self._team(tx, game_id, team_id)
            if not team.is_active:
                raise ValidationError("That team is not playing", {"team_id": team_id})

            result = await tx.session.execute(
                select(RoundVote).where(
                    RoundVote.round_id == game_round.id,
                    RoundVote.participant_id == participant.id,
                )
            )
            vote = result.scalar_one_or_none()
            if vote:
                tx.update(vote, team_id=team_id)
            else:
                vote = RoundVote(round_id=game_round.id, participant_id=participant.id, team_id=team_id)
                tx.add(vote)
            await tx.flush()
            response = VoteRead.model_validate(vote)

        logger.info(f"Participant {participant.id} voted for team {team_id} in round {game_round.sequence}")
        return response

    # ------------------------------------------------------------------
    # lineups
    # ------------------------------------------------------------------

    async def toggle_lineup(
        self,
        game_id: str,
        team_id: str,
        participant_id: str,
        add: bool,
        user_id: Optional[str] = None,
        as_host: bool = False,
    ) -> List[LineupRead]:
        """
        Add or remove a team member from the round lineup.

        Only the team leader (or the host) may change a lineup, and only while
        leaders are choosing. Returns the team's lineup after the change.
        """
        async with self.store.transaction() as tx:
            game, game_round = await self._game_and_round(
                tx, game_id, RoundState.LEADER_SELECTION, "toggle_lineup"
            )
            team = await self._team(tx, game_id, team_id)

            if not as_host:
                leader = await tx.session.get(Participant, team.leader_participant_id) \
                    if team.leader_participant_id else None
                if not leader or leader.user_id != user_id:
                    raise PermissionDenied("Only the team leader can change the lineup", {"team_id": team_id})

            participant = await tx.session.get(Participant, participant_id)
            if not participant or participant.game_id != game_id:
                raise NotFoundError("Participant not found", {"participant_id": participant_id})
            if participant.game_team_id != team_id:
                raise ValidationError("Participant is not a member of this team",
                                      {"participant_id": participant_id, "team_id": team_id})

            result = await tx.session.execute(
                select(RoundLineup).where(
                    RoundLineup.round_id == game_round.id,
                    RoundLineup.participant_id == participant_id,
                )
            )
            entry = result.scalar_one_or_none()

            if add:
                if entry and entry.team_id != team_id:
                    raise ValidationError("Participant already plays for another team this round",
                                          {"participant_id": participant_id})
                if not entry:
                    result = await tx.session.execute(
                        select(RoundLineup).where(
                            RoundLineup.round_id == game_round.id,
                            RoundLineup.team_id == team_id,
                        )
                    )
                    selected_count = len(result.scalars().all())
                    required = aggregator.required_count(await self._challenge(tx, game_round))
                    if not aggregator.can_add_to_lineup(selected_count, required):
                        raise ValidationError(
                            f"Lineup is full ({required} players)",
                            {"team_id": team_id, "required": required},
                        )
                    tx.add(RoundLineup(round_id=game_round.id, team_id=team_id, participant_id=participant_id))
            elif entry and entry.team_id == team_id:
                await tx.delete(entry)

            await tx.flush()
            result = await tx.session.execute(
                select(RoundLineup)
                .where(RoundLineup.round_id == game_round.id, RoundLineup.team_id == team_id)
                .order_by(RoundLineup.created_at)
            )
            lineup = [LineupRead.model_validate(e) for e in result.scalars().all()]

        logger.info(f"Lineup of team {team_id} in round {game_round.sequence}: {len(lineup)} selected")
        return lineup

    async def _challenge(self, tx: StoreTransaction, game_round: GameRound) -> Optional[ChallengeRead]:
        if game_round.challenge_id:
            challenge = await tx.session.get(GameChallenge, game_round.challenge_id)
            if challenge:
                return ChallengeRead.model_validate(challenge)
        result = await tx.session.execute(
            select(GameChallenge).where(GameChallenge.game_id == game_round.game_id)
        )
        challenges = [ChallengeRead.model_validate(c) for c in result.scalars().all()]
        return aggregator.challenge_for_sequence(challenges, game_round.sequence)
