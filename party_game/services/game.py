"""
Game state machine
游戏阶段状态机 - 校验前置条件并在单个事务中修改游戏和轮次记录

lobby -> leader_selection -> voting -> action -> resolution
      -> (leader_selection for the next round | results)
any phase -> lobby (reset)
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from party_game.core.config import settings
from party_game.core.exceptions import (
    NotFoundError, PartialSequenceFailure, PreconditionFailed, StoreError,
)
from party_game.models import (
    Game, GameChallenge, GameTeam, Participant,
    GameRound, RoundLineup, RoundVote, RoundOutcome,
)
from party_game.schemas.game import (
    ChallengeRead, GamePhase, GameRead, GameStatus, GameTeamRead, LineupRead,
    OutcomeRead, ParticipantRead, RoundState,
)
from party_game.services import aggregator
from party_game.services.store import GameStore, StoreTransaction, is_unique_conflict

logger = logging.getLogger(__name__)


PHASE_ACTIONS: Dict[GamePhase, Tuple[str, ...]] = {
    GamePhase.LOBBY: ("launch_game", "start_round", "reset_lobby"),
    GamePhase.LEADER_SELECTION: ("open_voting", "reset_lobby"),
    GamePhase.VOTING: ("lock_voting", "reset_lobby"),
    GamePhase.ACTION: ("set_outcome", "reveal_results", "reset_lobby"),
    GamePhase.RESOLUTION: ("set_outcome", "next_round", "end_game", "reset_lobby"),
    GamePhase.RESULTS: ("reset_lobby",),
}


def phase_actions(phase: GamePhase) -> List[str]:
    """Host actions the phase allows, before guards"""
    return list(PHASE_ACTIONS.get(GamePhase(phase), ()))


class GameStateMachine:
    """
    Host-driven phase transitions.

    Each operation loads the game inside its own transaction, so guards are
    checked against the committed state rather than a cached copy. A failed
    guard raises PreconditionFailed and writes nothing.
    """

    def __init__(self, store: GameStore):
        self.store = store

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load_game(self, tx: StoreTransaction, game_id: str) -> Game:
        result = await tx.session.execute(
            select(Game).where(Game.id == game_id).with_for_update()
        )
        game = result.scalar_one_or_none()
        if not game:
            raise NotFoundError("Game not found", {"game_id": game_id})
        return game

    def _reject(self, game: Game, action: str, message: str, **details):
        logger.warning(f"Rejected {action} on game {game.id} in phase {GamePhase(game.phase).value}: {message}")
        raise PreconditionFailed(message, {"action": action, "phase": GamePhase(game.phase).value, **details})

    def _require_phase(self, game: Game, action: str, *phases: GamePhase):
        if game.phase not in phases:
            self._reject(
                game, action,
                f"Cannot {action.replace('_', ' ')} during {GamePhase(game.phase).value}",
                allowed=[p.value for p in phases],
            )

    async def _active_round(self, tx: StoreTransaction, game: Game, action: str) -> GameRound:
        game_round = await tx.session.get(GameRound, game.active_round_id) if game.active_round_id else None
        if not game_round:
            self._reject(game, action, "Game has no active round")
        return game_round

    async def _teams(self, tx: StoreTransaction, game_id: str) -> List[GameTeam]:
        result = await tx.session.execute(
            select(GameTeam).where(GameTeam.game_id == game_id).order_by(GameTeam.position)
        )
        return list(result.scalars().all())

    async def _challenges(self, tx: StoreTransaction, game_id: str) -> List[GameChallenge]:
        result = await tx.session.execute(
            select(GameChallenge).where(GameChallenge.game_id == game_id).order_by(GameChallenge.position)
        )
        return list(result.scalars().all())

    async def _participants(self, tx: StoreTransaction, game_id: str) -> List[Participant]:
        result = await tx.session.execute(select(Participant).where(Participant.game_id == game_id))
        return list(result.scalars().all())

    async def _round_rows(self, tx: StoreTransaction, model, round_id: str) -> list:
        result = await tx.session.execute(select(model).where(model.round_id == round_id))
        return list(result.scalars().all())

    def _new_round(self, tx: StoreTransaction, game: Game, sequence: int,
                   challenges: List[GameChallenge]) -> GameRound:
        challenge = aggregator.challenge_for_sequence(
            [ChallengeRead.model_validate(c) for c in challenges], sequence
        )
        game_round = GameRound(
            game_id=game.id,
            sequence=sequence,
            state=RoundState.LEADER_SELECTION,
            challenge_id=challenge.id if challenge else None,
        )
        tx.add(game_round)
        return game_round

    async def _round_challenge(self, tx: StoreTransaction, game_round: GameRound) -> Optional[ChallengeRead]:
        if game_round.challenge_id:
            challenge = await tx.session.get(GameChallenge, game_round.challenge_id)
            if challenge:
                return ChallengeRead.model_validate(challenge)
        challenges = await self._challenges(tx, game_round.game_id)
        return aggregator.challenge_for_sequence(
            [ChallengeRead.model_validate(c) for c in challenges], game_round.sequence
        )

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def launch_game(self, game_id: str) -> GameRead:
        """Put the game live and show the lobby"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "launch_game", GamePhase.LOBBY)
            if game.status == GameStatus.ARCHIVED:
                self._reject(game, "launch_game", "Archived games cannot be launched")
            tx.update(game, status=GameStatus.LIVE)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} launched")
        return result

    async def start_round(self, game_id: str) -> GameRead:
        """lobby -> leader_selection; creates the round unless one is active"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "start_round", GamePhase.LOBBY)

            teams = await self._teams(tx, game_id)
            active_teams = [t for t in teams if t.is_active]
            if len(active_teams) < settings.MIN_ACTIVE_TEAMS:
                self._reject(
                    game, "start_round",
                    f"At least {settings.MIN_ACTIVE_TEAMS} active teams are required",
                    active_teams=len(active_teams),
                )
            challenges = await self._challenges(tx, game_id)
            if not challenges:
                self._reject(game, "start_round", "Add at least one challenge first")

            game_round = await tx.session.get(GameRound, game.active_round_id) if game.active_round_id else None
            if game_round:
                # 恢复未完成的轮次
                phase = GamePhase(RoundState(game_round.state).value)
                tx.update(game, phase=phase, status=GameStatus.LIVE)
                resumed = True
            else:
                game_round = self._new_round(tx, game, game.current_round_sequence, challenges)
                await tx.flush()
                tx.update(
                    game,
                    active_round_id=game_round.id,
                    phase=GamePhase.LEADER_SELECTION,
                    status=GameStatus.LIVE,
                )
                resumed = False
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} {'resumed' if resumed else 'started'} round {game_round.sequence}")
        return result

    async def open_voting(self, game_id: str, notes: Optional[str] = None) -> GameRead:
        """leader_selection -> voting; snapshots the lineups into leader_notes"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "open_voting", GamePhase.LEADER_SELECTION)
            game_round = await self._active_round(tx, game, "open_voting")

            teams = [GameTeamRead.model_validate(t) for t in await self._teams(tx, game_id)]
            participants = [ParticipantRead.model_validate(p) for p in await self._participants(tx, game_id)]
            lineups = [LineupRead.model_validate(e) for e in await self._round_rows(tx, RoundLineup, game_round.id)]
            challenge = await self._round_challenge(tx, game_round)

            readiness = aggregator.lineup_readiness(
                teams, participants, lineups, aggregator.required_count(challenge)
            )
            if not readiness.ready:
                self._reject(
                    game, "open_voting", "Every active team needs members and a complete lineup",
                    teams_not_ready=[t.team_id for t in readiness.teams if t.is_active and not t.ready],
                )

            summary = (notes or "").strip() or aggregator.lineup_summary(teams, participants, lineups)
            tx.update(game_round, state=RoundState.VOTING, leader_notes=summary)
            tx.update(game, phase=GamePhase.VOTING)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} opened voting for round {game_round.sequence}")
        return result

    async def lock_voting(self, game_id: str) -> GameRead:
        """voting -> action"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "lock_voting", GamePhase.VOTING)
            game_round = await self._active_round(tx, game, "lock_voting")
            tx.update(game_round, state=RoundState.ACTION)
            tx.update(game, phase=GamePhase.ACTION)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} locked voting for round {game_round.sequence}")
        return result

    async def set_outcome(
        self,
        game_id: str,
        team_id: str,
        is_loser: Optional[bool] = None,
        challenge_points: Optional[Any] = None,
    ) -> Optional[OutcomeRead]:
        """
        Record a team's result for the active round.

        Fields left as None keep their stored value. A row that ends up as
        not-loser with zero points is removed. Returns the stored outcome, or
        None when the row was removed.
        """
        try:
            return await self._set_outcome(game_id, team_id, is_loser, challenge_points)
        except StoreError as e:
            if not is_unique_conflict(e):
                raise
            # 并发插入撞上 (round_id, team_id) 唯一键，按更新重试一次
            logger.info(f"Outcome for team {team_id} inserted concurrently, retrying as update")
            return await self._set_outcome(game_id, team_id, is_loser, challenge_points)

    async def _set_outcome(self, game_id, team_id, is_loser, challenge_points) -> Optional[OutcomeRead]:
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "set_outcome", GamePhase.ACTION, GamePhase.RESOLUTION)
            game_round = await self._active_round(tx, game, "set_outcome")

            team = await tx.session.get(GameTeam, team_id)
            if not team or team.game_id != game_id:
                raise NotFoundError("Team not found", {"team_id": team_id})

            result = await tx.session.execute(
                select(RoundOutcome).where(
                    RoundOutcome.round_id == game_round.id,
                    RoundOutcome.team_id == team_id,
                )
            )
            outcome = result.scalar_one_or_none()

            loser = bool(is_loser) if is_loser is not None else bool(outcome and outcome.is_loser)
            if challenge_points is not None:
                points = max(int(math.floor(challenge_points)), 0)
            else:
                points = outcome.challenge_points if outcome else 0

            stored = None
            if not loser and points == 0:
                if outcome:
                    await tx.delete(outcome)
            elif outcome:
                tx.update(outcome, is_loser=loser, challenge_points=points)
                stored = outcome
            else:
                stored = RoundOutcome(round_id=game_round.id, team_id=team_id,
                                      is_loser=loser, challenge_points=points)
                tx.add(stored)

            if game.phase == GamePhase.RESOLUTION:
                await tx.flush()
                await self._refresh_losing_team(tx, game_round)

            await tx.flush()
            response = OutcomeRead.model_validate(stored) if stored else None

        logger.info(f"Game {game_id} outcome for team {team_id}: loser={loser} points={points}")
        return response

    async def _refresh_losing_team(self, tx: StoreTransaction, game_round: GameRound):
        """First losing team in display order"""
        teams = await self._teams(tx, game_round.game_id)
        losers = {o.team_id for o in await self._round_rows(tx, RoundOutcome, game_round.id) if o.is_loser}
        losing_team_id = next((t.id for t in teams if t.id in losers), None)
        tx.update(game_round, losing_team_id=losing_team_id)

    async def reveal_results(self, game_id: str) -> GameRead:
        """action -> resolution; needs at least one team marked as loser"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "reveal_results", GamePhase.ACTION)
            game_round = await self._active_round(tx, game, "reveal_results")

            outcomes = await self._round_rows(tx, RoundOutcome, game_round.id)
            if not any(o.is_loser for o in outcomes):
                self._reject(game, "reveal_results", "Mark at least one losing team first")

            await self._refresh_losing_team(tx, game_round)
            tx.update(game_round, state=RoundState.RESOLUTION)
            tx.update(game, phase=GamePhase.RESOLUTION)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} revealed results for round {game_round.sequence}")
        return result

    async def next_round(self, game_id: str) -> GameRead:
        """resolution -> leader_selection with a new round"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "next_round", GamePhase.RESOLUTION)

            challenges = await self._challenges(tx, game_id)
            sequence = game.current_round_sequence + 1
            game_round = self._new_round(tx, game, sequence, challenges)
            await tx.flush()
            tx.update(
                game,
                active_round_id=game_round.id,
                current_round_sequence=sequence,
                phase=GamePhase.LEADER_SELECTION,
            )
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} advanced to round {sequence}")
        return result

    async def end_game(self, game_id: str) -> GameRead:
        """resolution -> results; the active round is kept as history"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            self._require_phase(game, "end_game", GamePhase.RESOLUTION)
            tx.update(game, phase=GamePhase.RESULTS, status=GameStatus.COMPLETED)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} ended")
        return result

    # ------------------------------------------------------------------
    # reset
    # ------------------------------------------------------------------

    def _reset_steps(self) -> List[Tuple[str, Callable]]:
        return [
            ("clear_active_round", self._reset_clear_active_round),
            ("delete_outcomes", self._reset_delete_round_rows(RoundOutcome)),
            ("delete_votes", self._reset_delete_round_rows(RoundVote)),
            ("delete_lineups", self._reset_delete_round_rows(RoundLineup)),
            ("delete_rounds", self._reset_delete_rounds),
            ("delete_participants", self._reset_delete_participants),
            ("reset_teams", self._reset_teams),
            ("reset_game", self._reset_game),
        ]

    async def reset_lobby(self, game_id: str) -> GameRead:
        """
        Destructive return to the lobby.

        Steps run in order inside one transaction. When a step fails the
        whole reset is rolled back and PartialSequenceFailure names the step.
        """
        completed: List[str] = []
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            for name, step in self._reset_steps():
                try:
                    await step(tx, game)
                    await tx.flush()
                except SQLAlchemyError as e:
                    logger.error(f"Reset of game {game_id} failed at step {name}: {e}")
                    raise PartialSequenceFailure(
                        f"Reset stopped at step '{name}'", failed_step=name, completed_steps=completed
                    ) from e
                completed.append(name)
            result = GameRead.model_validate(game)

        logger.info(f"Game {game_id} reset to lobby")
        return result

    async def _reset_clear_active_round(self, tx: StoreTransaction, game: Game):
        tx.update(game, active_round_id=None)

    def _reset_delete_round_rows(self, model):
        async def step(tx: StoreTransaction, game: Game):
            round_ids = select(GameRound.id).where(GameRound.game_id == game.id)
            result = await tx.session.execute(select(model).where(model.round_id.in_(round_ids)))
            for row in result.scalars().all():
                await tx.delete(row)
        return step

    async def _reset_delete_rounds(self, tx: StoreTransaction, game: Game):
        result = await tx.session.execute(select(GameRound).where(GameRound.game_id == game.id))
        for row in result.scalars().all():
            await tx.delete(row)

    async def _reset_delete_participants(self, tx: StoreTransaction, game: Game):
        for participant in await self._participants(tx, game.id):
            await tx.delete(participant)

    async def _reset_teams(self, tx: StoreTransaction, game: Game):
        for team in await self._teams(tx, game.id):
            tx.update(team, is_active=True, leader_participant_id=None)

    async def _reset_game(self, tx: StoreTransaction, game: Game):
        tx.update(
            game,
            phase=GamePhase.LOBBY,
            status=GameStatus.READY,
            current_round_sequence=0,
        )

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    async def describe(self, game_id: str) -> List[str]:
        """Host actions whose guards currently hold"""
        async with self.store.transaction() as tx:
            game = await self._load_game(tx, game_id)
            return await self._available_actions(tx, game)

    async def _available_actions(self, tx: StoreTransaction, game: Game) -> List[str]:
        actions = phase_actions(game.phase)
        available = []
        for action in actions:
            if action == "launch_game" and game.status in (GameStatus.LIVE, GameStatus.ARCHIVED):
                continue
            if action == "start_round":
                teams = await self._teams(tx, game.id)
                if len([t for t in teams if t.is_active]) < settings.MIN_ACTIVE_TEAMS:
                    continue
                if not await self._challenges(tx, game.id):
                    continue
            if action == "open_voting":
                game_round = await tx.session.get(GameRound, game.active_round_id) if game.active_round_id else None
                if not game_round:
                    continue
                teams = [GameTeamRead.model_validate(t) for t in await self._teams(tx, game.id)]
                participants = [ParticipantRead.model_validate(p) for p in await self._participants(tx, game.id)]
                lineups = [LineupRead.model_validate(e) for e in await self._round_rows(tx, RoundLineup, game_round.id)]
                challenge = await self._round_challenge(tx, game_round)
                if not aggregator.lineup_readiness(
                    teams, participants, lineups, aggregator.required_count(challenge)
                ).ready:
                    continue
            if action == "reveal_results":
                if not game.active_round_id:
                    continue
                outcomes = await self._round_rows(tx, RoundOutcome, game.active_round_id)
                if not any(o.is_loser for o in outcomes):
                    continue
            available.append(action)
        return available
