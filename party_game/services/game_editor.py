"""
Game editor service
游戏编辑服务 - 创建游戏、设置、挑战和队伍的增删改及排序
"""

import logging
import secrets
import string
from typing import List, Optional

from sqlalchemy import select, func

from party_game.core.config import settings
from party_game.core.exceptions import (
    NotFoundError, PartialSequenceFailure, PreconditionFailed, StoreError, ValidationError,
)
from party_game.models import (
    Game, GameChallenge, GameRound, GameTeam, Participant, Team,
    RoundLineup, RoundOutcome, RoundVote,
)
from party_game.schemas.game import (
    ChallengeCreate, ChallengeRead, ChallengeUpdate, GamePhase, GameRead, GameSettingsUpdate,
    GameStatus, GameSummary, GameTeamRead, MoveDirection, TeamUpdate,
)
from party_game.services.queries import GameReader
from party_game.services.store import GameStore, StoreTransaction

logger = logging.getLogger(__name__)

UNTITLED_GAME = "Untitled Game"

# 队伍模板为空时使用的默认队伍
DEFAULT_TEAMS = [
    ("red", "Red", "#ef4444"),
    ("blue", "Blue", "#3b82f6"),
    ("green", "Green", "#22c55e"),
    ("yellow", "Yellow", "#eab308"),
]

TEAM_COLORS = ["#ef4444", "#3b82f6", "#22c55e", "#eab308", "#a855f7", "#f97316"]

DEFAULT_CHALLENGE_TITLE = "Warm-up challenge"
DEFAULT_CHALLENGE_DESCRIPTION = "Describe the physical challenge that opens the show."
NEW_CHALLENGE_DESCRIPTION = "Describe the challenge goal and props."

LOBBY_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_lobby_code(length: int = 6) -> str:
    return "".join(secrets.choice(LOBBY_CODE_ALPHABET) for _ in range(length))


class GameEditor:
    """Host dashboard editing"""

    def __init__(self, store: GameStore, reader: Optional[GameReader] = None):
        self.store = store
        self.reader = reader or GameReader(store)

    async def _game(self, tx: StoreTransaction, game_id: str) -> Game:
        game = await tx.session.get(Game, game_id)
        if not game:
            raise NotFoundError("Game not found", {"game_id": game_id})
        return game

    # ------------------------------------------------------------------
    # games
    # ------------------------------------------------------------------

    async def create_game(self, title: str = "", host_user_id: Optional[str] = None) -> GameRead:
        """New draft game with the starter teams and one challenge"""
        async with self.store.transaction() as tx:
            game = Game(
                title=(title or "").strip() or UNTITLED_GAME,
                description="",
                status=GameStatus.DRAFT,
                phase=GamePhase.LOBBY,
                max_teams=settings.DEFAULT_MAX_TEAMS,
                host_user_id=host_user_id,
                lobby_code=generate_lobby_code(),
            )
            tx.add(game)
            await tx.flush()

            result = await tx.session.execute(
                select(Team).order_by(Team.display_order).limit(settings.DEFAULT_TEAM_SEED_COUNT)
            )
            catalog = list(result.scalars().all())
            if catalog:
                for index, template in enumerate(catalog):
                    tx.add(GameTeam(
                        game_id=game.id,
                        template_team_id=template.id,
                        slug=template.slug,
                        name=template.name,
                        color_hex=template.color_hex,
                        position=index,
                    ))
            else:
                for index, (slug, name, color) in enumerate(DEFAULT_TEAMS[:settings.DEFAULT_TEAM_SEED_COUNT]):
                    tx.add(GameTeam(game_id=game.id, slug=slug, name=name, color_hex=color, position=index))

            tx.add(GameChallenge(
                game_id=game.id,
                position=0,
                title=DEFAULT_CHALLENGE_TITLE,
                description=DEFAULT_CHALLENGE_DESCRIPTION,
            ))
            response = GameRead.model_validate(game)

        logger.info(f"Game {response.id} created by host {host_user_id}")
        return response

    async def seed_team_catalog(self) -> int:
        """Insert the default team templates that are missing; returns how many were added"""
        async with self.store.transaction() as tx:
            result = await tx.session.execute(select(Team.slug))
            existing = set(result.scalars().all())
            added = 0
            for order, (slug, name, color_hex) in enumerate(DEFAULT_TEAMS):
                if slug in existing:
                    continue
                tx.add(Team(slug=slug, name=name, color_hex=color_hex, display_order=order))
                added += 1
        logger.info(f"Team catalog seeded with {added} templates")
        return added

    async def list_games(self, host_user_id: Optional[str] = None) -> List[GameSummary]:
        games = await self.reader.list_games()
        if host_user_id is not None:
            games = [g for g in games if g.host_user_id in (None, host_user_id)]
        challenges = await self.reader.count_by_game(GameChallenge)
        teams = await self.reader.count_by_game(GameTeam)
        participants = await self.reader.count_by_game(Participant)
        active_teams = await self.reader.count_active_teams()
        return [
            GameSummary(
                game=game,
                challenge_count=challenges.get(game.id, 0),
                team_count=teams.get(game.id, 0),
                participant_count=participants.get(game.id, 0),
                ready_for_show=(
                    challenges.get(game.id, 0) >= 1
                    and active_teams.get(game.id, 0) >= settings.MIN_ACTIVE_TEAMS
                ),
            )
            for game in games
        ]

    async def update_settings(self, game_id: str, data: GameSettingsUpdate) -> GameRead:
        values = {}
        if data.title is not None:
            values["title"] = data.title.strip() or UNTITLED_GAME
        if data.description is not None:
            values["description"] = data.description
        if data.status is not None:
            values["status"] = data.status
        if data.clear_max_players_per_team:
            values["max_players_per_team"] = None
        elif data.max_players_per_team is not None:
            if data.max_players_per_team < 1:
                raise ValidationError("Max players per team must be at least 1")
            values["max_players_per_team"] = data.max_players_per_team
        if data.max_teams is not None:
            if data.max_teams < settings.MIN_ACTIVE_TEAMS:
                raise ValidationError(f"Max teams must be at least {settings.MIN_ACTIVE_TEAMS}")
            values["max_teams"] = data.max_teams

        async with self.store.transaction() as tx:
            game = await self._game(tx, game_id)
            tx.update(game, **values)
            response = GameRead.model_validate(game)

        logger.info(f"Game {game_id} settings updated: {sorted(values)}")
        return response

    # ------------------------------------------------------------------
    # challenges
    # ------------------------------------------------------------------

    async def _challenge(self, tx: StoreTransaction, game_id: str, challenge_id: str) -> GameChallenge:
        challenge = await tx.session.get(GameChallenge, challenge_id)
        if not challenge or challenge.game_id != game_id:
            raise NotFoundError("Challenge not found", {"challenge_id": challenge_id})
        return challenge

    async def add_challenge(self, game_id: str, data: Optional[ChallengeCreate] = None) -> ChallengeRead:
        data = data or ChallengeCreate()
        if data.participants_per_team is not None and data.participants_per_team < 1:
            raise ValidationError("Players per team must be at least 1")
        async with self.store.transaction() as tx:
            await self._game(tx, game_id)
            result = await tx.session.execute(
                select(func.max(GameChallenge.position)).where(GameChallenge.game_id == game_id)
            )
            current_max = result.scalar_one_or_none()
            position = 0 if current_max is None else current_max + 1
            challenge = GameChallenge(
                game_id=game_id,
                position=position,
                title=(data.title or "").strip() or f"Challenge {position + 1}",
                description=data.description if data.description is not None else NEW_CHALLENGE_DESCRIPTION,
                participants_per_team=data.participants_per_team,
            )
            tx.add(challenge)
            await tx.flush()
            response = ChallengeRead.model_validate(challenge)

        logger.info(f"Challenge {response.id} added to game {game_id} at position {position}")
        return response

    async def update_challenge(self, game_id: str, challenge_id: str, data: ChallengeUpdate) -> ChallengeRead:
        values = {}
        if data.title is not None:
            title = data.title.strip()
            if not title:
                raise ValidationError("Challenge title cannot be empty")
            values["title"] = title
        if data.description is not None:
            values["description"] = data.description
        if data.unrestricted:
            values["participants_per_team"] = None
        elif data.participants_per_team is not None:
            if data.participants_per_team < 1:
                raise ValidationError("Players per team must be at least 1")
            values["participants_per_team"] = data.participants_per_team

        async with self.store.transaction() as tx:
            challenge = await self._challenge(tx, game_id, challenge_id)
            tx.update(challenge, **values)
            response = ChallengeRead.model_validate(challenge)
        return response

    async def delete_challenge(self, game_id: str, challenge_id: str):
        async with self.store.transaction() as tx:
            challenge = await self._challenge(tx, game_id, challenge_id)
            result = await tx.session.execute(
                select(GameRound).where(GameRound.challenge_id == challenge_id)
            )
            for game_round in result.scalars().all():
                tx.update(game_round, challenge_id=None)
            await tx.delete(challenge)

        logger.info(f"Challenge {challenge_id} removed from game {game_id}")

    async def move_challenge(self, game_id: str, challenge_id: str, direction: MoveDirection) -> List[ChallengeRead]:
        challenges = await self.reader.list_challenges(game_id)
        await self._swap(game_id, GameChallenge, challenges, challenge_id, direction)
        return await self.reader.list_challenges(game_id)

    # ------------------------------------------------------------------
    # teams
    # ------------------------------------------------------------------

    async def _team(self, tx: StoreTransaction, game_id: str, team_id: str) -> GameTeam:
        team = await tx.session.get(GameTeam, team_id)
        if not team or team.game_id != game_id:
            raise NotFoundError("Team not found", {"team_id": team_id})
        return team

    async def add_team(self, game_id: str) -> GameTeamRead:
        async with self.store.transaction() as tx:
            game = await self._game(tx, game_id)
            result = await tx.session.execute(select(GameTeam).where(GameTeam.game_id == game_id))
            teams = list(result.scalars().all())
            if len(teams) >= game.max_teams:
                raise ValidationError("You reached the maximum number of teams for this game",
                                      {"max_teams": game.max_teams})
            position = max((t.position for t in teams), default=-1) + 1
            team = GameTeam(
                game_id=game_id,
                name=f"Team {position + 1}",
                color_hex=TEAM_COLORS[position % len(TEAM_COLORS)],
                position=position,
                slug=f"team-{position + 1}",
            )
            tx.add(team)
            await tx.flush()
            response = GameTeamRead.model_validate(team)

        logger.info(f"Team {response.id} added to game {game_id}")
        return response

    async def update_team(self, game_id: str, team_id: str, data: TeamUpdate) -> GameTeamRead:
        values = {}
        if data.name is not None:
            name = data.name.strip()
            if not name:
                raise ValidationError("Team name cannot be empty")
            values["name"] = name
        if data.color_hex is not None:
            values["color_hex"] = data.color_hex
        if data.is_active is not None:
            values["is_active"] = data.is_active

        async with self.store.transaction() as tx:
            team = await self._team(tx, game_id, team_id)
            tx.update(team, **values)
            response = GameTeamRead.model_validate(team)
        return response

    async def delete_team(self, game_id: str, team_id: str):
        """Remove a team; a game keeps at least two"""
        async with self.store.transaction() as tx:
            game = await self._game(tx, game_id)
            if game.phase not in (GamePhase.LOBBY, GamePhase.RESULTS):
                raise PreconditionFailed("Teams can only be removed between games",
                                         {"phase": GamePhase(game.phase).value})
            team = await self._team(tx, game_id, team_id)
            result = await tx.session.execute(
                select(func.count(GameTeam.id)).where(GameTeam.game_id == game_id)
            )
            if result.scalar_one() <= settings.MIN_ACTIVE_TEAMS:
                raise ValidationError("Keep at least two teams for the show")

            result = await tx.session.execute(select(Participant).where(Participant.game_team_id == team_id))
            for participant in result.scalars().all():
                tx.update(participant, game_team_id=None)
            for model in (RoundLineup, RoundVote, RoundOutcome):
                result = await tx.session.execute(select(model).where(model.team_id == team_id))
                for row in result.scalars().all():
                    await tx.delete(row)
            result = await tx.session.execute(select(GameRound).where(GameRound.losing_team_id == team_id))
            for game_round in result.scalars().all():
                tx.update(game_round, losing_team_id=None)
            await tx.flush()
            await tx.delete(team)

        logger.info(f"Team {team_id} removed from game {game_id}")

    async def move_team(self, game_id: str, team_id: str, direction: MoveDirection) -> List[GameTeamRead]:
        teams = await self.reader.list_teams(game_id)
        await self._swap(game_id, GameTeam, teams, team_id, direction)
        return await self.reader.list_teams(game_id)

    # ------------------------------------------------------------------
    # reorder
    # ------------------------------------------------------------------

    async def _swap(self, game_id: str, model, rows: list, row_id: str, direction: MoveDirection):
        """
        Swap positions with the neighbour as two separate writes.

        When the second write fails the first one stays applied and
        PartialSequenceFailure is raised; clients reload to resynchronise.
        """
        index = next((i for i, row in enumerate(rows) if row.id == row_id), None)
        if index is None:
            raise NotFoundError(f"{model.__name__} not found", {"id": row_id})
        swap_index = index - 1 if MoveDirection(direction) == MoveDirection.UP else index + 1
        if swap_index < 0 or swap_index >= len(rows):
            return

        current, target = rows[index], rows[swap_index]
        await self._write_position(game_id, model, current.id, target.position)
        try:
            await self._write_position(game_id, model, target.id, current.position)
        except StoreError as e:
            logger.error(f"Reorder of {model.__tablename__} in game {game_id} stopped after first write")
            raise PartialSequenceFailure(
                "Reorder stopped part way; reload to see the current order",
                failed_step="move_neighbour",
                completed_steps=["move_selected"],
            ) from e

        logger.info(f"Moved {model.__tablename__} {row_id} {MoveDirection(direction).value} in game {game_id}")

    async def _write_position(self, game_id: str, model, row_id: str, position: int):
        async with self.store.transaction() as tx:
            row = await tx.session.get(model, row_id)
            if not row or row.game_id != game_id:
                raise NotFoundError(f"{model.__name__} not found", {"id": row_id})
            tx.update(row, position=position)
