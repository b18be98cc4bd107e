"""
Client synchronization layer
客户端同步层 - 每个连接维护一份游戏投影：先订阅，再全量拉取，之后按变更事件增量更新

disconnected -> initial_fetch -> subscribed -> closed
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from party_game.core.config import settings
from party_game.core.exceptions import GameError
from party_game.realtime.change_feed import ChangeEvent, ChangeFeed, ChangeFilter, ChangeType, Subscription
from party_game.schemas.game import (
    ChallengeRead, GameRead, GameTeamRead, LineupReadiness, LineupRead, OutcomeRead,
    ParticipantRead, RoundRead, VoteRead, VoteTally,
)
from party_game.schemas.leaderboard import TeamScore
from party_game.services import aggregator
from party_game.services.queries import GameReader

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    INITIAL_FETCH = "initial_fetch"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


@dataclass
class GameProjection:
    """Per-client view of one game, produced only by fetches and change events"""
    game: Optional[GameRead] = None
    teams: Dict[str, GameTeamRead] = field(default_factory=dict)
    participants: Dict[str, ParticipantRead] = field(default_factory=dict)
    challenges: List[ChallengeRead] = field(default_factory=list)
    round: Optional[RoundRead] = None
    votes: List[VoteRead] = field(default_factory=list)
    lineups: List[LineupRead] = field(default_factory=list)
    outcomes: List[OutcomeRead] = field(default_factory=list)
    scores: List[TeamScore] = field(default_factory=list)
    participant_id: Optional[str] = None

    @property
    def sorted_teams(self) -> List[GameTeamRead]:
        return sorted(self.teams.values(), key=lambda t: t.position)

    @property
    def participant_list(self) -> List[ParticipantRead]:
        return list(self.participants.values())

    @property
    def challenge(self) -> Optional[ChallengeRead]:
        if not self.round:
            return None
        if self.round.challenge_id:
            for challenge in self.challenges:
                if challenge.id == self.round.challenge_id:
                    return challenge
        return aggregator.challenge_for_sequence(self.challenges, self.round.sequence)

    @property
    def vote_tally(self) -> List[VoteTally]:
        return aggregator.vote_tally(self.sorted_teams, self.votes)

    @property
    def lineup_readiness(self) -> LineupReadiness:
        return aggregator.lineup_readiness(
            self.sorted_teams, self.participant_list, self.lineups,
            aggregator.required_count(self.challenge),
        )

    @property
    def pending_votes(self) -> int:
        return aggregator.pending_votes(self.participant_list, self.votes)

    @property
    def me(self) -> Optional[ParticipantRead]:
        return self.participants.get(self.participant_id) if self.participant_id else None

    @property
    def my_team(self) -> Optional[GameTeamRead]:
        me = self.me
        return self.teams.get(me.game_team_id) if me and me.game_team_id else None

    @property
    def my_vote_team_id(self) -> Optional[str]:
        for vote in self.votes:
            if vote.participant_id == self.participant_id:
                return vote.team_id
        return None

    @property
    def is_leader(self) -> bool:
        team = self.my_team
        return bool(team and team.leader_participant_id == self.participant_id)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view pushed to websocket clients"""
        def dump(items):
            return [item.model_dump(mode="json") for item in items]

        return {
            "game": self.game.model_dump(mode="json") if self.game else None,
            "teams": dump(self.sorted_teams),
            "participants": dump(self.participant_list),
            "challenges": dump(self.challenges),
            "round": self.round.model_dump(mode="json") if self.round else None,
            "challenge": self.challenge.model_dump(mode="json") if self.challenge else None,
            "votes": dump(self.votes),
            "lineups": dump(self.lineups),
            "outcomes": dump(self.outcomes),
            "vote_tally": dump(self.vote_tally),
            "lineup_readiness": self.lineup_readiness.model_dump(mode="json"),
            "pending_votes": self.pending_votes,
            "scores": dump(self.scores),
            "me": self.me.model_dump(mode="json") if self.me else None,
            "my_vote_team_id": self.my_vote_team_id,
            "is_leader": self.is_leader,
        }


# 单行表直接用事件里的新行覆盖
ROW_MODELS = {
    "games": GameRead,
    "game_rounds": RoundRead,
    "game_teams": GameTeamRead,
    "participants": ParticipantRead,
}

ROUND_TABLES = ("round_votes", "round_lineups", "round_outcomes")


class GameSyncClient:
    """
    Keeps one GameProjection consistent with the store.

    Subscriptions are acquired before the initial fetch so no change made
    during the fetch is missed; every handler is idempotent, so an event
    that duplicates fetched state is harmless. The round-scoped subscription
    follows Game.active_round_id and events still queued from a released
    subscription are dropped.
    """

    def __init__(
        self,
        game_id: str,
        reader: GameReader,
        feed: ChangeFeed,
        role: str = "player",
        participant_id: Optional[str] = None,
        on_change: Optional[Callable] = None,
        leaderboard_interval: Optional[float] = None,
        score_service=None,
    ):
        self.game_id = game_id
        self.reader = reader
        self.feed = feed
        self.role = role
        self.on_change = on_change
        self.leaderboard_interval = leaderboard_interval
        self.score_service = score_service

        self.state = SyncState.DISCONNECTED
        self.projection = GameProjection(participant_id=participant_id)

        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=settings.CHANGE_FEED_QUEUE_SIZE)
        self._game_subscription: Optional[Subscription] = None
        self._round_subscription: Optional[Subscription] = None
        self._bound_round_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def bound_round_id(self) -> Optional[str]:
        return self._bound_round_id

    @property
    def subscriptions(self) -> List[Subscription]:
        return [s for s in (self._game_subscription, self._round_subscription) if s is not None]

    async def start(self):
        if self.state != SyncState.DISCONNECTED:
            raise RuntimeError(f"Sync client already {self.state.value}")

        self.state = SyncState.INITIAL_FETCH
        self._game_subscription = self.feed.subscribe(
            self._game_filters(), key=f"game:{self.game_id}", inbox=self._inbox
        )
        try:
            await self._full_fetch()
        except BaseException:
            self._release_all()
            self.state = SyncState.DISCONNECTED
            raise

        self.state = SyncState.SUBSCRIBED
        self._task = asyncio.create_task(self._run())
        if self.leaderboard_interval and self.score_service is not None:
            self._poll_task = asyncio.create_task(self._poll_scores())

        logger.info(f"Sync client for game {self.game_id} ({self.role}) subscribed")
        await self._notify()

    async def close(self):
        """Stop listening; releases every subscription"""
        if self.state == SyncState.CLOSED:
            return
        self.state = SyncState.CLOSED
        current = asyncio.current_task()
        for task in (self._task, self._poll_task):
            if task and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._poll_task = None
        self._release_all()
        logger.info(f"Sync client for game {self.game_id} ({self.role}) closed")

    async def __aenter__(self) -> "GameSyncClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def resync(self):
        """Full re-fetch, rebinding the round subscription from scratch"""
        self._release_round()
        await self._full_fetch()
        await self._notify()

    async def _recover(self):
        """Resync after an event that could not be applied; the consumer keeps running"""
        try:
            await self.resync()
        except GameError as e:
            logger.warning(f"Resync for game {self.game_id} failed: {e.message}")

    async def identify(self, participant_id: Optional[str]):
        """Attach the projection to a participant once the player has joined"""
        if participant_id == self.projection.participant_id:
            return
        self.projection.participant_id = participant_id
        await self._notify()

    async def wait_idle(self):
        """Wait until every queued event has been handled"""
        await self._inbox.join()

    # ------------------------------------------------------------------
    # subscriptions
    # ------------------------------------------------------------------

    def _game_filters(self) -> List[ChangeFilter]:
        return [
            ChangeFilter("games", "id", self.game_id),
            ChangeFilter("game_teams", "game_id", self.game_id),
            ChangeFilter("participants", "game_id", self.game_id),
            ChangeFilter("game_challenges", "game_id", self.game_id),
        ]

    def _round_filters(self, round_id: str) -> List[ChangeFilter]:
        return [
            ChangeFilter("game_rounds", "id", round_id),
            ChangeFilter("round_votes", "round_id", round_id),
            ChangeFilter("round_lineups", "round_id", round_id),
            ChangeFilter("round_outcomes", "round_id", round_id),
        ]

    def _release_round(self):
        if self._round_subscription:
            self._round_subscription.close()
        self._round_subscription = None
        self._bound_round_id = None

    def _release_all(self):
        self._release_round()
        if self._game_subscription:
            self._game_subscription.close()
        self._game_subscription = None

    async def _bind_round(self, round_id: Optional[str]):
        """Point the round-scoped subscription at round_id (or nowhere)"""
        if round_id == self._bound_round_id and (round_id is None or self._round_subscription):
            return
        self._release_round()
        self.projection.round = None
        self.projection.votes = []
        self.projection.lineups = []
        self.projection.outcomes = []
        if round_id is None:
            logger.debug(f"Game {self.game_id} has no active round")
            return

        self._round_subscription = self.feed.subscribe(
            self._round_filters(round_id), key=f"round:{round_id}", inbox=self._inbox
        )
        self._bound_round_id = round_id
        await self._fetch_round()

    # ------------------------------------------------------------------
    # fetching
    # ------------------------------------------------------------------

    async def _full_fetch(self):
        bundle = await self.reader.fetch_bundle(self.game_id)
        p = self.projection
        p.game = bundle.game
        p.teams = {t.id: t for t in bundle.teams}
        p.participants = {x.id: x for x in bundle.participants}
        p.challenges = bundle.challenges

        round_id = bundle.game.active_round_id
        if round_id and round_id != self._bound_round_id:
            self._release_round()
            self._round_subscription = self.feed.subscribe(
                self._round_filters(round_id), key=f"round:{round_id}", inbox=self._inbox
            )
            self._bound_round_id = round_id
            # 订阅后重新读取本轮数据，避免错过订阅前的写入
            await self._fetch_round()
        elif round_id:
            p.round = bundle.round
            p.votes = bundle.votes
            p.lineups = bundle.lineups
            p.outcomes = bundle.outcomes
        else:
            await self._bind_round(None)

        if self.score_service is not None:
            await self._refresh_scores()

    async def _fetch_round(self):
        round_id = self._bound_round_id
        if round_id is None:
            return
        game_round = await self.reader.get_round(round_id)
        votes = await self.reader.list_votes(round_id)
        lineups = await self.reader.list_lineups(round_id)
        outcomes = await self.reader.list_outcomes(round_id)
        if round_id != self._bound_round_id:
            # 拉取期间已经切换到别的轮次
            return
        self.projection.round = game_round
        self.projection.votes = votes
        self.projection.lineups = lineups
        self.projection.outcomes = outcomes

    async def _refresh_scores(self):
        self.projection.scores = await self.score_service.team_scores(self.game_id)

    # ------------------------------------------------------------------
    # event handling
    # ------------------------------------------------------------------

    async def _run(self):
        while self.state == SyncState.SUBSCRIBED:
            subscription, event = await self._inbox.get()
            try:
                if not subscription.active:
                    continue
                if subscription.overflowed:
                    subscription.overflowed = False
                    logger.warning(f"Sync client for game {self.game_id} fell behind, resyncing")
                    await self.resync()
                    continue
                if await self.apply(event):
                    await self._notify()
            except asyncio.CancelledError:
                raise
            except GameError as e:
                # 读取失败时保持订阅，等待下一次事件或兜底轮询
                logger.warning(f"Sync client for game {self.game_id} could not apply {event.table}: {e.message}")
            except Exception as e:
                logger.error(f"Sync client for game {self.game_id} rejected {event.table} event ({e}), resyncing")
                await self._recover()
            finally:
                self._inbox.task_done()

    async def apply(self, event: ChangeEvent) -> bool:
        """Apply one event to the projection; returns True when it may have changed"""
        table = event.table
        p = self.projection

        if table == "games":
            if event.type == ChangeType.DELETE:
                p.game = None
                await self._bind_round(None)
                return True
            p.game = GameRead.model_validate(event.new)
            if p.game.active_round_id != self._bound_round_id:
                logger.info(
                    f"Game {self.game_id} active round changed {self._bound_round_id} -> {p.game.active_round_id}"
                )
                await self._bind_round(p.game.active_round_id)
            return True

        if table == "game_rounds":
            if event.row.get("id") != self._bound_round_id:
                return False
            p.round = None if event.type == ChangeType.DELETE else RoundRead.model_validate(event.new)
            if self.score_service is not None:
                await self._refresh_scores()
            return True

        if table in ("game_teams", "participants"):
            target = p.teams if table == "game_teams" else p.participants
            row_id = event.row.get("id")
            if event.type == ChangeType.DELETE or event.row.get("game_id") != self.game_id:
                target.pop(row_id, None)
            else:
                target[row_id] = ROW_MODELS[table].model_validate(event.new)
            return True

        if table == "game_challenges":
            p.challenges = await self.reader.list_challenges(self.game_id)
            return True

        if table in ROUND_TABLES:
            round_id = self._bound_round_id
            if round_id is None or event.row.get("round_id") != round_id:
                return False
            if table == "round_votes":
                p.votes = await self.reader.list_votes(round_id)
            elif table == "round_lineups":
                p.lineups = await self.reader.list_lineups(round_id)
            else:
                p.outcomes = await self.reader.list_outcomes(round_id)
                if self.score_service is not None:
                    await self._refresh_scores()
            return True

        return False

    async def _notify(self):
        if self.on_change is None:
            return
        try:
            result = self.on_change(self.projection)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Sync client change callback failed for game {self.game_id}: {e}")

    async def _poll_scores(self):
        """Leaderboard backstop poll"""
        while True:
            await asyncio.sleep(self.leaderboard_interval)
            try:
                await self._refresh_scores()
            except GameError as e:
                logger.warning(f"Leaderboard refresh failed for game {self.game_id}: {e.message}")
                continue
            await self._notify()
