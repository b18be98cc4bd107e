"""
Change feed tests
行级变更推送测试
"""

import asyncio
import json

import pytest

from party_game.core.exceptions import PreconditionFailed
from party_game.realtime.change_feed import ChangeEvent, ChangeFeed, ChangeFilter, ChangeType
from party_game.schemas.game import GameSettingsUpdate


def event(table, type_=ChangeType.UPDATE, new=None, old=None):
    return ChangeEvent(table=table, type=type_, new=new, old=old)


class TestFilters:

    def test_column_filter_matches_new_or_old_row(self):
        f = ChangeFilter("participants", "game_id", "g1")
        assert f.matches(event("participants", new={"game_id": "g1"}))
        assert f.matches(event("participants", ChangeType.DELETE, old={"game_id": "g1"}))
        assert not f.matches(event("participants", new={"game_id": "g2"}))
        assert not f.matches(event("games", new={"game_id": "g1"}))

    def test_event_type_filter(self):
        f = ChangeFilter("round_votes", events=frozenset({ChangeType.INSERT}))
        assert f.matches(event("round_votes", ChangeType.INSERT, new={}))
        assert not f.matches(event("round_votes", ChangeType.DELETE, old={}))

    def test_event_round_trip_through_json(self):
        original = event("games", new={"id": "g1", "phase": "voting"}, old={"id": "g1", "phase": "lobby"})
        restored = ChangeEvent.from_dict(json.loads(json.dumps(original.to_dict())))
        assert restored == original


class TestSubscriptions:

    async def test_dispatch_only_to_matching_subscriptions(self):
        feed = ChangeFeed(queue_size=10)
        games = feed.subscribe([ChangeFilter("games", "id", "g1")])
        votes = feed.subscribe([ChangeFilter("round_votes", "round_id", "r1")])

        await feed.publish([event("games", new={"id": "g1"})])

        assert games.inbox.qsize() == 1
        assert votes.inbox.qsize() == 0
        received = await games.get()
        assert received.table == "games"

    async def test_closed_subscription_receives_nothing(self):
        feed = ChangeFeed(queue_size=10)
        async with feed.subscribe([ChangeFilter("games")]) as subscription:
            assert feed.subscription_count == 1
        assert feed.subscription_count == 0
        assert not subscription.active

        await feed.publish([event("games", new={"id": "g1"})])
        assert subscription.inbox.qsize() == 0

    async def test_shared_inbox_tags_events_with_subscription(self):
        feed = ChangeFeed(queue_size=10)
        inbox = asyncio.Queue()
        first = feed.subscribe([ChangeFilter("games")], key="a", inbox=inbox)
        second = feed.subscribe([ChangeFilter("round_votes")], key="b", inbox=inbox)

        await feed.publish([event("round_votes", ChangeType.INSERT, new={}), event("games", new={})])

        tagged = [inbox.get_nowait(), inbox.get_nowait()]
        assert [sub for sub, _ in tagged] == [second, first]

    async def test_overflow_is_flagged(self):
        feed = ChangeFeed(queue_size=1)
        subscription = feed.subscribe([ChangeFilter("games")])
        await feed.publish([event("games", new={}), event("games", new={})])
        assert subscription.overflowed
        assert subscription.inbox.qsize() == 1

    async def test_own_redis_echo_is_ignored(self):
        feed = ChangeFeed(queue_size=10)
        subscription = feed.subscribe([ChangeFilter("games")])

        payload = event("games", new={"id": "g1"}).to_dict()
        feed._handle_redis_message({"type": "message", "data": json.dumps({**payload, "origin": feed.node_id})})
        assert subscription.inbox.qsize() == 0

        feed._handle_redis_message({"type": "message", "data": json.dumps({**payload, "origin": "other-node"})})
        assert subscription.inbox.qsize() == 1

    async def test_malformed_redis_message_is_dropped(self):
        feed = ChangeFeed(queue_size=10)
        subscription = feed.subscribe([ChangeFilter("games")])
        feed._handle_redis_message({"type": "message", "data": "not json"})
        assert subscription.inbox.qsize() == 0


class TestStorePublishing:
    """事务提交后才发布"""

    async def test_events_published_after_commit(self, store, feed, editor, game):
        subscription = feed.subscribe([ChangeFilter("games", "id", game.id)])
        await editor.update_settings(game.id, GameSettingsUpdate(title="Renamed"))

        received = subscription.inbox.get_nowait()
        assert received.type == ChangeType.UPDATE
        assert received.new["title"] == "Renamed"
        assert received.old["title"] == "Friday Show"

    async def test_rejected_write_publishes_nothing(self, feed, machine, game):
        subscription = feed.subscribe([ChangeFilter("games", "id", game.id)])
        with pytest.raises(PreconditionFailed):
            await machine.lock_voting(game.id)
        assert subscription.inbox.qsize() == 0

    async def test_unchanged_update_publishes_nothing(self, feed, editor, game):
        subscription = feed.subscribe([ChangeFilter("games", "id", game.id)])
        await editor.update_settings(game.id, GameSettingsUpdate(title="Friday Show"))
        assert subscription.inbox.qsize() == 0

    async def test_enum_columns_published_as_values(self, feed, machine, game):
        subscription = feed.subscribe([ChangeFilter("games", "id", game.id)])
        await machine.start_round(game.id)

        received = subscription.inbox.get_nowait()
        assert received.new["phase"] == "leader_selection"
        assert received.new["active_round_id"] is not None
