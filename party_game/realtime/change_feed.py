"""
Row-level change feed
行级变更推送 - 按表和列过滤，把 INSERT/UPDATE/DELETE 事件分发给订阅者

Subscriptions are scoped handles: whoever acquires one must close it when the
scoping key (game id, round id) changes or the consumer stops listening.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from party_game.core.config import settings

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_CHANGE_TYPES: FrozenSet[ChangeType] = frozenset(ChangeType)


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change"""
    table: str
    type: ChangeType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    origin: Optional[str] = None

    @property
    def row(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "type": self.type.value,
            "new": self.new,
            "old": self.old,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            table=data["table"],
            type=ChangeType(data["type"]),
            new=data.get("new"),
            old=data.get("old"),
            origin=data.get("origin"),
        )


@dataclass(frozen=True)
class ChangeFilter:
    """table + optional `column=eq.value` filter"""
    table: str
    column: Optional[str] = None
    value: Optional[str] = None
    events: FrozenSet[ChangeType] = ALL_CHANGE_TYPES

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type not in self.events:
            return False
        if self.column is None:
            return True
        # UPDATE 时新旧任一行匹配即可（例如参与者被移出本局）
        for row in (event.new, event.old):
            if row is not None and row.get(self.column) == self.value:
                return True
        return False


@dataclass(eq=False)
class Subscription:
    """Handle returned by ChangeFeed.subscribe"""
    feed: "ChangeFeed"
    filters: List[ChangeFilter]
    key: str = ""
    inbox: Optional[asyncio.Queue] = None
    maxsize: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    active: bool = True
    overflowed: bool = False

    def __post_init__(self):
        if self.inbox is None:
            self.inbox = asyncio.Queue(maxsize=self.maxsize)
            self._shared = False
        else:
            self._shared = True

    def matches(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def deliver(self, event: ChangeEvent):
        if not self.active:
            return
        item = (self, event) if self._shared else event
        try:
            self.inbox.put_nowait(item)
        except asyncio.QueueFull:
            # 消费者需要整体重新拉取
            self.overflowed = True
            logger.warning(f"Subscription {self.key or self.id} queue full, dropping {event.table} {event.type.value}")

    async def get(self) -> ChangeEvent:
        """Next event for a subscription with its own queue"""
        if self._shared:
            raise RuntimeError("Subscription delivers into a shared inbox")
        return await self.inbox.get()

    def close(self):
        if not self.active:
            return
        self.active = False
        self.feed._remove(self)
        logger.debug(f"Subscription released: {self.key or self.id}")

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ChangeFeed:
    """In-process fan-out with an optional redis bridge between processes"""

    def __init__(self, channel: Optional[str] = None, queue_size: Optional[int] = None):
        self.node_id = str(uuid.uuid4())
        self.channel = channel or settings.CHANGE_FEED_CHANNEL
        self.queue_size = settings.CHANGE_FEED_QUEUE_SIZE if queue_size is None else queue_size
        self._subscriptions: Set[Subscription] = set()
        self._redis_manager = None
        self._listener_task: Optional[asyncio.Task] = None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        filters: Iterable[ChangeFilter],
        key: str = "",
        inbox: Optional[asyncio.Queue] = None,
    ) -> Subscription:
        subscription = Subscription(
            feed=self,
            filters=list(filters),
            key=key,
            inbox=inbox,
            maxsize=self.queue_size,
        )
        self._subscriptions.add(subscription)
        logger.debug(f"Subscription acquired: {key or subscription.id} ({len(subscription.filters)} filters)")
        return subscription

    def _remove(self, subscription: Subscription):
        self._subscriptions.discard(subscription)

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver to local subscribers only; returns delivery count"""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.deliver(event)
                delivered += 1
        return delivered

    async def publish(self, events: Iterable[ChangeEvent]):
        """Publish committed changes locally and to other processes"""
        for event in events:
            self.dispatch(event)
            if self._redis_manager is not None and self._redis_manager.is_available:
                payload = event.to_dict()
                payload["origin"] = self.node_id
                try:
                    await self._redis_manager.publish_event(self.channel, payload)
                except Exception as e:
                    # 本地订阅者已经收到；其他进程依赖兜底轮询
                    logger.error(f"Failed to forward change event to redis: {e}")

    async def start_bridge(self, redis_manager):
        """Forward events through redis pub/sub"""
        if not redis_manager.is_available:
            logger.warning("Redis unavailable, change feed stays in-process")
            return
        self._redis_manager = redis_manager
        self._listener_task = asyncio.create_task(self._listen())
        logger.info(f"Change feed bridged to redis channel {self.channel}")

    async def stop_bridge(self):
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
        self._listener_task = None
        self._redis_manager = None

    async def _listen(self):
        """Redis channel listener"""
        pubsub = None
        try:
            pubsub = await self._redis_manager.open_pubsub(self.channel)
            logger.info("Started redis listener for change events")

            async for message in pubsub.listen():
                if message["type"] == "message":
                    self._handle_redis_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Change feed redis listener error: {e}")
        finally:
            if pubsub is not None:
                await pubsub.aclose()

    def _handle_redis_message(self, message):
        try:
            data = message['data']
            if isinstance(data, bytes):
                data = data.decode()
            event = ChangeEvent.from_dict(json.loads(data))
        except (ValueError, KeyError) as e:
            logger.error(f"Malformed change event on redis channel: {e}")
            return
        if event.origin == self.node_id:
            return
        self.dispatch(event)

    def close_all(self):
        for subscription in list(self._subscriptions):
            subscription.close()


# 全局变更推送实例
change_feed = ChangeFeed()
