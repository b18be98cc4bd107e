"""
Persistent store access
持久化存储 - 单事务写入，提交后再发布行变更事件
"""

import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from party_game.core.exceptions import GameError, StoreError
from party_game.realtime.change_feed import ChangeEvent, ChangeFeed, ChangeType

logger = logging.getLogger(__name__)


def is_unique_conflict(error: StoreError) -> bool:
    """True when a write lost a race on a unique key"""
    return isinstance(error.__cause__, IntegrityError)


def row_to_dict(obj) -> Dict[str, Any]:
    """Column values of an ORM row as plain python values"""
    data = {}
    for column in obj.__table__.columns:
        value = getattr(obj, column.key)
        if isinstance(value, Enum):
            value = value.value
        data[column.key] = value
    return data


class StoreTransaction:
    """Collects the change events of one transaction"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._pending: List[tuple] = []

    def add(self, obj):
        self.session.add(obj)
        self._pending.append((ChangeType.INSERT, obj, None))

    def snapshot(self, obj) -> Dict[str, Any]:
        """Row state before an update"""
        return row_to_dict(obj)

    def updated(self, obj, before: Dict[str, Any]):
        # 同一行在一个事务内只产生一个事件
        if any(pending is obj for _, pending, _ in self._pending):
            return
        self._pending.append((ChangeType.UPDATE, obj, before))

    def update(self, obj, **values):
        """Set attributes and record the change"""
        before = self.snapshot(obj)
        for key, value in values.items():
            setattr(obj, key, value)
        self.updated(obj, before)
        return obj

    async def delete(self, obj):
        self._pending.append((ChangeType.DELETE, obj, row_to_dict(obj)))
        await self.session.delete(obj)

    async def flush(self):
        await self.session.flush()

    def events(self) -> List[ChangeEvent]:
        """Build events after the final flush, before commit"""
        events = []
        for change_type, obj, before in self._pending:
            table = obj.__table__.name
            if change_type == ChangeType.INSERT:
                events.append(ChangeEvent(table=table, type=change_type, new=row_to_dict(obj)))
            elif change_type == ChangeType.UPDATE:
                after = row_to_dict(obj)
                if after != before:
                    events.append(ChangeEvent(table=table, type=change_type, new=after, old=before))
            else:
                events.append(ChangeEvent(table=table, type=change_type, old=before))
        return events


class GameStore:
    """
    Session factory + change feed

    Every write goes through `transaction()`: the block runs in one database
    transaction, and its change events reach subscribers only after commit.
    """

    def __init__(self, session_factory: async_sessionmaker, feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    @asynccontextmanager
    async def transaction(self):
        session = self.session_factory()
        tx = StoreTransaction(session)
        try:
            yield tx
            await session.flush()
            events = tx.events()
            await session.commit()
        except GameError:
            await session.rollback()
            raise
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Store write failed: {e}")
            raise StoreError("The store rejected the write", {"reason": str(e.__class__.__name__)}) from e
        finally:
            await session.close()

        if events:
            await self.feed.publish(events)

    @asynccontextmanager
    async def read(self):
        """Read-only session"""
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Store read failed: {e}")
            raise StoreError("The store rejected the read", {"reason": str(e.__class__.__name__)}) from e
        finally:
            await session.close()
