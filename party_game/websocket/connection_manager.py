"""
WebSocket连接管理器
管理主持人/玩家的WebSocket连接、游戏内广播以及每个连接的同步客户端
"""

import json
import logging
import asyncio
from typing import Dict, Set, Optional, List, Any
from datetime import datetime
from fastapi import WebSocket

from party_game.core.config import settings

logger = logging.getLogger(__name__)


def connection_key(user_id: str, game_id: str, role: str) -> str:
    """同一设备以同一角色重连时复用同一个键"""
    return f"{role}:{game_id}:{user_id}"


class ConnectionManager:
    """
    WebSocket连接管理器
    负责连接生命周期、游戏广播、心跳以及断线时释放同步客户端
    """

    def __init__(self):
        # 活跃连接: key -> WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

        # 游戏连接映射: game_id -> Set[key]
        self.game_connections: Dict[str, Set[str]] = {}

        # 连接元数据: key -> connection_info
        self.connection_metadata: Dict[str, Dict[str, Any]] = {}

        # 每个连接一个同步客户端
        self.sync_clients: Dict[str, Any] = {}

        # 断线期间的消息队列
        self.message_queues: Dict[str, List[Any]] = {}

        self.max_connections = settings.MAX_WEBSOCKET_CONNECTIONS
        self.max_queue_size = settings.WEBSOCKET_MESSAGE_QUEUE_SIZE

        # 心跳配置
        self.ping_interval = settings.WEBSOCKET_PING_INTERVAL
        self.ping_timeout = settings.WEBSOCKET_PING_TIMEOUT

        self._heartbeat_tasks: Dict[str, asyncio.Task] = {}

    async def connect(self, key: str, websocket: WebSocket, game_id: str,
                      user_id: Optional[str] = None, role: str = "player") -> bool:
        """接受连接并加入游戏；超过连接上限时拒绝"""
        if len(self.active_connections) >= self.max_connections and key not in self.active_connections:
            logger.warning(f"Connection limit reached, rejecting {key}")
            return False

        await websocket.accept()

        # 同一键已有连接时先断开旧连接
        if key in self.active_connections:
            await self.disconnect(key, "New connection established")

        self.active_connections[key] = websocket
        self.connection_metadata[key] = {
            "connected_at": datetime.now(),
            "last_pong": datetime.now(),
            "game_id": game_id,
            "user_id": user_id,
            "role": role,
        }
        self.game_connections.setdefault(game_id, set()).add(key)

        self._start_heartbeat(key)
        await self._send_queued_messages(key)

        logger.info(f"Connection {key} opened for game {game_id}")
        return True

    def attach_sync_client(self, key: str, client, websocket: Optional[WebSocket] = None) -> bool:
        """连接已被重连替换时不挂载"""
        if websocket is not None and self.active_connections.get(key) is not websocket:
            return False
        self.sync_clients[key] = client
        return True

    async def disconnect(self, key: str, reason: str = "Connection closed",
                         websocket: Optional[WebSocket] = None) -> bool:
        """
        断开连接并释放它持有的同步客户端
        传入 websocket 时只在它仍是该键的当前连接时才断开
        """
        if websocket is not None and self.active_connections.get(key) is not websocket:
            logger.debug(f"Connection {key} already replaced, skipping disconnect")
            return False

        task = self._heartbeat_tasks.pop(key, None)
        if task and task is not asyncio.current_task():
            task.cancel()

        client = self.sync_clients.pop(key, None)
        if client is not None:
            await client.close()

        metadata = self.connection_metadata.pop(key, None)
        if metadata:
            game_id = metadata.get("game_id")
            keys = self.game_connections.get(game_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self.game_connections[game_id]

        current = self.active_connections.pop(key, None)
        if current is not None:
            try:
                await current.close(code=1000, reason=reason)
            except RuntimeError:
                # 连接可能已经关闭
                pass

        logger.info(f"Connection {key} closed: {reason}")
        return True

    def mark_pong(self, key: str) -> None:
        if key in self.connection_metadata:
            self.connection_metadata[key]["last_pong"] = datetime.now()

    async def send(self, key: str, message: dict) -> bool:
        """发送消息；连接不存在时进入队列"""
        websocket = self.active_connections.get(key)
        if websocket is None:
            queue = self.message_queues.setdefault(key, [])
            queue.append({**message, "queued_at": datetime.now().isoformat()})
            if len(queue) > self.max_queue_size:
                self.message_queues[key] = queue[-self.max_queue_size:]
            logger.debug(f"Message queued for offline connection {key}")
            return False

        try:
            await websocket.send_text(json.dumps(message, default=str))
            return True
        except (RuntimeError, ConnectionError) as e:
            logger.warning(f"Send to {key} failed, dropping connection: {e}")
            await self.disconnect(key, "Send failed", websocket=websocket)
            return False

    async def broadcast_to_game(self, game_id: str, message: dict, exclude: Optional[str] = None) -> int:
        """广播消息到游戏内所有连接"""
        sent_count = 0
        for key in list(self.game_connections.get(game_id, set())):
            if exclude and key == exclude:
                continue
            if await self.send(key, message):
                sent_count += 1
        logger.debug(f"Sent '{message.get('type', 'unknown')}' to {sent_count} connections in game {game_id}")
        return sent_count

    async def _send_queued_messages(self, key: str) -> None:
        messages = self.message_queues.pop(key, [])
        for message in messages:
            await self.send(key, message)
        if messages:
            logger.info(f"Sent {len(messages)} queued messages to {key}")

    def _start_heartbeat(self, key: str) -> None:
        """启动心跳监控"""
        websocket = self.active_connections.get(key)

        async def heartbeat_task():
            try:
                while key in self.active_connections:
                    await asyncio.sleep(self.ping_interval)
                    if key not in self.active_connections:
                        break

                    metadata = self.connection_metadata.get(key, {})
                    last_pong = metadata.get("last_pong")
                    if last_pong:
                        silence = (datetime.now() - last_pong).total_seconds()
                        # 一个心跳周期加超时仍无响应，断开连接
                        if silence > self.ping_interval + self.ping_timeout:
                            logger.warning(f"Connection {key} heartbeat timeout ({silence:.1f}s)")
                            await self.disconnect(key, "Heartbeat timeout", websocket=websocket)
                            break

                    await self.send(key, {
                        "type": "ping",
                        "data": {"timestamp": datetime.now().isoformat()}
                    })
            except asyncio.CancelledError:
                logger.debug(f"Heartbeat task cancelled for {key}")

        if key in self._heartbeat_tasks:
            self._heartbeat_tasks[key].cancel()
        self._heartbeat_tasks[key] = asyncio.create_task(heartbeat_task())

    async def close_all(self) -> None:
        for key in list(self.active_connections):
            await self.disconnect(key, "Server shutdown")

    def get_connection_count(self) -> int:
        return len(self.active_connections)

    def get_game_count(self) -> int:
        return len(self.game_connections)

    def get_game_connections(self, game_id: str) -> List[str]:
        return list(self.game_connections.get(game_id, set()))

    def is_connected(self, key: str) -> bool:
        return key in self.active_connections


# 全局连接管理器实例
connection_manager = ConnectionManager()
