"""
WebSocket endpoints
WebSocket连接端点 - 每个连接一个同步客户端，投影变化时推送快照
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from party_game.api.deps import get_store
from party_game.core.config import settings
from party_game.core.exceptions import GameError
from party_game.realtime.change_feed import change_feed
from party_game.services.identity import identity_service
from party_game.services.queries import GameReader
from party_game.services.scoring import ScoreService
from party_game.sync.client import GameProjection, GameSyncClient
from party_game.websocket.connection_manager import connection_key, connection_manager

logger = logging.getLogger(__name__)
router = APIRouter()

ROLES = ("host", "player")


@router.websocket("/games/{game_id}")
async def websocket_game_endpoint(websocket: WebSocket, game_id: str):
    """
    游戏WebSocket连接端点

    查询参数: token (匿名身份令牌), role (host/player)
    """
    role = websocket.query_params.get("role", "player")
    user_id = identity_service.resolve(websocket.query_params.get("token"))
    logger.info(f"[WS_CONNECT] {role} connection attempt for game {game_id}")

    if role not in ROLES:
        await websocket.close(code=4000, reason="Unknown role")
        return

    try:
        store = get_store()
    except Exception as e:
        logger.error(f"[WS_CONNECT] Store unavailable: {e}")
        await websocket.close(code=1011, reason="Service unavailable")
        return
    reader = GameReader(store)

    try:
        game = await reader.get_game(game_id)
    except GameError as e:
        await websocket.close(code=4004, reason=e.message)
        return

    if role == "host" and game.host_user_id and game.host_user_id != user_id:
        logger.warning(f"[WS_CONNECT] Non-host {user_id} tried to open host view of game {game_id}")
        await websocket.close(code=4003, reason="Only the host can open this view")
        return

    participant_id: Optional[str] = None
    if user_id and role == "player":
        participant = await reader.find_participant(game_id, user_id)
        participant_id = participant.id if participant else None

    key = connection_key(user_id or f"anonymous-{uuid.uuid4().hex[:8]}", game_id, role)
    if not await connection_manager.connect(key, websocket, game_id, user_id=user_id, role=role):
        await websocket.close(code=4002, reason="Connection limit reached")
        return

    async def push_snapshot(projection: GameProjection):
        await connection_manager.send(key, {"type": "snapshot", "data": projection.snapshot()})

    client = GameSyncClient(
        game_id,
        reader,
        change_feed,
        role=role,
        participant_id=participant_id,
        on_change=push_snapshot,
        leaderboard_interval=settings.LEADERBOARD_REFRESH_INTERVAL,
        score_service=ScoreService(reader),
    )

    try:
        await client.start()
        if not connection_manager.attach_sync_client(key, client, websocket=websocket):
            logger.info(f"WebSocket {key} was replaced during start")
            return

        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                await connection_manager.send(key, {"type": "error", "data": {"message": "Invalid JSON format"}})
                continue

            if not isinstance(message, dict) or "type" not in message:
                await connection_manager.send(key, {"type": "error", "data": {"message": "Invalid message format"}})
                continue
            await handle_websocket_message(key, client, reader, user_id, message)

    except WebSocketDisconnect:
        logger.info(f"WebSocket {key} disconnected")
    except GameError as e:
        logger.warning(f"WebSocket {key} sync failed: {e.message}")
    finally:
        # 只释放本连接自己的订阅；重连后的新连接不受影响
        await client.close()
        await connection_manager.disconnect(key, "Connection closed", websocket=websocket)


async def handle_websocket_message(key: str, client: GameSyncClient, reader: GameReader,
                                   user_id: Optional[str], message: dict) -> None:
    """处理客户端消息"""
    message_type = message.get("type")

    if message_type == "ping":
        connection_manager.mark_pong(key)
        await connection_manager.send(key, {"type": "pong"})
    elif message_type == "pong":
        connection_manager.mark_pong(key)
    elif message_type == "resync":
        await client.resync()
    elif message_type == "identify":
        # 玩家加入后重新绑定自己的参与者
        if not user_id:
            await connection_manager.send(key, {"type": "error", "data": {"message": "Identity token required"}})
            return
        participant = await reader.find_participant(client.game_id, user_id)
        await client.identify(participant.id if participant else None)
    else:
        logger.debug(f"Unknown message type from {key}: {message_type}")
        await connection_manager.send(key, {
            "type": "error",
            "data": {"message": f"Unknown message type: {message_type}"}
        })


@router.get("/stats")
async def get_connection_stats():
    """获取连接统计信息"""
    return {
        "connections": connection_manager.get_connection_count(),
        "games": connection_manager.get_game_count(),
        "subscriptions": change_feed.subscription_count,
    }
