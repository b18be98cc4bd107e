#!/usr/bin/env python3
"""
数据库初始化脚本
创建表结构并写入默认队伍模板（红、蓝、绿、黄）
"""

import asyncio
import sys
from pathlib import Path

# 添加项目根目录到路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from party_game.core.config import settings  # noqa: E402
from party_game.core.database import close_db, db_manager, init_db  # noqa: E402
from party_game.core.redis_client import close_redis, init_redis, redis_manager  # noqa: E402
from party_game.realtime.change_feed import ChangeFeed  # noqa: E402
from party_game.services.game_editor import GameEditor  # noqa: E402
from party_game.services.store import GameStore  # noqa: E402


async def init_tables():
    """初始化表结构"""
    print(f"\n初始化表结构: {settings.DATABASE_URL}")
    await init_db()
    print("表结构创建成功！")


async def init_team_catalog():
    """写入默认队伍模板"""
    print("\n初始化队伍模板...")
    editor = GameEditor(GameStore(db_manager.session_factory, ChangeFeed()))
    added = await editor.seed_team_catalog()
    if added:
        print(f"成功导入 {added} 个队伍模板！")
    else:
        print("队伍模板已存在，保留现有数据")


async def check_redis():
    """检查 Redis 连接（仅多进程部署需要）"""
    print("\n检查 Redis 连接...")
    await init_redis()
    if redis_manager.is_available:
        print(f"Redis 连接成功: {settings.REDIS_URL}")
    else:
        print("警告: Redis 不可用，变更推送只在单进程内生效")
    await close_redis()


async def main():
    print("=" * 50)
    print("  派对游戏主持服务 - 数据库初始化脚本")
    print("=" * 50)

    try:
        await init_tables()
        await init_team_catalog()
    finally:
        await close_db()
    await check_redis()

    print("\n初始化完成！")


if __name__ == "__main__":
    asyncio.run(main())
