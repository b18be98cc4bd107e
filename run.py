"""
Development server runner
开发服务器启动脚本
"""

import uvicorn

from party_game.core.config import settings


def main():
    options = {
        "host": settings.HOST,
        "port": settings.PORT,
        "access_log": True,
        "log_level": settings.LOG_LEVEL.lower(),
    }
    # reload 和 workers 互斥；多 worker 时需开启 CHANGE_FEED_REDIS_ENABLED
    if settings.DEBUG:
        options["reload"] = True
    else:
        options["workers"] = settings.WORKERS
    uvicorn.run("party_game.main:app", **options)


if __name__ == "__main__":
    main()
