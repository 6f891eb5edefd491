"""
主程序入口

启动两个并发任务：
1. 定时探测调度器
2. REST API 服务

API 服务退出（Ctrl+C / SIGTERM）后停止调度器，在途探测有一个短暂的收尾窗口。
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

import uvicorn

from . import __version__
from .config import get_config
from .database import get_db
from .scheduler import get_scheduler


def setup_logging():
    """配置日志"""
    config = get_config()

    # 日志格式
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # 获取日志级别
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    # 配置根日志
    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # 如果配置了文件日志
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def acquire_single_instance_lock(lock_path: Path):
    """
    防止误启动多个实例（多实例会导致端口冲突/重复探测）。

    通过文件锁实现：同一台机器同一路径下只能有一个进程持锁。
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")
    handle.seek(0)
    if not handle.read(1):
        handle.write(b"0")
        handle.flush()
    handle.seek(0)

    try:
        if os.name == "nt":
            import msvcrt  # type: ignore

            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl  # type: ignore

            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise RuntimeError(f"Another craftwatch instance is already running (lock: {lock_path})") from e

    return handle


async def run_api_server():
    """运行 API 服务器（收到退出信号后返回）"""
    from .api.app import create_app

    config = get_config()
    app = create_app()

    server_config = uvicorn.Config(
        app=app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False  # 我们用自己的日志
    )
    server = uvicorn.Server(server_config)
    await server.serve()


async def main():
    """主函数：启动所有任务"""
    logger = logging.getLogger(__name__)

    # 设置日志
    setup_logging()
    logger.info("=" * 60)
    logger.info(f"craftwatch v{__version__}")
    logger.info("=" * 60)

    # 加载配置
    config = get_config()
    logger.info(f"Config loaded: API={config.api.host}:{config.api.port}")
    logger.info(f"Database: {config.database.path}")

    # 单实例锁：避免重复启动
    try:
        db_path = Path(config.database.path)
        lock_handle = acquire_single_instance_lock(db_path.parent / "craftwatch.lock")
    except (OSError, RuntimeError) as e:
        logger.error(str(e))
        return

    try:
        # 初始化数据库
        db = get_db()
        db.init_schema()
        logger.info(f"Database initialized: {db.db_path}")

        if config.registry.seed_default_server:
            seeded = db.seed_default_server(
                config.registry.default_name,
                config.registry.default_address,
                config.registry.default_port,
            )
            if seeded:
                logger.info(
                    f"Inserted default server "
                    f"({config.registry.default_address}:{config.registry.default_port})"
                )

        scheduler = get_scheduler()
        scheduler.start()

        try:
            await run_api_server()
        finally:
            logger.info("Stopping scheduler...")
            await scheduler.stop()
            logger.info("Bye!")
    finally:
        lock_handle.close()


def cli():
    """命令行入口"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
