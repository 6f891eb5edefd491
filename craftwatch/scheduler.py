"""
定时探测调度器

每 600 秒（对齐到 Unix 纪元起的整 600 秒边界）读取全部服务器，
为每台服务器启动一个独立的探测任务。

- 任务只启动不等待：下一轮的计时从本轮开始时算起，与探测是否完成无关
- 单个服务器卡住或失败不影响其他服务器，也不影响下一轮
- 手动探测（probe_server）走同一条路径，不改变定时节奏
- 写库失败只记录日志，不会终止调度循环
"""

import asyncio
import logging
import sqlite3
import time
from typing import Awaitable, Callable, Dict, Any, Optional, Set

from .database import Database, get_db
from .models import ProbeOutcome
from .probe import PROBE_TIMEOUT, probe

logger = logging.getLogger(__name__)

SCHEDULE_PERIOD = 600

ProbeFunc = Callable[[str, int], Awaitable[ProbeOutcome]]


def seconds_until_next_tick(now: float, period: int = SCHEDULE_PERIOD) -> float:
    """距离下一个整 period 秒边界的等待时间（正好落在边界上时等待一个完整周期）"""
    return period - (now % period)


class ProbeScheduler:
    """
    探测调度器

    持有数据库（服务器注册表 + 探测记录）和当前在途的探测任务集合。
    时钟、sleep 和探测函数都可以注入，方便测试。
    """

    def __init__(
        self,
        db: Database,
        probe_fn: ProbeFunc = probe,
        period: int = SCHEDULE_PERIOD,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.period = period
        self._probe = probe_fn
        self._clock = clock
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> int:
        """当前尚未完成的探测任务数"""
        return len(self._tasks)

    async def probe_server(self, server: Dict[str, Any]) -> bool:
        """
        探测一台服务器并立即写入结果

        Returns:
            写库是否成功（离线结果写入成功同样返回 True）
        """
        outcome = await self._probe(server["address"], server["port"])
        try:
            self.db.insert_ping_result(server["id"], outcome)
        except (sqlite3.Error, OverflowError) as e:
            logger.error(f"Failed to store ping result for server {server['id']}: {e}", exc_info=True)
            return False
        return True

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Probe task {task.get_name()} crashed: {exc!r}")

    def dispatch_tick(self) -> int:
        """
        读取全部服务器并为每台启动一个探测任务（不等待完成）

        Returns:
            启动的任务数
        """
        servers = self.db.get_all_servers()
        for server in servers:
            task = asyncio.create_task(
                self.probe_server(server),
                name=f"probe-server-{server['id']}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

        logger.info(f"Dispatched probes for {len(servers)} servers")
        return len(servers)

    async def run(self):
        """运行调度循环，直到被取消"""
        wait = seconds_until_next_tick(self._clock(), self.period)
        logger.info(f"Starting scheduler (period={self.period}s, first tick in {wait:.0f}s)")

        try:
            await self._sleep(wait)

            while True:
                tick_started = self._clock()
                try:
                    self.dispatch_tick()
                except Exception as e:
                    logger.error(f"Scheduler tick error: {e}", exc_info=True)

                await self._sleep(max(0.0, tick_started + self.period - self._clock()))

        except asyncio.CancelledError:
            logger.info("Scheduler task cancelled")
            raise

    def start(self) -> asyncio.Task:
        """在当前事件循环中启动调度循环"""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run(), name="probe-scheduler")
        return self._loop_task

    async def stop(self, grace: float = PROBE_TIMEOUT):
        """
        停止调度循环

        在途探测最多再等待 grace 秒，之后直接取消。
        每次写库都是单个事务，取消不会留下半条记录。
        """
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        pending = set(self._tasks)
        if not pending:
            return

        logger.info(f"Waiting up to {grace}s for {len(pending)} in-flight probes")
        _, still_pending = await asyncio.wait(pending, timeout=grace)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.wait(still_pending)
            logger.info(f"Abandoned {len(still_pending)} probes on shutdown")


# 全局调度器实例（延迟加载）
_scheduler: Optional[ProbeScheduler] = None


def get_scheduler() -> ProbeScheduler:
    """获取全局调度器实例"""
    global _scheduler
    if _scheduler is None:
        _scheduler = ProbeScheduler(get_db())
    return _scheduler


def reset_scheduler():
    """重置调度器实例（主要用于测试）"""
    global _scheduler
    _scheduler = None
