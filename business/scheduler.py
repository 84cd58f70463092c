"""忠诚度定时任务。

目前只有一个每日任务：营业结束后生成忠诚度日报（注册见 business/reports.py）。
周期过期在读取时判断，不需要定时清理。
"""
from typing import Awaitable, Callable, List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger


class Scheduler:
    """AsyncIOScheduler 的薄封装，start() 必须在运行中的事件循环里调用。"""

    def __init__(self) -> None:
        self.scheduler = AsyncIOScheduler()

    def add_daily_task(self, task_func: Callable[[], Awaitable[None]],
                       hour: int, minute: int,
                       task_id: str, task_name: str) -> None:
        """注册每天 hour:minute 运行的任务，同 ID 的任务会被替换。"""
        self.scheduler.add_job(
            task_func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=task_id,
            name=task_name,
            replace_existing=True,
        )
        logger.info(f"定时任务已注册: {task_name} 每天 {hour:02d}:{minute:02d}")

    def get_job_ids(self) -> List[str]:
        return [job.id for job in self.scheduler.get_jobs()]

    def start(self) -> None:
        self.scheduler.start()
        logger.info(f"定时任务已启动: {', '.join(self.get_job_ids())}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("定时任务已停止")
