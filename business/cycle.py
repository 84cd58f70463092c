"""周期追踪：从到店记录推导顾客当前的 30 天周期。

周期不单独存储：每次读取时根据到店记录重新计算。
第一次到店开启周期；周期结束后的第一次到店开启新周期。
已发放折扣的周期开始时间同样是固定的周期起点：之后作废或拒绝
开启该周期的到店，不会让周期起点后移。
周期过期只在读取时判断，不做后台清理，也不修改历史记录。
"""
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from config.settings import settings
from .models import CycleState, VisitStatus, as_datetime, status_of

ONE_DAY = timedelta(days=1)

# 能够开启周期的状态；被拒绝或作废的到店不开启周期
ANCHOR_STATUSES = frozenset({VisitStatus.PENDING, VisitStatus.APPROVED})


def compute_cycle(visits: Iterable, now: datetime,
                  discount_cycle_starts: Iterable[datetime] = (),
                  cycle_days: Optional[int] = None) -> CycleState:
    """计算顾客当前周期。

    Args:
        visits: 到店记录（需具备 visit_date、status 属性），顺序不限。
        now: 当前时间（可注入，便于测试）。
        discount_cycle_starts: 已发放折扣所属周期的开始时间。
        cycle_days: 周期天数，默认读取 settings.loyalty_cycle_days。

    Returns:
        CycleState。没有任何到店记录时 has_cycle 为 False，days_remaining 为周期天数。
    """
    if cycle_days is None:
        cycle_days = settings.loyalty_cycle_days
    length = timedelta(days=cycle_days)

    used_starts = {as_datetime(s) for s in discount_cycle_starts}
    cycle_start = None
    for opener in _window_openers(visits, used_starts, now):
        if cycle_start is None or opener > cycle_start + length:
            cycle_start = opener

    if cycle_start is None:
        return CycleState(has_cycle=False, cycle_days=cycle_days,
                          days_remaining=cycle_days)

    cycle_end = cycle_start + length
    return CycleState(
        has_cycle=True,
        cycle_days=cycle_days,
        days_remaining=math.ceil((cycle_end - now) / ONE_DAY),
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        is_expired=now > cycle_end,
        discount_used=cycle_start in used_starts,
    )


def starts_new_cycle(cycle: CycleState, visit_date: datetime) -> bool:
    """判断一次新的到店是否会开启新周期。"""
    if not cycle.has_cycle:
        return True
    return as_datetime(visit_date) > cycle.cycle_end


def _window_openers(visits: Iterable, used_starts, now: datetime):
    openers = {
        as_datetime(v.visit_date) for v in visits
        if status_of(v) in ANCHOR_STATUSES
    }
    openers.update(used_starts)
    return sorted(moment for moment in openers if moment <= now)
