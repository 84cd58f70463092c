"""折扣资格评估。

资格在折扣到店完成并审核通过之后判定：周期内已审核通过的到店次数
达到 ``required_visits`` 且本周期尚未使用折扣，即可发放折扣（discount_due）。
只差一次时给出"下次到店享受折扣"的提示（second_visit），此时下一次到店
就是折扣到店，两种提示对同一状态互斥。折扣到店登记后、审核之前
（discount_pending），之后的到店不再被标记为折扣到店。
"""
from typing import Dict, Iterable, Optional

from config.settings import settings
from .models import CycleState, EligibilityResult, VisitStatus, as_datetime, status_of


def count_visits_in_cycle(cycle: CycleState, visits: Iterable) -> int:
    """统计周期内已审核通过的到店次数（周期两端都包含）。"""
    if not cycle.has_cycle:
        return 0
    return sum(
        1 for v in visits
        if status_of(v) is VisitStatus.APPROVED
        and cycle.cycle_start <= as_datetime(v.visit_date) <= cycle.cycle_end
    )


def has_pending_discount_visit(cycle: CycleState, visits: Iterable) -> bool:
    """周期内是否有已登记、待审核的折扣到店。"""
    return any(
        status_of(v) is VisitStatus.PENDING
        and getattr(v, "is_discount_visit", False)
        and cycle.contains(v.visit_date)
        for v in visits
    )


def is_discount_visit(visits_in_cycle: int, required_visits: Optional[int] = None) -> bool:
    """已审核次数为 visits_in_cycle 时，下一次到店是否为折扣到店。"""
    if required_visits is None:
        required_visits = settings.loyalty_required_visits
    return visits_in_cycle == required_visits - 1


def evaluate_eligibility(cycle: CycleState, visits: Iterable,
                         required_visits: Optional[int] = None) -> EligibilityResult:
    """评估顾客的折扣资格（纯函数，无副作用）。

    Args:
        cycle: compute_cycle 的结果。
        visits: 顾客全部到店记录。
        required_visits: 触发折扣的到店次数，默认读取 settings。

    Returns:
        EligibilityResult。
    """
    if required_visits is None:
        required_visits = settings.loyalty_required_visits

    visits_in_cycle = count_visits_in_cycle(cycle, visits)
    cycle_open = cycle.has_cycle and not cycle.is_expired and not cycle.discount_used
    eligible = cycle_open and visits_in_cycle >= required_visits
    pending = cycle_open and not eligible and has_pending_discount_visit(cycle, visits)
    next_visit_discount = (
        cycle_open and not pending
        and is_discount_visit(visits_in_cycle, required_visits)
    )

    return EligibilityResult(
        visits_in_cycle=visits_in_cycle,
        is_eligible_for_discount=eligible,
        visits_until_discount=max(0, required_visits - visits_in_cycle),
        discount_used=cycle.discount_used,
        required_visits=required_visits,
        message_key=_message_key(cycle, eligible, pending, next_visit_discount),
        next_visit_is_discount=next_visit_discount,
        discount_visit_pending=pending,
    )


def _message_key(cycle: CycleState, eligible: bool, pending: bool,
                 next_visit_discount: bool) -> str:
    if not cycle.has_cycle:
        return "no_cycle"
    if cycle.is_expired:
        return "cycle_expired"
    if cycle.discount_used:
        return "discount_granted"
    if eligible:
        return "discount_due"
    if pending:
        return "discount_pending"
    if next_visit_discount:
        return "second_visit"
    return "progress"


def build_message(result: EligibilityResult, cycle: CycleState,
                  templates: Dict[str, str],
                  discount_percentage: Optional[int] = None,
                  message_key: Optional[str] = None) -> str:
    """根据评估结果渲染面向顾客的提示文案。"""
    if discount_percentage is None:
        discount_percentage = settings.loyalty_discount_percentage
    template = templates.get(message_key or result.message_key, "")
    return template.format(
        cycle_days=cycle.cycle_days,
        days_remaining=cycle.days_remaining,
        visits_in_cycle=result.visits_in_cycle,
        visits_until_discount=result.visits_until_discount,
        required_visits=result.required_visits,
        discount_percentage=discount_percentage,
    )
