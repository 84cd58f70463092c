"""忠诚度每日汇总。

统计当日到店登记、审核、折扣发放情况并写入 loyalty_daily_summaries，
由定时任务在每天营业结束后调用，也可以手动补跑任意日期（幂等）。
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger

from config.settings import settings
from database import DatabaseManager
from .models import RiskLevel, VisitStatus
from .scheduler import Scheduler

HIGH_RISK_LEVELS = (RiskLevel.HIGH.value, RiskLevel.CRITICAL.value)


def build_daily_summary(db: DatabaseManager,
                        target_day: Optional[date] = None) -> Dict[str, Any]:
    """生成并保存指定日期的忠诚度汇总。

    Args:
        db: 数据库管理器。
        target_day: 汇总日期，默认今天。

    Returns:
        汇总数据字典（含 summary_id）。
    """
    target_day = target_day or date.today()

    visits = db.visits.get_by_day(target_day)
    discounts = db.discounts.get_by_day(target_day)

    approved = sum(1 for v in visits if v["status"] == VisitStatus.APPROVED.value)
    discount_total = sum(
        (Decimal(str(d.discount_amount)) for d in discounts), Decimal("0")
    )
    high_risk = sum(1 for d in discounts if d.risk_level in HIGH_RISK_LEVELS)

    summary = {
        "visits_registered": len(visits),
        "visits_approved": approved,
        "discounts_granted": len(discounts),
        "discount_total": discount_total,
        "high_risk_discounts": high_risk,
    }
    summary["summary_text"] = _format_summary(target_day, summary)
    summary["summary_id"] = db.save_daily_summary(target_day, summary)

    logger.info(
        f"{target_day} 忠诚度汇总: 到店 {len(visits)} 次，审核通过 {approved} 次，"
        f"折扣 {len(discounts)} 张，高风险 {high_risk} 张"
    )
    return summary


def list_daily_summaries(db: DatabaseManager, start_day: date,
                         end_day: date) -> List[Dict[str, Any]]:
    """读取日期区间内已保存的日报（两端包含，按日期升序）。

    Raises:
        ValueError: 开始日期晚于结束日期。
    """
    if start_day > end_day:
        raise ValueError(f"Invalid range: {start_day} is after {end_day}")
    return [
        {
            "summary_date": s.summary_date,
            "visits_registered": s.visits_registered,
            "visits_approved": s.visits_approved,
            "discounts_granted": s.discounts_granted,
            "discount_total": Decimal(str(s.discount_total or 0)),
            "high_risk_discounts": s.high_risk_discounts,
            "summary_text": s.summary_text,
        }
        for s in db.summaries.get_range(start_day, end_day)
    ]


def _format_summary(target_day: date, summary: Dict[str, Any]) -> str:
    lines = [
        f"📅 {target_day.isoformat()} 忠诚度日报",
        f"到店登记: {summary['visits_registered']} 次（审核通过 {summary['visits_approved']} 次）",
        f"折扣发放: {summary['discounts_granted']} 张，合计 {summary['discount_total']}",
    ]
    if summary["high_risk_discounts"]:
        lines.append(f"⚠️ 需人工审核的高风险折扣: {summary['high_risk_discounts']} 张")
    return "\n".join(lines)


def schedule_daily_summary(scheduler: Scheduler, db: DatabaseManager) -> None:
    """把每日汇总注册到调度器（时间读取 settings）。"""

    async def _job():
        try:
            build_daily_summary(db, datetime.now().date())
        except Exception as e:
            logger.error(f"生成忠诚度日报失败: {e}")

    scheduler.add_daily_task(
        _job,
        hour=settings.daily_summary_hour,
        minute=settings.daily_summary_minute,
        task_id="loyalty_daily_summary",
        task_name="忠诚度日报",
    )
