"""折扣风险评分：为人工审核提供参考的加法评分。

每个因素越过阈值即加上固定权重，不做归一化，也不会自动拦截交易。
无法计算的因素（例如顾客第一次领取折扣，没有历史平均金额）视为未触发。
"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from config.settings import settings
from .models import RiskAssessment, RiskFactors, RiskLevel

WEIGHT_FREQUENT_DISCOUNTS = 15
WEIGHT_AMOUNT_DEVIATION = 20
WEIGHT_UNUSUAL_TIME = 10
WEIGHT_EMPLOYEE_VOLUME = 25


def score_risk(factors: RiskFactors) -> RiskAssessment:
    """计算风险分数和风险等级。

    Args:
        factors: 风险因素，字段为 None 时该因素不计分。

    Returns:
        RiskAssessment，包含分数、等级以及被触发的因素名称。
    """
    triggered = []
    score = 0

    if (factors.discounts_in_last_6_months is not None
            and factors.discounts_in_last_6_months >= settings.risk_discounts_6m_threshold):
        score += WEIGHT_FREQUENT_DISCOUNTS
        triggered.append("discounts_in_last_6_months")

    if (factors.amount_vs_average is not None
            and factors.amount_vs_average > settings.risk_amount_ratio_threshold):
        score += WEIGHT_AMOUNT_DEVIATION
        triggered.append("amount_vs_average")

    if factors.unusual_time:
        score += WEIGHT_UNUSUAL_TIME
        triggered.append("unusual_time")

    if (factors.employee_discounts_today is not None
            and factors.employee_discounts_today >= settings.risk_employee_daily_threshold):
        score += WEIGHT_EMPLOYEE_VOLUME
        triggered.append("employee_discounts_today")

    return RiskAssessment(risk_score=score, risk_level=risk_level(score),
                          triggered=tuple(triggered))


def risk_level(score: int) -> RiskLevel:
    """分数到等级的映射（下界包含）。"""
    if score >= 50:
        return RiskLevel.CRITICAL
    if score >= 35:
        return RiskLevel.HIGH
    if score >= 20:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def build_risk_factors(amount: Union[Decimal, float],
                       historical_average: Optional[Union[Decimal, float]] = None,
                       discounts_in_last_6_months: Optional[int] = None,
                       employee_discounts_today: Optional[int] = None,
                       moment: Optional[datetime] = None,
                       is_unusual_time: Optional[Callable[[datetime], bool]] = None
                       ) -> RiskFactors:
    """由原始数据组装风险因素。

    金额比值 = 本次金额 / 历史平均金额；没有历史数据（或平均值不大于 0）时为 None。
    异常时段由调用方注入的判定函数决定，未提供时为 None。
    """
    ratio = None
    if historical_average is not None and float(historical_average) > 0:
        ratio = float(amount) / float(historical_average)

    unusual = None
    if is_unusual_time is not None and moment is not None:
        unusual = bool(is_unusual_time(moment))

    return RiskFactors(
        discounts_in_last_6_months=discounts_in_last_6_months,
        amount_vs_average=ratio,
        unusual_time=unusual,
        employee_discounts_today=employee_discounts_today,
    )
