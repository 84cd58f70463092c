"""忠诚度核心数据结构。

纯数据类，不依赖数据库。核心计算函数只要求到店记录对象具备
``visit_date`` 和 ``status`` 两个属性，因此 ORM 对象（LoyaltyVisit）
与这里的 Visit 可以互换使用。
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple, Union

from .errors import InvalidLoyaltySettings


class VisitStatus(str, Enum):
    """到店记录状态"""
    PENDING = "pending"         # 待审核
    APPROVED = "approved"       # 已审核通过（唯一计入周期的状态）
    REJECTED = "rejected"       # 已拒绝
    CANCELLED = "cancelled"     # 已作废（终态，软删除）


class DeletionRequestStatus(str, Enum):
    """到店删除申请状态"""
    PENDING = "pending"
    APPROVED = "approved"       # 已批准，对应到店记录已作废
    REJECTED = "rejected"


class RiskLevel(str, Enum):
    """风险等级"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Visit:
    """一次到店记录。

    Attributes:
        visit_date: 到店时间。
        status: 到店状态。
        id: 记录ID（未入库时为 None）。
        customer_id: 顾客ID。
        service_type: 服务类型名称。
        branch_id: 门店ID。
        employee_id: 服务员工ID。
        is_discount_visit: 登记时是否为折扣到店。
    """
    visit_date: datetime
    status: VisitStatus = VisitStatus.PENDING
    id: Optional[int] = None
    customer_id: Optional[int] = None
    service_type: str = ""
    branch_id: Optional[int] = None
    employee_id: Optional[int] = None
    is_discount_visit: bool = False


@dataclass(frozen=True)
class CycleState:
    """顾客当前 30 天周期（由到店记录推导，不单独存储）。

    Attributes:
        has_cycle: 是否已有周期（无任何到店记录时为 False）。
        cycle_days: 周期天数。
        days_remaining: 剩余天数（向上取整，周期过期后可能为负）。
        cycle_start: 周期开始时间。
        cycle_end: 周期结束时间（cycle_start + cycle_days，含端点）。
        is_expired: 当前时间是否已超过周期结束时间。
        discount_used: 本周期是否已发放折扣。
    """
    has_cycle: bool
    cycle_days: int
    days_remaining: int
    cycle_start: Optional[datetime] = None
    cycle_end: Optional[datetime] = None
    is_expired: bool = False
    discount_used: bool = False

    def contains(self, moment: Union[date, datetime]) -> bool:
        """判断时间点是否落在周期内（两端都包含）。"""
        if not self.has_cycle:
            return False
        moment = as_datetime(moment)
        return self.cycle_start <= moment <= self.cycle_end


@dataclass(frozen=True)
class EligibilityResult:
    """折扣资格评估结果。

    Attributes:
        visits_in_cycle: 周期内已审核通过的到店次数。
        is_eligible_for_discount: 本周期折扣是否可以发放（已达到所需次数且未使用）。
        visits_until_discount: 距离折扣还需的到店次数。
        discount_used: 本周期折扣是否已使用。
        required_visits: 触发折扣所需的到店次数。
        message_key: 提示文案模板键。
        next_visit_is_discount: 下一次到店是否为折扣到店（只差一次且没有待审核的折扣到店）。
        discount_visit_pending: 本周期已登记折扣到店，正在等待审核。
    """
    visits_in_cycle: int
    is_eligible_for_discount: bool
    visits_until_discount: int
    discount_used: bool
    required_visits: int
    message_key: str
    next_visit_is_discount: bool = False
    discount_visit_pending: bool = False


@dataclass(frozen=True)
class LoyaltyRules:
    """运行时忠诚度规则（可由管理员修改并持久化）。

    Attributes:
        required_visits: 触发折扣的到店次数（1-20）。
        discount_percentage: 折扣比例（1-100）。
    """
    required_visits: int
    discount_percentage: int


@dataclass(frozen=True)
class RiskFactors:
    """风险评分输入因素，None 表示无法计算（不触发）。"""
    discounts_in_last_6_months: Optional[int] = None
    amount_vs_average: Optional[float] = None
    unusual_time: Optional[bool] = None
    employee_discounts_today: Optional[int] = None


@dataclass(frozen=True)
class RiskAssessment:
    """风险评分结果"""
    risk_score: int
    risk_level: RiskLevel
    triggered: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DiscountCalculation:
    """折扣计算结果（金额均为两位小数的 Decimal）"""
    original_amount: Decimal
    discount_percentage: int
    discount_amount: Decimal
    final_amount: Decimal


def as_datetime(value: Union[date, datetime]) -> datetime:
    """将 date 统一为当天零点的 datetime。"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise ValueError(f"Invalid visit date: {value!r}")


def status_of(visit) -> VisitStatus:
    """读取到店记录的状态（兼容字符串与枚举）。"""
    return VisitStatus(visit.status)


# 到店记录允许的状态流转；rejected / cancelled 为终态
ALLOWED_TRANSITIONS = {
    VisitStatus.PENDING: frozenset({VisitStatus.APPROVED, VisitStatus.REJECTED,
                                    VisitStatus.CANCELLED}),
    VisitStatus.APPROVED: frozenset({VisitStatus.CANCELLED}),
}


def can_transition(current: VisitStatus, target: VisitStatus) -> bool:
    """判断到店记录能否从 current 流转到 target。"""
    return target in ALLOWED_TRANSITIONS.get(VisitStatus(current), frozenset())


# 忠诚度规则的取值范围（两端包含）
RULE_LIMITS = {
    "required_visits": (1, 20),
    "discount_percentage": (1, 100),
}


def validate_rules(required_visits: Any, discount_percentage: Any) -> LoyaltyRules:
    """校验并构造忠诚度规则。

    Raises:
        InvalidLoyaltySettings: 取值不是整数或超出 RULE_LIMITS。
    """
    values = {
        "required_visits": required_visits,
        "discount_percentage": discount_percentage,
    }
    for name, value in values.items():
        low, high = RULE_LIMITS[name]
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            raise InvalidLoyaltySettings(name, value, low, high)
    return LoyaltyRules(**values)
