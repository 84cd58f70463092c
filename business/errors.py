"""忠诚度业务异常定义。

所有异常都继承自 LoyaltyError，消息为可直接展示给操作员的说明文字，
上层（CLI、定时任务）只需捕获 LoyaltyError 即可。
"""
from typing import Any, Optional


class LoyaltyError(Exception):
    """忠诚度业务异常基类"""


class InvalidAmount(LoyaltyError):
    """金额无效（必须为大于 0 的数字）"""

    def __init__(self, amount: Any) -> None:
        self.amount = amount
        super().__init__(f"Invalid amount: {amount!r}, must be a number greater than 0")


class CustomerNotFound(LoyaltyError):
    """顾客不存在"""

    def __init__(self, phone: str) -> None:
        self.phone = phone
        super().__init__(f"Customer with phone {phone} is not registered")


class InactiveCustomer(LoyaltyError):
    """顾客已停用"""

    def __init__(self, phone: str) -> None:
        self.phone = phone
        super().__init__(f"Customer with phone {phone} is inactive")


class DuplicateVisitToday(LoyaltyError):
    """同一顾客同一天重复登记到店"""

    def __init__(self, customer_id: int, visit_day: Any) -> None:
        self.customer_id = customer_id
        self.visit_day = visit_day
        super().__init__(
            f"Customer {customer_id} already has a visit registered on {visit_day}"
        )


class VisitNotFound(LoyaltyError):
    """到店记录不存在"""

    def __init__(self, visit_id: int) -> None:
        self.visit_id = visit_id
        super().__init__(f"Visit {visit_id} not found")


class InvalidVisitTransition(LoyaltyError):
    """到店记录状态流转非法"""

    def __init__(self, visit_id: int, current: str, target: str) -> None:
        self.visit_id = visit_id
        self.current = current
        self.target = target
        super().__init__(
            f"Visit {visit_id} cannot move from '{current}' to '{target}'"
        )


class OfferNotAllowed(LoyaltyError):
    """折扣到店选择了优惠套餐"""

    def __init__(self, service_type: str, message: Optional[str] = None) -> None:
        self.service_type = service_type
        super().__init__(
            message or f"Offer service '{service_type}' cannot be used on the discount visit"
        )


class NotEligibleForDiscount(LoyaltyError):
    """当前周期不满足折扣条件"""

    def __init__(self, phone: str, reason: str) -> None:
        self.phone = phone
        self.reason = reason
        super().__init__(f"Customer {phone} is not eligible for the loyalty discount: {reason}")


class DiscountAlreadyGranted(LoyaltyError):
    """本周期折扣已发放（持久层唯一约束冲突）"""

    def __init__(self, customer_id: int, cycle_start: Any) -> None:
        self.customer_id = customer_id
        self.cycle_start = cycle_start
        super().__init__(
            f"Customer {customer_id} already received a discount in the cycle starting {cycle_start}"
        )


class InvalidLoyaltySettings(LoyaltyError):
    """忠诚度规则取值无效"""

    def __init__(self, name: str, value: Any, low: int, high: int) -> None:
        self.name = name
        self.value = value
        super().__init__(f"Invalid {name}: {value!r}, expected an integer between {low} and {high}")


class ServiceTypeNotFound(LoyaltyError):
    """服务类型不存在"""

    def __init__(self, service_type_id: int) -> None:
        self.service_type_id = service_type_id
        super().__init__(f"Service type {service_type_id} not found")


class DeletionRequestNotFound(LoyaltyError):
    """到店删除申请不存在"""

    def __init__(self, request_id: int) -> None:
        self.request_id = request_id
        super().__init__(f"Deletion request {request_id} not found")


class DuplicateDeletionRequest(LoyaltyError):
    """到店记录已有待处理的删除申请"""

    def __init__(self, visit_id: int) -> None:
        self.visit_id = visit_id
        super().__init__(f"Visit {visit_id} already has a pending deletion request")


class DeletionRequestAlreadyProcessed(LoyaltyError):
    """删除申请已被处理"""

    def __init__(self, request_id: int, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Deletion request {request_id} was already {status}")
