"""忠诚度服务：把纯计算核心与持久层连接起来。

每次操作都从到店台账重新推导周期和资格，不维护任何可变的周期状态。
写入约束（每天一次到店、每周期一张折扣单）由持久层唯一约束保证，
这里只做前置检查并给出清晰的错误信息。
"""
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from config.business_config import BusinessConfig, business_config
from config.settings import settings
from database import DatabaseManager
from .cycle import compute_cycle, starts_new_cycle
from .discount import calculate_discount, to_amount
from .eligibility import build_message, evaluate_eligibility
from .errors import (
    CustomerNotFound, DuplicateVisitToday, InactiveCustomer,
    NotEligibleForDiscount, OfferNotAllowed, ServiceTypeNotFound
)
from .models import (
    DeletionRequestStatus, LoyaltyRules, RiskLevel, VisitStatus, status_of,
    validate_rules
)
from .offers import ensure_service_allowed
from .risk import build_risk_factors, score_risk

REVIEW_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)

_NOT_ELIGIBLE_REASONS = {
    "no_cycle": "no visits registered yet",
    "cycle_expired": "the loyalty cycle has expired",
    "discount_granted": "the discount was already used in this cycle",
    "discount_pending": "the discount visit is waiting for approval",
    "second_visit": "the discount visit has not been registered yet",
    "progress": "not enough approved visits in this cycle",
}


class LoyaltyService:
    """忠诚度计划服务。

    Attributes:
        db: 数据库管理器。
        config: 业务配置（优惠关键词、异常时段判定、提示文案）。
    """

    def __init__(self, db: DatabaseManager,
                 config: Optional[BusinessConfig] = None) -> None:
        self.db = db
        self.config = config or business_config

    # ================================================================
    # 顾客与到店
    # ================================================================

    def register_customer(self, name: str, phone: str,
                          branch_id: Optional[int] = None) -> Dict[str, Any]:
        """注册会员顾客（手机号已存在时返回已有顾客）。"""
        customer = self.db.customers.register(name, phone, branch_id)
        logger.info(f"顾客已注册: {customer.name} ({customer.phone})")
        return {
            "customer_id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
            "is_active": customer.is_active,
        }

    def register_visit(self, phone: str, service_type: str,
                       branch_id: Optional[int] = None,
                       employee_id: Optional[int] = None,
                       visit_date: Optional[datetime] = None) -> Dict[str, Any]:
        """登记一次到店（待审核）。

        Args:
            phone: 顾客手机号。
            service_type: 服务类型名称。
            branch_id: 门店ID（可选）。
            employee_id: 服务员工ID（可选）。
            visit_date: 到店时间，默认当前时间。

        Returns:
            登记结果字典，包含 visit_id、is_discount_visit、message 等。

        Raises:
            CustomerNotFound / InactiveCustomer: 顾客不存在或已停用。
            DuplicateVisitToday: 当天已登记过到店。
            OfferNotAllowed: 折扣到店选择了优惠套餐。
        """
        visit_date = visit_date or datetime.now()
        customer = self._get_active_customer(phone)

        if self.db.visits.exists_on_day(customer.id, visit_date.date()):
            logger.warning(f"重复登记: {phone} 在 {visit_date.date()} 已有到店记录")
            raise DuplicateVisitToday(customer.id, visit_date.date())

        rules = self.get_loyalty_settings()
        _, cycle, eligibility = self._evaluate(customer.id, visit_date, rules)
        is_discount_visit = eligibility.next_visit_is_discount
        templates = self.config.get_message_templates()

        try:
            ensure_service_allowed(
                service_type, eligibility, self.config.get_offer_keywords(),
                templates["offer_not_allowed"].format(
                    discount_percentage=rules.discount_percentage
                ),
            )
        except OfferNotAllowed:
            logger.warning(f"折扣到店选择了优惠套餐: {phone} / {service_type}")
            raise

        visit = self.db.visits.add(
            customer_id=customer.id,
            visit_date=visit_date,
            service_type=service_type,
            branch_id=branch_id,
            employee_id=employee_id,
            is_discount_visit=is_discount_visit,
            discount_percentage=(
                rules.discount_percentage if is_discount_visit else 0
            ),
        )
        logger.info(
            f"到店已登记: visit={visit.id}, customer={customer.id}, "
            f"service={service_type}, discount_visit={is_discount_visit}"
        )

        return {
            "visit_id": visit.id,
            "customer_id": customer.id,
            "status": visit.status,
            "visit_date": visit.visit_date,
            "is_discount_visit": is_discount_visit,
            "discount_percentage": visit.discount_percentage,
            "starts_new_cycle": starts_new_cycle(cycle, visit_date),
            "message": build_message(
                eligibility, cycle, templates, rules.discount_percentage,
                message_key="discount_visit" if is_discount_visit else None,
            ),
        }

    def approve_visit(self, visit_id: int,
                      approver_id: Optional[int] = None) -> Dict[str, Any]:
        """审核通过到店记录。"""
        visit = self.db.visits.transition(
            visit_id, VisitStatus.APPROVED, actor_id=approver_id
        )
        logger.info(f"到店已审核通过: visit={visit_id}, approver={approver_id}")
        return self._visit_dict(visit)

    def reject_visit(self, visit_id: int, reason: str,
                     approver_id: Optional[int] = None) -> Dict[str, Any]:
        """拒绝到店记录（不计入周期）。"""
        visit = self.db.visits.transition(
            visit_id, VisitStatus.REJECTED, actor_id=approver_id, reason=reason
        )
        logger.info(f"到店已拒绝: visit={visit_id}, reason={reason}")
        return self._visit_dict(visit)

    def cancel_visit(self, visit_id: int,
                     reason: Optional[str] = None) -> Dict[str, Any]:
        """作废到店记录（软删除，终态）。"""
        visit = self.db.visits.transition(
            visit_id, VisitStatus.CANCELLED, reason=reason
        )
        logger.info(f"到店已作废: visit={visit_id}, reason={reason}")
        return self._visit_dict(visit)

    # ================================================================
    # 查询
    # ================================================================

    def get_status(self, phone: str,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
        """查询顾客当前周期与折扣资格。

        Raises:
            CustomerNotFound: 手机号未注册。
        """
        now = now or datetime.now()
        customer = self.db.get_customer_by_phone(phone)
        if customer is None:
            raise CustomerNotFound(phone)

        rules = self.get_loyalty_settings()
        visits, cycle, eligibility = self._evaluate(customer.id, now, rules)
        templates = self.config.get_message_templates()

        in_cycle = [v for v in visits if cycle.contains(v.visit_date)]
        numbered = []
        approved_count = 0
        for v in in_cycle:
            visit_number = None
            if status_of(v) is VisitStatus.APPROVED:
                approved_count += 1
                visit_number = approved_count
            numbered.append({
                "id": v.id,
                "visit_date": v.visit_date,
                "status": v.status,
                "service_type": v.service_type,
                "branch_id": v.branch_id,
                "visit_number": visit_number,
            })

        return {
            "found": True,
            "customer_id": customer.id,
            "customer_name": customer.name,
            "phone": customer.phone,
            "is_active": customer.is_active,
            "has_cycle": cycle.has_cycle,
            "cycle_start": cycle.cycle_start,
            "cycle_end": cycle.cycle_end,
            "days_remaining": cycle.days_remaining,
            "is_expired": cycle.is_expired,
            "visits_in_cycle": eligibility.visits_in_cycle,
            "visits_until_discount": eligibility.visits_until_discount,
            "is_eligible_for_discount": eligibility.is_eligible_for_discount,
            "discount_used": eligibility.discount_used,
            "discount_visit_pending": eligibility.discount_visit_pending,
            "discount_percentage": rules.discount_percentage,
            "message": build_message(
                eligibility, cycle, templates, rules.discount_percentage
            ),
            "visits": numbered,
        }

    def check_by_phone(self, phone: str,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
        """按手机号查询折扣资格，未注册时返回 found=False 而不是抛出异常。"""
        try:
            return self.get_status(phone, now)
        except CustomerNotFound:
            return {
                "found": False,
                "phone": phone,
                "is_eligible_for_discount": False,
                "message": self.config.get_message_templates()["not_registered"],
            }

    def list_eligible_customers(self, branch_id: Optional[int] = None,
                                now: Optional[datetime] = None
                                ) -> List[Dict[str, Any]]:
        """列出当前有折扣资格的顾客（可按注册门店过滤）。"""
        now = now or datetime.now()
        rules = self.get_loyalty_settings()
        eligible = []
        for customer in self.db.customers.get_active_customers(branch_id):
            _, cycle, eligibility = self._evaluate(customer.id, now, rules)
            if not eligibility.is_eligible_for_discount:
                continue
            eligible.append({
                "customer_id": customer.id,
                "customer_name": customer.name,
                "customer_phone": customer.phone,
                "visits_in_cycle": eligibility.visits_in_cycle,
                "visits_until_discount": eligibility.visits_until_discount,
                "days_remaining": cycle.days_remaining,
                "discount_percentage": rules.discount_percentage,
            })
        return eligible

    # ================================================================
    # 折扣发放
    # ================================================================

    def grant_discount(self, phone: str, original_amount: Any,
                       employee_id: Optional[int] = None,
                       branch_id: Optional[int] = None,
                       visit_id: Optional[int] = None,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
        """发放本周期的忠诚度折扣并写入折扣单。

        风险评分只作为人工审核参考，不会阻止发放。

        Args:
            phone: 顾客手机号。
            original_amount: 原价，必须大于 0。
            employee_id: 发放员工ID（可选，用于统计员工当日发放量）。
            branch_id: 门店ID（可选）。
            visit_id: 关联的到店记录ID（可选）。
            now: 发放时间，默认当前时间。

        Returns:
            折扣单字典。

        Raises:
            InvalidAmount: 金额无效（在任何查询之前校验）。
            CustomerNotFound / InactiveCustomer: 顾客不存在或已停用。
            NotEligibleForDiscount: 当前周期不满足折扣条件。
            DiscountAlreadyGranted: 该周期已有折扣单（并发写入）。
        """
        amount = to_amount(original_amount)
        now = now or datetime.now()
        customer = self._get_active_customer(phone)

        rules = self.get_loyalty_settings()
        _, cycle, eligibility = self._evaluate(customer.id, now, rules)
        if not eligibility.is_eligible_for_discount:
            reason = _NOT_ELIGIBLE_REASONS.get(
                eligibility.message_key, "not eligible"
            )
            logger.warning(f"拒绝发放折扣: {phone}, 原因: {reason}")
            raise NotEligibleForDiscount(phone, reason)

        calculation = calculate_discount(amount, rules.discount_percentage)
        factors = build_risk_factors(
            amount=calculation.original_amount,
            historical_average=self.db.discounts.average_original_amount(customer.id),
            discounts_in_last_6_months=self.db.discounts.count_for_customer_since(
                customer.id, now - timedelta(days=settings.risk_lookback_days)
            ),
            employee_discounts_today=(
                self.db.discounts.count_by_employee_on(employee_id, now.date())
                if employee_id is not None else None
            ),
            moment=now,
            is_unusual_time=self.config.is_unusual_time,
        )
        assessment = score_risk(factors)

        record = self.db.insert_discount_record(
            customer_id=customer.id,
            cycle_start=cycle.cycle_start,
            calculation=calculation,
            assessment=assessment,
            risk_factors=asdict(factors),
            employee_id=employee_id,
            branch_id=branch_id,
            visit_id=visit_id,
            created_at=now,
        )

        if assessment.risk_level in REVIEW_LEVELS:
            logger.warning(
                f"折扣需人工审核: {record.record_no}, 风险分数 {assessment.risk_score} "
                f"({assessment.risk_level.value}), 触发因素: {', '.join(assessment.triggered)}"
            )
        logger.info(
            f"折扣已发放: {record.record_no}, customer={customer.id}, "
            f"{calculation.original_amount} -> {calculation.final_amount}"
        )

        return {
            "record_no": record.record_no,
            "customer_id": customer.id,
            "cycle_start": cycle.cycle_start,
            "original_amount": calculation.original_amount,
            "discount_percentage": calculation.discount_percentage,
            "discount_amount": calculation.discount_amount,
            "final_amount": calculation.final_amount,
            "risk_score": assessment.risk_score,
            "risk_level": assessment.risk_level.value,
            "risk_triggered": list(assessment.triggered),
            "created_at": record.created_at,
        }

    # ================================================================
    # 到店删除申请
    # ================================================================

    def request_visit_deletion(self, visit_id: int, reason: str,
                               requested_by: Optional[int] = None
                               ) -> Dict[str, Any]:
        """提交到店删除申请（需管理员批准后才会作废到店记录）。

        Raises:
            ValueError: 未填写删除原因。
            VisitNotFound / InvalidVisitTransition: 到店记录不存在或已是终态。
            DuplicateDeletionRequest: 已有待处理的申请。
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A deletion reason is required")
        request = self.db.deletion_requests.create(visit_id, reason, requested_by)
        logger.info(f"到店删除申请已提交: request={request.id}, visit={visit_id}, 原因: {reason}")
        return self._deletion_dict(request)

    def approve_deletion_request(self, request_id: int,
                                 reviewer_id: Optional[int] = None,
                                 notes: Optional[str] = None) -> Dict[str, Any]:
        """批准删除申请并作废对应到店记录。"""
        request = self.db.deletion_requests.review(
            request_id, approve=True, reviewer_id=reviewer_id, notes=notes
        )
        logger.info(f"到店删除申请已批准: request={request_id}, visit={request.visit_id} 已作废")
        return self._deletion_dict(request)

    def reject_deletion_request(self, request_id: int, notes: str,
                                reviewer_id: Optional[int] = None
                                ) -> Dict[str, Any]:
        """拒绝删除申请（到店记录保持不变）。"""
        request = self.db.deletion_requests.review(
            request_id, approve=False, reviewer_id=reviewer_id, notes=notes
        )
        logger.info(f"到店删除申请已拒绝: request={request_id}, 备注: {notes}")
        return self._deletion_dict(request)

    def list_deletion_requests(self, status: Optional[str] = DeletionRequestStatus.PENDING.value
                               ) -> List[Dict[str, Any]]:
        """列出删除申请，默认只列出待处理的申请；status 为 None 时列出全部。"""
        return self.db.deletion_requests.list_by_status(status)

    def deletion_request_stats(self) -> Dict[str, int]:
        """删除申请统计（pending / approved / rejected / total）。"""
        return self.db.deletion_requests.stats()

    # ================================================================
    # 忠诚度规则与服务类型
    # ================================================================

    def get_loyalty_settings(self) -> LoyaltyRules:
        """读取当前生效的忠诚度规则；管理员未修改过时使用 .env 默认值。"""
        row = self.db.loyalty_settings.get()
        if row is None:
            return LoyaltyRules(
                required_visits=settings.loyalty_required_visits,
                discount_percentage=settings.loyalty_discount_percentage,
            )
        return LoyaltyRules(
            required_visits=row.required_visits,
            discount_percentage=row.discount_percentage,
        )

    def update_loyalty_settings(self, required_visits: int,
                                discount_percentage: int,
                                updated_by: Optional[int] = None) -> Dict[str, Any]:
        """修改忠诚度规则，只影响之后的评估和新登记的到店。

        Raises:
            InvalidLoyaltySettings: 取值超出允许范围。
        """
        rules = validate_rules(required_visits, discount_percentage)
        self.db.loyalty_settings.save(
            rules.required_visits, rules.discount_percentage, updated_by
        )
        logger.info(
            f"忠诚度规则已更新: {rules.required_visits} 次到店享受 "
            f"{rules.discount_percentage}% 折扣 (by {updated_by})"
        )
        return asdict(rules)

    def list_service_types(self) -> List[Dict[str, Any]]:
        """可选服务类型（按 sort_order 排序）。"""
        return self.db.get_service_type_list()

    def add_service_type(self, name: str,
                         sort_order: Optional[int] = None) -> Dict[str, Any]:
        """新增服务类型（同名类型已停用时重新启用）。"""
        service_type = self.db.service_types.add(name, sort_order)
        logger.info(f"服务类型已添加: {service_type.name}")
        return self._service_type_dict(service_type)

    def update_service_type(self, service_type_id: int,
                            name: Optional[str] = None,
                            is_active: Optional[bool] = None,
                            sort_order: Optional[int] = None) -> Dict[str, Any]:
        """修改服务类型。

        Raises:
            ServiceTypeNotFound: 服务类型不存在。
            ValueError: 新名称与其他服务类型重复。
        """
        if name is not None:
            clash = self.db.service_types.get_by_name(name)
            if clash is not None and clash.id != service_type_id:
                raise ValueError(f"Service type '{name}' already exists")
        service_type = self.db.service_types.update(
            service_type_id, name=name, is_active=is_active, sort_order=sort_order
        )
        if service_type is None:
            raise ServiceTypeNotFound(service_type_id)
        logger.info(f"服务类型已修改: {service_type_id} -> {service_type.name}")
        return self._service_type_dict(service_type)

    def delete_service_type(self, service_type_id: int) -> Dict[str, Any]:
        """删除服务类型（停用，历史到店记录中的服务名称不受影响）。"""
        service_type = self.db.service_types.deactivate(service_type_id)
        if service_type is None:
            raise ServiceTypeNotFound(service_type_id)
        logger.info(f"服务类型已停用: {service_type.name}")
        return self._service_type_dict(service_type)

    # ================================================================
    # 门店、员工与顾客管理
    # ================================================================

    def add_branch(self, name: str) -> Dict[str, Any]:
        """新增门店（同名门店已存在时返回已有门店）。"""
        branch = self.db.branches.get_or_create(name)
        logger.info(f"门店已添加: {branch.name}")
        return {"id": branch.id, "name": branch.name, "is_active": branch.is_active}

    def list_branches(self) -> List[Dict[str, Any]]:
        """营业中的门店。"""
        return self.db.get_branch_list()

    def add_employee(self, name: str, branch_id: Optional[int] = None,
                     role: str = "staff") -> Dict[str, Any]:
        """新增员工（同名员工已存在时返回已有员工）。"""
        employee = self.db.staff.get_or_create(name, branch_id=branch_id, role=role)
        logger.info(f"员工已添加: {employee.name} ({employee.role})")
        return {
            "id": employee.id,
            "name": employee.name,
            "role": employee.role,
            "branch_id": employee.branch_id,
            "is_active": employee.is_active,
        }

    def list_staff(self, branch_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """在职员工（可按门店过滤）。"""
        return self.db.get_staff_list(branch_id)

    def deactivate_employee(self, employee_id: int) -> bool:
        """停用员工，员工不存在返回 False。"""
        employee = self.db.staff.deactivate(employee_id)
        if employee is None:
            return False
        logger.info(f"员工已停用: {employee.name}")
        return True

    def deactivate_customer(self, phone: str) -> Dict[str, Any]:
        """停用顾客：不能再登记到店或领取折扣，历史记录保留。

        Raises:
            CustomerNotFound: 手机号未注册。
        """
        customer = self.db.get_customer_by_phone(phone)
        if customer is None:
            raise CustomerNotFound(phone)
        self.db.customers.deactivate(customer.id)
        logger.info(f"顾客已停用: {customer.name} ({customer.phone})")
        return {"customer_id": customer.id, "phone": customer.phone, "is_active": False}

    def search_customers(self, keyword: str) -> List[Dict[str, Any]]:
        """按姓名或手机号片段搜索顾客。"""
        return [
            {
                "customer_id": c.id,
                "name": c.name,
                "phone": c.phone,
                "is_active": c.is_active,
            }
            for c in self.db.customers.search(keyword)
        ]

    # ================================================================
    # 内部方法
    # ================================================================

    def _get_active_customer(self, phone: str):
        customer = self.db.get_customer_by_phone(phone)
        if customer is None:
            raise CustomerNotFound(phone)
        if not customer.is_active:
            raise InactiveCustomer(phone)
        return customer

    def _evaluate(self, customer_id: int, now: datetime, rules: LoyaltyRules):
        visits = self.db.list_visits_for_customer(customer_id)
        cycle = compute_cycle(
            visits, now, self.db.discounts.cycle_starts_for_customer(customer_id)
        )
        return visits, cycle, evaluate_eligibility(cycle, visits, rules.required_visits)

    @staticmethod
    def _visit_dict(visit) -> Dict[str, Any]:
        return {
            "visit_id": visit.id,
            "customer_id": visit.customer_id,
            "status": visit.status,
            "visit_date": visit.visit_date,
            "approved_by": visit.approved_by,
            "approved_at": visit.approved_at,
            "rejection_reason": visit.rejection_reason,
        }

    @staticmethod
    def _deletion_dict(request) -> Dict[str, Any]:
        return {
            "request_id": request.id,
            "visit_id": request.visit_id,
            "customer_id": request.customer_id,
            "reason": request.reason,
            "status": request.status,
            "requested_by": request.requested_by,
            "reviewed_by": request.reviewed_by,
            "reviewed_at": request.reviewed_at,
            "review_notes": request.review_notes,
        }

    @staticmethod
    def _service_type_dict(service_type) -> Dict[str, Any]:
        return {
            "id": service_type.id,
            "name": service_type.name,
            "sort_order": service_type.sort_order,
            "is_active": service_type.is_active,
        }
