"""忠诚度服务端到端测试（临时 SQLite 数据库）。

覆盖：完整周期到折扣发放、第 2 次到店提示、优惠套餐限制、每天一次到店、
顾客校验、周期过期后重新开始、审核/拒绝/作废、每周期只有一次待审核的折扣到店、
已发放折扣的周期在锚点到店作废后保持不变、风险评分与人工审核日志。
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from loguru import logger

from business.discount import calculate_discount
from business.errors import (
    CustomerNotFound, DuplicateVisitToday, InactiveCustomer, InvalidAmount,
    InvalidVisitTransition, NotEligibleForDiscount, OfferNotAllowed, VisitNotFound
)
from business.models import RiskAssessment, RiskLevel

PHONE = "0501234567"


@pytest.fixture
def member(service):
    return service.register_customer("王先生", PHONE)


def visit(service, when, service_type="剪发", approve=True, phone=PHONE, **kwargs):
    result = service.register_visit(phone, service_type, visit_date=when, **kwargs)
    if approve:
        service.approve_visit(result["visit_id"])
    return result


def three_visit_cycle(service):
    visit(service, datetime(2026, 1, 15, 10, 0))
    visit(service, datetime(2026, 1, 22, 10, 0))
    return visit(service, datetime(2026, 2, 4, 10, 0))


class TestRegisterCustomer:

    def test_register(self, service):
        result = service.register_customer("王先生", "050-123-4567")
        assert result["customer_id"] > 0
        assert result["phone"] == PHONE
        assert result["is_active"] is True

    def test_register_twice_returns_same_customer(self, service):
        first = service.register_customer("王先生", PHONE)
        second = service.register_customer("王先生", PHONE)
        assert first["customer_id"] == second["customer_id"]


class TestRegisterVisit:

    def test_first_visit(self, service, member):
        result = visit(service, datetime(2026, 1, 15, 10, 0), approve=False)
        assert result["status"] == "pending"
        assert result["starts_new_cycle"] is True
        assert result["is_discount_visit"] is False
        assert result["discount_percentage"] == 0
        assert result["message"]

    def test_third_visit_is_discount_visit(self, service, member):
        result = three_visit_cycle(service)
        assert result["is_discount_visit"] is True
        assert result["discount_percentage"] == 60
        assert result["starts_new_cycle"] is False
        assert "60%" in result["message"]

    def test_second_visit_same_day_refused(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        with pytest.raises(DuplicateVisitToday):
            visit(service, datetime(2026, 1, 15, 18, 0))

    def test_unknown_customer(self, service):
        with pytest.raises(CustomerNotFound):
            visit(service, datetime(2026, 1, 15, 10, 0), phone="0000000")

    def test_inactive_customer(self, service, temp_db, member):
        temp_db.customers.deactivate(member["customer_id"])
        with pytest.raises(InactiveCustomer):
            visit(service, datetime(2026, 1, 15, 10, 0))

    def test_offer_allowed_on_regular_visit(self, service, member):
        result = visit(service, datetime(2026, 1, 15, 10, 0), service_type="门店优惠套餐")
        assert result["visit_id"] > 0

    def test_offer_refused_on_discount_visit(self, service, temp_db, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        with pytest.raises(OfferNotAllowed) as exc_info:
            visit(service, datetime(2026, 2, 4, 10, 0), service_type="门店优惠套餐")
        assert "60%" in str(exc_info.value)
        assert len(temp_db.list_visits_for_customer(member["customer_id"])) == 2

        result = visit(service, datetime(2026, 2, 4, 10, 0), service_type="剪发")
        assert result["is_discount_visit"] is True

    def test_only_one_pending_discount_visit(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        third = visit(service, datetime(2026, 1, 29, 10, 0), approve=False)
        assert third["is_discount_visit"] is True

        fourth = visit(service, datetime(2026, 1, 30, 10, 0),
                       service_type="门店优惠套餐", approve=False)
        assert fourth["is_discount_visit"] is False
        assert fourth["discount_percentage"] == 0

    def test_rejected_discount_visit_frees_the_flag(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        third = visit(service, datetime(2026, 1, 29, 10, 0), approve=False)
        service.reject_visit(third["visit_id"], "顾客未到店")

        retry = visit(service, datetime(2026, 2, 1, 10, 0), approve=False)
        assert retry["is_discount_visit"] is True
        assert retry["discount_percentage"] == 60


class TestVisitTransitions:

    def test_rejected_visit_does_not_count(self, service, member):
        result = visit(service, datetime(2026, 1, 15, 10, 0), approve=False)
        rejected = service.reject_visit(result["visit_id"], "顾客未到店")
        assert rejected["status"] == "rejected"
        assert rejected["rejection_reason"] == "顾客未到店"
        status = service.get_status(PHONE, datetime(2026, 1, 16))
        assert status["has_cycle"] is False

    def test_cancel_approved_visit_reduces_count(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        second = visit(service, datetime(2026, 1, 22, 10, 0))
        service.cancel_visit(second["visit_id"], "录入错误")
        status = service.get_status(PHONE, datetime(2026, 1, 23))
        assert status["visits_in_cycle"] == 1

    def test_cancel_anchor_before_any_discount_moves_cycle(self, service, member):
        first = visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        service.cancel_visit(first["visit_id"], "录入错误")
        status = service.get_status(PHONE, datetime(2026, 1, 23))
        assert status["cycle_start"] == datetime(2026, 1, 22, 10, 0)
        assert status["visits_in_cycle"] == 1

    def test_approve_records_approver(self, service, temp_db, member):
        manager = temp_db.staff.get_or_create("店长", role="supervisor")
        result = visit(service, datetime(2026, 1, 15, 10, 0), approve=False)
        approved = service.approve_visit(result["visit_id"], manager.id)
        assert approved["approved_by"] == manager.id
        assert approved["approved_at"] is not None

    def test_cancelled_is_terminal(self, service, member):
        result = visit(service, datetime(2026, 1, 15, 10, 0), approve=False)
        service.cancel_visit(result["visit_id"])
        with pytest.raises(InvalidVisitTransition):
            service.approve_visit(result["visit_id"])

    def test_missing_visit(self, service):
        with pytest.raises(VisitNotFound):
            service.approve_visit(999)


class TestStatus:

    def test_no_visits(self, service, member):
        status = service.get_status(PHONE, datetime(2026, 1, 15))
        assert status["found"] is True
        assert status["has_cycle"] is False
        assert status["days_remaining"] == 30
        assert status["visits"] == []

    def test_first_visit_day(self, service, member):
        visit(service, datetime(2026, 1, 15))
        status = service.get_status(PHONE, datetime(2026, 1, 15))
        assert status["cycle_start"] == datetime(2026, 1, 15)
        assert status["cycle_end"] == datetime(2026, 2, 14)
        assert status["days_remaining"] == 30

    def test_two_approved_one_pending(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        visit(service, datetime(2026, 2, 4, 10, 0), approve=False)

        status = service.get_status(PHONE, datetime(2026, 2, 4, 12, 0))
        assert status["visits_in_cycle"] == 2
        assert status["visits_until_discount"] == 1
        assert status["is_eligible_for_discount"] is False
        assert status["discount_visit_pending"] is True
        assert "审核中" in status["message"]
        assert [v["visit_number"] for v in status["visits"]] == [1, 2, None]

    def test_next_visit_message_before_discount_visit(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        status = service.get_status(PHONE, datetime(2026, 1, 23))
        assert status["discount_visit_pending"] is False
        assert "下次到店" in status["message"]

    def test_unknown_phone(self, service):
        with pytest.raises(CustomerNotFound):
            service.get_status("0000000")
        result = service.check_by_phone("0000000")
        assert result["found"] is False
        assert result["is_eligible_for_discount"] is False
        assert result["message"]

    def test_expired_cycle_and_fresh_start(self, service, member):
        visit(service, datetime(2025, 12, 15, 10, 0))
        visit(service, datetime(2025, 12, 20, 10, 0))

        status = service.check_by_phone(PHONE, datetime(2026, 1, 20, 9, 0))
        assert status["is_expired"] is True
        assert status["days_remaining"] < 0
        assert status["is_eligible_for_discount"] is False

        result = visit(service, datetime(2026, 1, 20, 10, 0))
        assert result["starts_new_cycle"] is True
        status = service.get_status(PHONE, datetime(2026, 1, 20, 12, 0))
        assert status["cycle_start"] == datetime(2026, 1, 20, 10, 0)
        assert status["visits_in_cycle"] == 1
        assert len(status["visits"]) == 1


class TestGrantDiscount:

    def test_full_cycle_to_discount(self, service, temp_db, member):
        three_visit_cycle(service)
        now = datetime(2026, 2, 4, 18, 0)
        assert service.get_status(PHONE, now)["is_eligible_for_discount"] is True

        record = service.grant_discount(PHONE, "250.00", now=now)
        assert record["record_no"] == "DR-2026-0001"
        assert record["discount_amount"] == Decimal("150.00")
        assert record["final_amount"] == Decimal("100.00")
        assert record["cycle_start"] == datetime(2026, 1, 15, 10, 0)
        assert record["risk_score"] == 0
        assert record["risk_level"] == "low"

        status = service.get_status(PHONE, now)
        assert status["discount_used"] is True
        assert status["is_eligible_for_discount"] is False

    def test_one_discount_per_cycle(self, service, member):
        three_visit_cycle(service)
        service.grant_discount(PHONE, "250.00", now=datetime(2026, 2, 4, 18, 0))
        visit(service, datetime(2026, 2, 8, 10, 0))
        with pytest.raises(NotEligibleForDiscount) as exc_info:
            service.grant_discount(PHONE, "250.00", now=datetime(2026, 2, 8, 18, 0))
        assert "already used" in exc_info.value.reason

    def test_not_eligible_before_third_approval(self, service, member):
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        with pytest.raises(NotEligibleForDiscount):
            service.grant_discount(PHONE, "250.00", now=datetime(2026, 1, 23))

    def test_invalid_amount_checked_first(self, service):
        with pytest.raises(InvalidAmount):
            service.grant_discount("0000000", 0)

    def test_new_cycle_allows_new_discount(self, service, member):
        three_visit_cycle(service)
        service.grant_discount(PHONE, "250.00", now=datetime(2026, 2, 4, 18, 0))

        visit(service, datetime(2026, 3, 1, 10, 0))
        visit(service, datetime(2026, 3, 8, 10, 0))
        visit(service, datetime(2026, 3, 15, 10, 0))
        record = service.grant_discount(PHONE, "120", now=datetime(2026, 3, 15, 18, 0))
        assert record["record_no"] == "DR-2026-0002"
        assert record["cycle_start"] == datetime(2026, 3, 1, 10, 0)

    def test_high_risk_flagged_for_review(self, service, temp_db, member):
        employee = temp_db.staff.get_or_create("Tony")
        for i in range(5):
            other = temp_db.customers.register(f"顾客{i}", f"050000000{i}")
            temp_db.discounts.create(
                customer_id=other.id,
                cycle_start=datetime(2026, 1, 10),
                calculation=calculate_discount("100"),
                assessment=RiskAssessment(risk_score=0, risk_level=RiskLevel.LOW),
                employee_id=employee.id,
                created_at=datetime(2026, 2, 4, 10, i),
            )
        three_visit_cycle(service)

        warnings = []
        sink_id = logger.add(lambda m: warnings.append(str(m)), level="WARNING")
        try:
            record = service.grant_discount(
                PHONE, "250.00", employee_id=employee.id,
                now=datetime(2026, 2, 4, 23, 30)
            )
        finally:
            logger.remove(sink_id)

        assert record["risk_score"] == 35
        assert record["risk_level"] == "high"
        assert set(record["risk_triggered"]) == {"unusual_time", "employee_discounts_today"}
        assert any(record["record_no"] in w for w in warnings)

    def test_amount_deviation_uses_history(self, service, member):
        three_visit_cycle(service)
        service.grant_discount(PHONE, "100", now=datetime(2026, 2, 4, 18, 0))
        visit(service, datetime(2026, 3, 1, 10, 0))
        visit(service, datetime(2026, 3, 8, 10, 0))
        visit(service, datetime(2026, 3, 15, 10, 0))
        record = service.grant_discount(PHONE, "300", now=datetime(2026, 3, 15, 18, 0))
        assert "amount_vs_average" in record["risk_triggered"]
        assert record["risk_level"] == "medium"


class TestListEligibleCustomers:

    def test_lists_only_eligible(self, service, member):
        service.register_customer("李女士", "0509999999")
        three_visit_cycle(service)
        visit(service, datetime(2026, 1, 20, 10, 0), phone="0509999999")

        eligible = service.list_eligible_customers(now=datetime(2026, 2, 5))
        assert [c["customer_phone"] for c in eligible] == [PHONE]
        assert eligible[0]["visits_in_cycle"] == 3

    def test_filter_by_branch(self, service, temp_db, member):
        branch = temp_db.branches.get_or_create("分店")
        three_visit_cycle(service)
        assert service.list_eligible_customers(branch.id, now=datetime(2026, 2, 5)) == []


class TestGrantedCycleIsFixed:
    """Cancelling or rejecting visits never reopens a cycle that already got its discount."""

    def test_cancelled_anchor_cannot_earn_second_discount(self, service, member):
        first = visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        visit(service, datetime(2026, 1, 29, 10, 0))
        visit(service, datetime(2026, 2, 4, 10, 0))
        record = service.grant_discount(PHONE, "250", now=datetime(2026, 2, 4, 18, 0))
        assert record["cycle_start"] == datetime(2026, 1, 15, 10, 0)

        service.cancel_visit(first["visit_id"], "录入错误")
        with pytest.raises(NotEligibleForDiscount) as exc_info:
            service.grant_discount(PHONE, "250", now=datetime(2026, 2, 4, 19, 0))
        assert "already used" in exc_info.value.reason

        status = service.get_status(PHONE, datetime(2026, 2, 5))
        assert status["cycle_start"] == datetime(2026, 1, 15, 10, 0)
        assert status["discount_used"] is True
        assert status["is_eligible_for_discount"] is False

    def test_rejected_pending_anchor_cannot_earn_second_discount(self, service, member):
        pending = visit(service, datetime(2026, 1, 10, 10, 0), approve=False)
        visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        visit(service, datetime(2026, 1, 29, 10, 0))
        record = service.grant_discount(PHONE, "250", now=datetime(2026, 1, 29, 18, 0))
        assert record["cycle_start"] == datetime(2026, 1, 10, 10, 0)

        service.reject_visit(pending["visit_id"], "顾客未到店")
        with pytest.raises(NotEligibleForDiscount):
            service.grant_discount(PHONE, "250", now=datetime(2026, 1, 29, 19, 0))
        status = service.get_status(PHONE, datetime(2026, 1, 30))
        assert status["cycle_start"] == datetime(2026, 1, 10, 10, 0)
        assert status["is_eligible_for_discount"] is False

    def test_cancelled_counted_visit_keeps_discount_used(self, service, member):
        three_visit_cycle(service)
        service.grant_discount(PHONE, "250", now=datetime(2026, 2, 4, 18, 0))
        second = service.get_status(PHONE, datetime(2026, 2, 5))["visits"][1]
        service.cancel_visit(second["id"], "录入错误")

        status = service.get_status(PHONE, datetime(2026, 2, 5))
        assert status["visits_in_cycle"] == 2
        assert status["discount_used"] is True
        assert status["is_eligible_for_discount"] is False

    def test_next_cycle_still_opens_after_granted_window(self, service, member):
        first = visit(service, datetime(2026, 1, 15, 10, 0))
        visit(service, datetime(2026, 1, 22, 10, 0))
        visit(service, datetime(2026, 2, 4, 10, 0))
        service.grant_discount(PHONE, "250", now=datetime(2026, 2, 4, 18, 0))
        service.cancel_visit(first["visit_id"], "录入错误")

        result = visit(service, datetime(2026, 2, 20, 10, 0))
        assert result["starts_new_cycle"] is True
        status = service.get_status(PHONE, datetime(2026, 2, 20, 12, 0))
        assert status["cycle_start"] == datetime(2026, 2, 20, 10, 0)
        assert status["discount_used"] is False
