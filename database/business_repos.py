"""业务记录仓库 —— 到店记录、折扣单与到店删除申请的数据访问层。

到店记录和折扣单都是只追加的台账：
- 到店记录只能通过状态流转变更，从不物理删除；
- 折扣单创建后不可修改。

两条写入约束由数据库唯一索引保证，仓库把唯一约束冲突
转换为业务异常（DuplicateVisitToday / DiscountAlreadyGranted）。

到店删除申请批准时，申请状态与到店作废在同一个事务内完成。
"""
from typing import Optional, List, Dict, Any
from datetime import date, datetime, timedelta
from decimal import Decimal
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from loguru import logger

from business.discount import format_record_no, parse_record_no, RECORD_PREFIX
from business.errors import (
    DuplicateVisitToday, VisitNotFound, InvalidVisitTransition,
    DiscountAlreadyGranted, DeletionRequestNotFound,
    DuplicateDeletionRequest, DeletionRequestAlreadyProcessed
)
from business.models import (
    VisitStatus, DeletionRequestStatus, DiscountCalculation, RiskAssessment,
    can_transition
)
from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import LoyaltyVisit, DiscountRecord, VisitDeletionRequest


class VisitRepository(BaseCRUD):
    """到店记录 仓库。

    同一顾客同一天只能登记一次到店（visit_day 唯一约束）。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, customer_id: int, visit_date: datetime,
            service_type: Optional[str] = None,
            branch_id: Optional[int] = None,
            employee_id: Optional[int] = None,
            is_discount_visit: bool = False,
            discount_percentage: int = 0,
            session: Optional[Session] = None) -> LoyaltyVisit:
        """登记一次到店（状态为 pending）。

        Args:
            customer_id: 顾客ID。
            visit_date: 到店时间。
            service_type: 服务类型名称（可选）。
            branch_id: 门店ID（可选）。
            employee_id: 服务员工ID（可选）。
            is_discount_visit: 是否为折扣到店。
            discount_percentage: 折扣比例快照。

        Returns:
            新创建的 LoyaltyVisit 对象。

        Raises:
            DuplicateVisitToday: 当天已有到店记录。
        """
        visit_day = visit_date.date()

        def _do(sess):
            if self.exists_on_day(customer_id, visit_day, session=sess):
                raise DuplicateVisitToday(customer_id, visit_day)
            visit = LoyaltyVisit(
                customer_id=customer_id,
                visit_date=visit_date,
                visit_day=visit_day,
                status=VisitStatus.PENDING.value,
                service_type=service_type,
                branch_id=branch_id,
                employee_id=employee_id,
                is_discount_visit=is_discount_visit,
                discount_percentage=discount_percentage,
            )
            sess.add(visit)
            try:
                sess.flush()
            except IntegrityError:
                raise DuplicateVisitToday(customer_id, visit_day)
            return visit

        if session:
            return _do(session)

        with self._get_session() as sess:
            try:
                visit = _do(sess)
                sess.commit()
            except DuplicateVisitToday:
                sess.rollback()
                raise
            return visit

    def exists_on_day(self, customer_id: int, visit_day: date,
                      session: Optional[Session] = None) -> bool:
        """顾客在指定日期是否已有到店记录（任何状态）。"""
        def _query(sess):
            return sess.query(LoyaltyVisit.id).filter(
                LoyaltyVisit.customer_id == customer_id,
                LoyaltyVisit.visit_day == visit_day
            ).first() is not None

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_for_customer(self, customer_id: int,
                          session: Optional[Session] = None
                          ) -> List[LoyaltyVisit]:
        """获取顾客的全部到店记录（按到店时间升序）。"""
        return self.get_all(
            LoyaltyVisit, filters={"customer_id": customer_id},
            order_by=LoyaltyVisit.visit_date, session=session
        )

    def transition(self, visit_id: int, target: VisitStatus,
                   actor_id: Optional[int] = None,
                   reason: Optional[str] = None,
                   session: Optional[Session] = None) -> LoyaltyVisit:
        """变更到店记录状态。

        Args:
            visit_id: 到店记录ID。
            target: 目标状态。
            actor_id: 操作人（审核人）ID。
            reason: 拒绝或作废原因。

        Returns:
            更新后的 LoyaltyVisit 对象。

        Raises:
            VisitNotFound: 记录不存在。
            InvalidVisitTransition: 状态流转非法。
        """
        target = VisitStatus(target)

        def _do(sess):
            visit = sess.get(LoyaltyVisit, visit_id)
            if visit is None:
                raise VisitNotFound(visit_id)
            if not can_transition(visit.status, target):
                raise InvalidVisitTransition(visit_id, visit.status, target.value)

            visit.status = target.value
            if target in (VisitStatus.APPROVED, VisitStatus.REJECTED):
                visit.approved_by = actor_id
                visit.approved_at = datetime.utcnow()
            if target in (VisitStatus.REJECTED, VisitStatus.CANCELLED):
                visit.rejection_reason = reason
            sess.flush()
            return visit

        if session:
            return _do(session)

        with self._get_session() as sess:
            visit = _do(sess)
            sess.commit()
            return visit

    def get_by_day(self, target_day: date,
                   session: Optional[Session] = None
                   ) -> List[Dict[str, Any]]:
        """获取指定日期登记的到店记录。"""
        def _query(sess):
            visits = sess.query(LoyaltyVisit).filter(
                LoyaltyVisit.visit_day == target_day
            ).order_by(LoyaltyVisit.visit_date).all()
            return [
                {
                    "id": v.id,
                    "customer_id": v.customer_id,
                    "customer_name": v.customer.name if v.customer else "",
                    "visit_date": v.visit_date,
                    "status": v.status,
                    "service_type": v.service_type,
                    "branch_id": v.branch_id,
                    "employee_id": v.employee_id,
                    "is_discount_visit": v.is_discount_visit,
                }
                for v in visits
            ]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class DiscountRecordRepository(BaseCRUD):
    """折扣单 仓库。

    每位顾客每个周期最多一张折扣单，由 (customer_id, cycle_start) 唯一约束保证；
    创建时先检查再插入，并发插入由唯一约束兜底。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def next_record_no(self, year: int,
                       session: Optional[Session] = None) -> str:
        """生成指定年份的下一个折扣单号。"""
        prefix = f"{RECORD_PREFIX}-{year}-"

        def _query(sess):
            rows = sess.query(DiscountRecord.record_no).filter(
                DiscountRecord.record_no.like(f"{prefix}%")
            ).all()
            last = max((parse_record_no(r[0])[1] for r in rows), default=0)
            return format_record_no(year, last + 1)

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def exists_for_cycle(self, customer_id: int, cycle_start: datetime,
                         session: Optional[Session] = None) -> bool:
        """顾客在该周期是否已有折扣单。"""
        def _query(sess):
            return sess.query(DiscountRecord.id).filter(
                DiscountRecord.customer_id == customer_id,
                DiscountRecord.cycle_start == cycle_start
            ).first() is not None

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, customer_id: int, cycle_start: datetime,
               calculation: DiscountCalculation,
               assessment: RiskAssessment,
               risk_factors: Optional[Dict[str, Any]] = None,
               employee_id: Optional[int] = None,
               branch_id: Optional[int] = None,
               visit_id: Optional[int] = None,
               created_at: Optional[datetime] = None) -> DiscountRecord:
        """创建折扣单（原子的检查并插入）。

        Args:
            customer_id: 顾客ID。
            cycle_start: 所属周期开始时间。
            calculation: 折扣计算结果。
            assessment: 风险评分结果。
            risk_factors: 风险因素快照（可选）。
            employee_id: 发放员工ID（可选）。
            branch_id: 门店ID（可选）。
            visit_id: 关联到店记录ID（可选）。
            created_at: 创建时间，默认当前时间。

        Returns:
            新创建的 DiscountRecord 对象。

        Raises:
            DiscountAlreadyGranted: 该周期已有折扣单。
        """
        created_at = created_at or datetime.now()

        with self._get_session() as sess:
            if self.exists_for_cycle(customer_id, cycle_start, session=sess):
                raise DiscountAlreadyGranted(customer_id, cycle_start)

            record = DiscountRecord(
                record_no=self.next_record_no(created_at.year, session=sess),
                customer_id=customer_id,
                cycle_start=cycle_start,
                visit_id=visit_id,
                employee_id=employee_id,
                branch_id=branch_id,
                original_amount=calculation.original_amount,
                discount_percentage=calculation.discount_percentage,
                discount_amount=calculation.discount_amount,
                final_amount=calculation.final_amount,
                risk_score=assessment.risk_score,
                risk_level=assessment.risk_level.value,
                risk_factors=risk_factors or {},
                created_at=created_at,
            )
            sess.add(record)
            try:
                sess.commit()
            except IntegrityError:
                sess.rollback()
                if self.exists_for_cycle(customer_id, cycle_start, session=sess):
                    raise DiscountAlreadyGranted(customer_id, cycle_start)
                logger.error(f"折扣单写入冲突: customer={customer_id}, cycle_start={cycle_start}")
                raise
            return record

    def list_for_customer(self, customer_id: int,
                          session: Optional[Session] = None
                          ) -> List[DiscountRecord]:
        """获取顾客的全部折扣单（按创建时间升序）。"""
        return self.get_all(
            DiscountRecord, filters={"customer_id": customer_id},
            order_by=DiscountRecord.created_at, session=session
        )

    def cycle_starts_for_customer(self, customer_id: int,
                                  session: Optional[Session] = None
                                  ) -> List[datetime]:
        """获取顾客已发放折扣的周期开始时间。"""
        return [
            r.cycle_start
            for r in self.list_for_customer(customer_id, session=session)
        ]

    def count_for_customer_since(self, customer_id: int, since: datetime,
                                 session: Optional[Session] = None) -> int:
        """统计顾客自某时间点以来领取的折扣数。"""
        def _query(sess):
            return sess.query(func.count(DiscountRecord.id)).filter(
                DiscountRecord.customer_id == customer_id,
                DiscountRecord.created_at >= since
            ).scalar() or 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def average_original_amount(self, customer_id: int,
                                session: Optional[Session] = None
                                ) -> Optional[Decimal]:
        """顾客历史折扣单的平均原价，没有历史记录返回 None。"""
        def _query(sess):
            value = sess.query(func.avg(DiscountRecord.original_amount)).filter(
                DiscountRecord.customer_id == customer_id
            ).scalar()
            return None if value is None else Decimal(str(value))

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count_by_employee_on(self, employee_id: int, target_day: date,
                             session: Optional[Session] = None) -> int:
        """统计员工在指定日期发放的折扣数。"""
        start = datetime(target_day.year, target_day.month, target_day.day)
        end = start + timedelta(days=1)

        def _query(sess):
            return sess.query(func.count(DiscountRecord.id)).filter(
                DiscountRecord.employee_id == employee_id,
                DiscountRecord.created_at >= start,
                DiscountRecord.created_at < end
            ).scalar() or 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_by_day(self, target_day: date,
                   session: Optional[Session] = None
                   ) -> List[DiscountRecord]:
        """获取指定日期创建的折扣单。"""
        start = datetime(target_day.year, target_day.month, target_day.day)
        end = start + timedelta(days=1)

        def _query(sess):
            return sess.query(DiscountRecord).filter(
                DiscountRecord.created_at >= start,
                DiscountRecord.created_at < end
            ).order_by(DiscountRecord.created_at).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class DeletionRequestRepository(BaseCRUD):
    """到店删除申请 仓库。

    申请流转：pending → approved（同时作废到店记录）/ rejected，两者都是终态。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)
        self.visits = VisitRepository(conn)

    def has_pending(self, visit_id: int,
                    session: Optional[Session] = None) -> bool:
        """到店记录是否已有待处理的删除申请。"""
        def _query(sess):
            return sess.query(VisitDeletionRequest.id).filter(
                VisitDeletionRequest.visit_id == visit_id,
                VisitDeletionRequest.status == DeletionRequestStatus.PENDING.value
            ).first() is not None

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, visit_id: int, reason: str,
               requested_by: Optional[int] = None) -> VisitDeletionRequest:
        """提交删除申请。

        Args:
            visit_id: 到店记录ID。
            reason: 删除原因。
            requested_by: 申请人ID（可选）。

        Returns:
            新创建的 VisitDeletionRequest 对象。

        Raises:
            VisitNotFound: 到店记录不存在。
            InvalidVisitTransition: 到店记录已是终态（已拒绝或已作废）。
            DuplicateDeletionRequest: 已有待处理的申请。
        """
        with self._get_session() as sess:
            visit = sess.get(LoyaltyVisit, visit_id)
            if visit is None:
                raise VisitNotFound(visit_id)
            if not can_transition(visit.status, VisitStatus.CANCELLED):
                raise InvalidVisitTransition(
                    visit_id, visit.status, VisitStatus.CANCELLED.value
                )
            if self.has_pending(visit_id, session=sess):
                raise DuplicateDeletionRequest(visit_id)

            request = VisitDeletionRequest(
                visit_id=visit_id,
                customer_id=visit.customer_id,
                reason=reason,
                requested_by=requested_by,
                status=DeletionRequestStatus.PENDING.value,
            )
            sess.add(request)
            sess.commit()
            return request

    def list_by_status(self, status: Optional[DeletionRequestStatus] = None,
                       session: Optional[Session] = None
                       ) -> List[Dict[str, Any]]:
        """获取删除申请列表（可按状态过滤，按申请时间升序）。"""
        def _query(sess):
            query = sess.query(VisitDeletionRequest)
            if status is not None:
                query = query.filter(
                    VisitDeletionRequest.status == DeletionRequestStatus(status).value
                )
            requests = query.order_by(VisitDeletionRequest.created_at,
                                      VisitDeletionRequest.id).all()
            return [
                {
                    "id": r.id,
                    "visit_id": r.visit_id,
                    "customer_id": r.customer_id,
                    "customer_name": r.customer.name if r.customer else "",
                    "customer_phone": r.customer.phone if r.customer else "",
                    "visit_date": r.visit.visit_date if r.visit else None,
                    "service_type": r.visit.service_type if r.visit else None,
                    "reason": r.reason,
                    "status": r.status,
                    "requested_by": r.requested_by,
                    "created_at": r.created_at,
                }
                for r in requests
            ]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def review(self, request_id: int, approve: bool,
               reviewer_id: Optional[int] = None,
               notes: Optional[str] = None) -> VisitDeletionRequest:
        """审批删除申请；批准时在同一事务内作废到店记录。

        Raises:
            DeletionRequestNotFound: 申请不存在。
            DeletionRequestAlreadyProcessed: 申请已被处理。
            InvalidVisitTransition: 到店记录已无法作废。
        """
        with self._get_session() as sess:
            request = sess.get(VisitDeletionRequest, request_id)
            if request is None:
                raise DeletionRequestNotFound(request_id)
            if request.status != DeletionRequestStatus.PENDING.value:
                raise DeletionRequestAlreadyProcessed(request_id, request.status)

            if approve:
                self.visits.transition(
                    request.visit_id, VisitStatus.CANCELLED,
                    reason=request.reason, session=sess
                )
                request.status = DeletionRequestStatus.APPROVED.value
            else:
                request.status = DeletionRequestStatus.REJECTED.value
            request.reviewed_by = reviewer_id
            request.reviewed_at = datetime.utcnow()
            request.review_notes = notes
            sess.commit()
            return request

    def stats(self, session: Optional[Session] = None) -> Dict[str, int]:
        """按状态统计删除申请数量。"""
        def _query(sess):
            rows = sess.query(
                VisitDeletionRequest.status, func.count(VisitDeletionRequest.id)
            ).group_by(VisitDeletionRequest.status).all()
            counts = {s.value: 0 for s in DeletionRequestStatus}
            counts.update({row[0]: row[1] for row in rows})
            counts["total"] = sum(counts.values())
            return counts

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
