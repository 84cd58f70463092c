"""系统数据仓库 —— 统计汇总与运行时规则的数据访问层。

管理忠诚度每日汇总快照（用于报表和趋势查询）以及管理员可修改的忠诚度规则。
"""
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import LoyaltyDailySummary, LoyaltySettings


class SummaryRepository(BaseCRUD):
    """每日汇总 仓库。

    每个日期只保留一条汇总，重复保存时更新已有记录（幂等）。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def save(self, summary_date: date, summary_data: Dict[str, Any]) -> int:
        """保存每日汇总（已存在则更新）。

        Args:
            summary_date: 汇总日期。
            summary_data: 汇总数据字典，支持以下键：
                - visits_registered: 当日登记到店数
                - visits_approved: 当日审核通过到店数
                - discounts_granted: 当日发放折扣数
                - discount_total: 当日折扣总金额
                - high_risk_discounts: 当日高风险折扣数
                - summary_text: 汇总文本

        Returns:
            汇总记录ID。
        """
        fields = (
            "visits_registered", "visits_approved", "discounts_granted",
            "discount_total", "high_risk_discounts", "summary_text",
        )
        with self._get_session() as session:
            summary = session.query(LoyaltyDailySummary).filter(
                LoyaltyDailySummary.summary_date == summary_date
            ).first()
            if summary is None:
                summary = LoyaltyDailySummary(summary_date=summary_date)
                session.add(summary)
            for key in fields:
                if key in summary_data:
                    setattr(summary, key, summary_data[key])
            session.commit()
            return summary.id

    def get_by_date(self, summary_date: date,
                    session: Optional[Session] = None
                    ) -> Optional[LoyaltyDailySummary]:
        """获取指定日期的汇总。"""
        def _query(sess):
            return sess.query(LoyaltyDailySummary).filter(
                LoyaltyDailySummary.summary_date == summary_date
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_range(self, start_date: date, end_date: date,
                  session: Optional[Session] = None
                  ) -> List[LoyaltyDailySummary]:
        """获取日期区间内的汇总（两端包含，按日期升序）。"""
        def _query(sess):
            return sess.query(LoyaltyDailySummary).filter(
                LoyaltyDailySummary.summary_date >= start_date,
                LoyaltyDailySummary.summary_date <= end_date
            ).order_by(LoyaltyDailySummary.summary_date).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class LoyaltySettingsRepository(BaseCRUD):
    """忠诚度规则 仓库。

    规则表只有一行（id=1），保存时覆盖已有值。
    """

    ROW_ID = 1

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, session: Optional[Session] = None) -> Optional[LoyaltySettings]:
        """获取已保存的规则，未保存过返回 None。"""
        return self.get_by_id(LoyaltySettings, self.ROW_ID, session=session)

    def save(self, required_visits: int, discount_percentage: int,
             updated_by: Optional[int] = None) -> LoyaltySettings:
        """保存规则（调用方负责校验取值）。"""
        with self._get_session() as session:
            row = session.get(LoyaltySettings, self.ROW_ID)
            if row is None:
                row = LoyaltySettings(id=self.ROW_ID)
                session.add(row)
            row.required_visits = required_visits
            row.discount_percentage = discount_percentage
            row.updated_by = updated_by
            row.updated_at = datetime.utcnow()
            session.commit()
            return row
