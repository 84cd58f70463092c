"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.customers``、``db.visits``、``db.discounts`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``list_visits_for_customer()``、``get_staff_list()``），
   供忠诚度服务层和命令行调用。
"""
from typing import Optional, List, Dict, Any
from datetime import date
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    BranchRepository, StaffRepository, CustomerRepository, ServiceTypeRepository
)
from .business_repos import (
    VisitRepository, DiscountRecordRepository, DeletionRequestRepository
)
from .system_repos import SummaryRepository, LoyaltySettingsRepository
from .models import Customer, LoyaltyVisit, DiscountRecord


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        branches: 门店仓库。
        staff: 员工仓库。
        customers: 顾客仓库。
        service_types: 服务类型仓库。
        visits: 到店记录仓库。
        discounts: 折扣单仓库。
        deletion_requests: 到店删除申请仓库。
        summaries: 每日汇总仓库。
        loyalty_settings: 忠诚度规则仓库。

    Example::

        db = DatabaseManager("sqlite:///data/loyalty.db")
        db.create_tables()

        customer = db.customers.register("王先生", "0501234567")
        visits = db.list_visits_for_customer(customer.id)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.branches = BranchRepository(self.conn)
        self.staff = StaffRepository(self.conn)
        self.customers = CustomerRepository(self.conn)
        self.service_types = ServiceTypeRepository(self.conn)

        # 台账仓库
        self.visits = VisitRepository(self.conn)
        self.discounts = DiscountRecordRepository(self.conn)
        self.deletion_requests = DeletionRequestRepository(self.conn)

        # 系统数据仓库
        self.summaries = SummaryRepository(self.conn)
        self.loyalty_settings = LoyaltySettingsRepository(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 台账便捷方法
    # ================================================================

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        """按手机号查询顾客。"""
        return self.customers.get_by_phone(phone)

    def list_visits_for_customer(self, customer_id: int) -> List[LoyaltyVisit]:
        """获取顾客全部到店记录（按到店时间升序）。"""
        return self.visits.list_for_customer(customer_id)

    def insert_discount_record(self, **record_data: Any) -> DiscountRecord:
        """写入折扣单，参数详见 DiscountRecordRepository.create。

        Raises:
            DiscountAlreadyGranted: 该周期已有折扣单。
        """
        return self.discounts.create(**record_data)

    def save_daily_summary(self, summary_date: date,
                           summary_data: Dict[str, Any]) -> int:
        """保存每日汇总（幂等，已存在则更新）。"""
        return self.summaries.save(summary_date, summary_data)

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_staff_list(self, branch_id: Optional[int] = None
                       ) -> List[Dict[str, Any]]:
        """获取在职员工列表。"""
        return [
            {
                "id": e.id,
                "name": e.name,
                "role": e.role,
                "branch_id": e.branch_id,
                "is_active": e.is_active,
            }
            for e in self.staff.get_active_staff(branch_id)
        ]

    def get_branch_list(self) -> List[Dict[str, Any]]:
        """获取营业门店列表。"""
        return [
            {"id": b.id, "name": b.name, "is_active": b.is_active}
            for b in self.branches.get_active()
        ]

    def get_service_type_list(self) -> List[Dict[str, Any]]:
        """获取可选服务类型列表（按 sort_order 排序）。"""
        return [
            {"id": s.id, "name": s.name, "sort_order": s.sort_order}
            for s in self.service_types.get_active()
        ]
