"""SQLAlchemy ORM 模型定义。

本模块定义了忠诚度计划的所有数据库表，包括：
- 员工、门店、顾客、服务类型等基础实体
- 到店记录（只追加，通过状态流转变更，从不物理删除）
- 折扣单（只追加，创建后不可修改）
- 到店删除申请（由主管提交、管理员审批，批准后作废到店记录）
- 运行时忠诚度规则（单行配置表）
- 每日汇总快照

周期本身不建表：周期状态完全由到店记录推导。
"""
from typing import Dict, Any, List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    DECIMAL, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, date

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解（SQLAlchemy 2.0）
Base.__allow_unmapped__ = True


class Branch(Base):
    """门店表模型。

    Attributes:
        id: 主键，自增整数。
        name: 门店名称，必填，唯一。
        is_active: 是否营业，默认True。
        created_at: 创建时间。
    """
    __tablename__ = "branches"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False, unique=True)
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    employees: List["Employee"] = relationship("Employee", back_populates="branch")
    customers: List["Customer"] = relationship("Customer", back_populates="branch")


class Employee(Base):
    """员工表模型。

    Attributes:
        id: 主键，自增整数。
        name: 员工姓名，必填。
        phone: 联系电话，可选。
        role: 员工角色，staff（普通员工）/ supervisor（主管）/ admin（管理员），默认staff。
        branch_id: 所属门店ID。
        is_active: 是否在职，默认True。
        extra_data: JSON扩展字段。
        created_at: 创建时间。
    """
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(50), nullable=False)
    phone: Optional[str] = Column(String(20))
    role: str = Column(String(20), default="staff")  # staff / supervisor / admin
    branch_id: Optional[int] = Column(Integer, ForeignKey("branches.id"))
    is_active: bool = Column(Boolean, default=True)
    extra_data: Dict[str, Any] = Column(JSON, default={})
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    branch: Optional["Branch"] = relationship("Branch", back_populates="employees")


class Customer(Base):
    """会员顾客表模型。

    手机号是顾客的自然键（唯一）。

    Attributes:
        id: 主键，自增整数。
        name: 顾客姓名，必填。
        phone: 手机号，必填，唯一。
        branch_id: 注册门店ID。
        is_active: 是否有效，默认True。停用的顾客不能登记到店或领取折扣。
        notes: 备注。
        extra_data: JSON扩展字段。
        created_at: 注册时间。
    """
    __tablename__ = "customers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(50), nullable=False)
    phone: str = Column(String(20), nullable=False, unique=True)
    branch_id: Optional[int] = Column(Integer, ForeignKey("branches.id"))
    is_active: bool = Column(Boolean, default=True)
    notes: Optional[str] = Column(Text)
    extra_data: Dict[str, Any] = Column(JSON, default={})
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    branch: Optional["Branch"] = relationship("Branch", back_populates="customers")
    visits: List["LoyaltyVisit"] = relationship("LoyaltyVisit", back_populates="customer")
    discount_records: List["DiscountRecord"] = relationship("DiscountRecord", back_populates="customer")


class ServiceType(Base):
    """服务类型字典表模型。

    Attributes:
        id: 主键，自增整数。
        name: 服务名称，必填，唯一。
        is_active: 是否可选，默认True。
        sort_order: 排序，默认0。
    """
    __tablename__ = "service_types"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False, unique=True)
    is_active: bool = Column(Boolean, default=True)
    sort_order: int = Column(Integer, default=0)


class LoyaltyVisit(Base):
    """到店记录表模型（核心业务表）。

    到店记录创建后为 pending，只能通过状态流转变更：
    pending → approved / rejected，pending / approved → cancelled（终态）。
    同一顾客同一天只能有一条记录（通过 visit_day 唯一约束保证）。

    Attributes:
        id: 主键，自增整数。
        customer_id: 顾客ID，必填。
        visit_date: 到店时间，必填。
        visit_day: 到店日期（visit_date 的日期部分），用于唯一约束。
        status: 状态，pending / approved / rejected / cancelled，默认pending。
        service_type: 服务类型名称。
        branch_id: 门店ID。
        employee_id: 服务员工ID。
        is_discount_visit: 登记时是否为折扣到店。
        discount_percentage: 登记时的折扣比例快照。
        approved_by: 审核人ID。
        approved_at: 审核时间。
        rejection_reason: 拒绝或作废原因。
        created_at: 创建时间。
    """
    __tablename__ = "loyalty_visits"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False)
    visit_date: datetime = Column(DateTime, nullable=False)
    visit_day: date = Column(Date, nullable=False)
    status: str = Column(String(20), default="pending")  # pending / approved / rejected / cancelled
    service_type: Optional[str] = Column(String(100))
    branch_id: Optional[int] = Column(Integer, ForeignKey("branches.id"))
    employee_id: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    is_discount_visit: bool = Column(Boolean, default=False)
    discount_percentage: int = Column(Integer, default=0)
    approved_by: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    approved_at: Optional[datetime] = Column(DateTime)
    rejection_reason: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    customer: "Customer" = relationship("Customer", back_populates="visits")
    branch: Optional["Branch"] = relationship("Branch")
    employee: Optional["Employee"] = relationship("Employee", foreign_keys=[employee_id])

    __table_args__ = (
        UniqueConstraint('customer_id', 'visit_day', name='uq_visit_customer_day'),
    )


class DiscountRecord(Base):
    """折扣单表模型（只追加的折扣台账）。

    每位顾客每个周期最多一张折扣单，通过 (customer_id, cycle_start) 唯一约束保证。

    Attributes:
        id: 主键，自增整数。
        record_no: 折扣单号，DR-<年份>-<4位序号>，唯一。
        customer_id: 顾客ID，必填。
        cycle_start: 所属周期开始时间，必填。
        visit_id: 关联的到店记录ID。
        employee_id: 发放折扣的员工ID。
        branch_id: 门店ID。
        original_amount: 原价，DECIMAL(10,2)。
        discount_percentage: 折扣比例。
        discount_amount: 折扣金额，DECIMAL(10,2)。
        final_amount: 实付金额，DECIMAL(10,2)。
        risk_score: 风险分数。
        risk_level: 风险等级，low / medium / high / critical。
        risk_factors: 风险因素快照，JSON。
        created_at: 创建时间。
    """
    __tablename__ = "discount_records"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    record_no: str = Column(String(20), nullable=False, unique=True)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False)
    cycle_start: datetime = Column(DateTime, nullable=False)
    visit_id: Optional[int] = Column(Integer, ForeignKey("loyalty_visits.id"))
    employee_id: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    branch_id: Optional[int] = Column(Integer, ForeignKey("branches.id"))
    original_amount: float = Column(DECIMAL(10, 2), nullable=False)
    discount_percentage: int = Column(Integer, nullable=False)
    discount_amount: float = Column(DECIMAL(10, 2), nullable=False)
    final_amount: float = Column(DECIMAL(10, 2), nullable=False)
    risk_score: int = Column(Integer, default=0)
    risk_level: str = Column(String(20), default="low")
    risk_factors: Dict[str, Any] = Column(JSON, default={})
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    customer: "Customer" = relationship("Customer", back_populates="discount_records")

    __table_args__ = (
        UniqueConstraint('customer_id', 'cycle_start', name='uq_discount_customer_cycle'),
    )


class LoyaltyDailySummary(Base):
    """忠诚度每日汇总快照表模型。

    每个日期只有一条记录（通过unique约束保证）。

    Attributes:
        id: 主键，自增整数。
        summary_date: 汇总日期，唯一。
        visits_registered: 当日登记到店数。
        visits_approved: 当日登记且已审核通过的到店数。
        discounts_granted: 当日发放折扣数。
        discount_total: 当日折扣总金额。
        high_risk_discounts: 当日高风险（high / critical）折扣数。
        summary_text: 汇总文本。
        created_at: 创建时间。
    """
    __tablename__ = "loyalty_daily_summaries"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    summary_date: date = Column(Date, nullable=False, unique=True)
    visits_registered: int = Column(Integer, default=0)
    visits_approved: int = Column(Integer, default=0)
    discounts_granted: int = Column(Integer, default=0)
    discount_total: float = Column(DECIMAL(10, 2), default=0)
    high_risk_discounts: int = Column(Integer, default=0)
    summary_text: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class VisitDeletionRequest(Base):
    """到店删除申请表模型。

    员工不能直接删除到店记录，只能提交删除申请；批准后对应到店记录被作废
    （软删除），拒绝后到店记录保持不变。同一到店记录同时只能有一条待处理申请。

    Attributes:
        id: 主键，自增整数。
        visit_id: 申请删除的到店记录ID，必填。
        customer_id: 顾客ID（冗余，便于列表展示）。
        reason: 删除原因，必填。
        requested_by: 申请人（员工）ID。
        status: 状态，pending / approved / rejected，默认pending。
        reviewed_by: 审批人ID。
        reviewed_at: 审批时间。
        review_notes: 审批备注。
        created_at: 申请时间。
    """
    __tablename__ = "visit_deletion_requests"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    visit_id: int = Column(Integer, ForeignKey("loyalty_visits.id"), nullable=False)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False)
    reason: str = Column(Text, nullable=False)
    requested_by: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    status: str = Column(String(20), default="pending")  # pending / approved / rejected
    reviewed_by: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    reviewed_at: Optional[datetime] = Column(DateTime)
    review_notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    visit: "LoyaltyVisit" = relationship("LoyaltyVisit")
    customer: "Customer" = relationship("Customer")


class LoyaltySettings(Base):
    """运行时忠诚度规则表模型（只有一行）。

    没有记录时使用 .env 中的默认值；管理员修改后以数据库中的值为准。

    Attributes:
        id: 主键，固定为1。
        required_visits: 触发折扣的到店次数。
        discount_percentage: 折扣比例。
        updated_by: 最后修改人ID。
        updated_at: 最后修改时间。
    """
    __tablename__ = "loyalty_settings"

    id: int = Column(Integer, primary_key=True)
    required_visits: int = Column(Integer, nullable=False)
    discount_percentage: int = Column(Integer, nullable=False)
    updated_by: Optional[int] = Column(Integer, ForeignKey("employees.id"))
    updated_at: datetime = Column(DateTime, default=datetime.utcnow)
