"""实体仓库 —— 基础实体的数据访问层。

管理忠诚度计划的基础实体（门店、员工、顾客、服务类型）。
每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List
from sqlalchemy import func
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Branch, Employee, Customer, ServiceType


class BranchRepository(BaseCRUD):
    """门店 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_or_create(self, name: str,
                      session: Optional[Session] = None) -> Branch:
        """获取或创建门店（按名称匹配）。"""
        def _do(sess):
            branch = sess.query(Branch).filter(Branch.name == name).first()
            if not branch:
                branch = Branch(name=name)
                sess.add(branch)
                sess.flush()
            return branch

        if session:
            return _do(session)

        with self._get_session() as sess:
            branch = _do(sess)
            sess.commit()
            return branch

    def get_active(self, session: Optional[Session] = None) -> List[Branch]:
        """获取所有营业中的门店。"""
        return self.get_all(
            Branch, filters={"is_active": True}, order_by=Branch.id,
            session=session
        )


class StaffRepository(BaseCRUD):
    """员工 仓库。

    员工在登记到店和发放折扣时被引用，风险评分会统计员工当日发放的折扣数。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_or_create(self, name: str, branch_id: Optional[int] = None,
                      role: str = "staff",
                      session: Optional[Session] = None) -> Employee:
        """获取或创建员工（按姓名匹配）。

        Args:
            name: 员工姓名。
            branch_id: 所属门店ID（仅创建时使用）。
            role: 员工角色（仅创建时使用）。
            session: 外部会话（可选）。

        Returns:
            Employee 对象。
        """
        def _do(sess):
            employee = sess.query(Employee).filter(
                Employee.name == name
            ).first()
            if not employee:
                employee = Employee(name=name, branch_id=branch_id, role=role)
                sess.add(employee)
                sess.flush()
            return employee

        if session:
            return _do(session)

        with self._get_session() as sess:
            employee = _do(sess)
            sess.commit()
            return employee

    def get_active_staff(self, branch_id: Optional[int] = None,
                         session: Optional[Session] = None) -> List[Employee]:
        """获取在职员工（可按门店过滤）。"""
        filters = {"is_active": True}
        if branch_id is not None:
            filters["branch_id"] = branch_id
        return self.get_all(Employee, filters=filters, order_by=Employee.id,
                            session=session)

    def deactivate(self, staff_id: int,
                   session: Optional[Session] = None) -> Optional[Employee]:
        """停用员工。"""
        return self.update_by_id(
            Employee, staff_id, session=session, is_active=False
        )


class CustomerRepository(BaseCRUD):
    """会员顾客 仓库。

    手机号是顾客的自然键，所有业务操作都通过手机号定位顾客。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def register(self, name: str, phone: str,
                 branch_id: Optional[int] = None,
                 session: Optional[Session] = None) -> Customer:
        """注册顾客（手机号已存在则返回已有顾客）。

        Args:
            name: 顾客姓名。
            phone: 手机号。
            branch_id: 注册门店ID（可选）。

        Returns:
            Customer 对象。

        Raises:
            ValueError: 手机号为空。
        """
        phone = normalize_phone(phone)

        def _do(sess):
            customer = sess.query(Customer).filter(
                Customer.phone == phone
            ).first()
            if not customer:
                customer = Customer(name=name, phone=phone, branch_id=branch_id)
                sess.add(customer)
                sess.flush()
            return customer

        if session:
            return _do(session)

        with self._get_session() as sess:
            customer = _do(sess)
            sess.commit()
            return customer

    def get_by_phone(self, phone: str,
                     session: Optional[Session] = None) -> Optional[Customer]:
        """按手机号查询顾客。"""
        phone = normalize_phone(phone)

        def _query(sess):
            return sess.query(Customer).filter(Customer.phone == phone).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_active_customers(self, branch_id: Optional[int] = None,
                             session: Optional[Session] = None) -> List[Customer]:
        """获取有效顾客（可按注册门店过滤）。"""
        filters = {"is_active": True}
        if branch_id is not None:
            filters["branch_id"] = branch_id
        return self.get_all(Customer, filters=filters, order_by=Customer.id,
                            session=session)

    def deactivate(self, customer_id: int,
                   session: Optional[Session] = None) -> Optional[Customer]:
        """停用顾客。"""
        return self.update_by_id(
            Customer, customer_id, session=session, is_active=False
        )

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Customer]:
        """按姓名或手机号模糊搜索顾客。"""
        def _query(sess):
            return sess.query(Customer).filter(
                Customer.name.contains(keyword) | Customer.phone.contains(keyword)
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class ServiceTypeRepository(BaseCRUD):
    """服务类型 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_or_create(self, name: str, sort_order: int = 0,
                      session: Optional[Session] = None) -> ServiceType:
        """获取或创建服务类型（按名称匹配）。"""
        def _do(sess):
            service_type = self.get_by_name(name, session=sess)
            if not service_type:
                service_type = ServiceType(name=name, sort_order=sort_order)
                sess.add(service_type)
                sess.flush()
            return service_type

        if session:
            return _do(session)

        with self._get_session() as sess:
            service_type = _do(sess)
            sess.commit()
            return service_type

    def get_by_name(self, name: str,
                    session: Optional[Session] = None) -> Optional[ServiceType]:
        """按名称查询服务类型（含已停用）。"""
        def _query(sess):
            return sess.query(ServiceType).filter(ServiceType.name == name).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def add(self, name: str, sort_order: Optional[int] = None) -> ServiceType:
        """新增服务类型；同名类型已停用时重新启用。

        Raises:
            ValueError: 名称为空。
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Service type name is required")

        with self._get_session() as sess:
            service_type = self.get_by_name(name, session=sess)
            if service_type is None:
                if sort_order is None:
                    last = sess.query(func.max(ServiceType.sort_order)).scalar()
                    sort_order = (last or 0) + 1
                service_type = ServiceType(name=name, sort_order=sort_order)
                sess.add(service_type)
            else:
                service_type.is_active = True
                if sort_order is not None:
                    service_type.sort_order = sort_order
            sess.commit()
            return service_type

    def update(self, service_type_id: int, name: Optional[str] = None,
               is_active: Optional[bool] = None,
               sort_order: Optional[int] = None,
               session: Optional[Session] = None) -> Optional[ServiceType]:
        """修改服务类型（只更新传入的字段），不存在返回 None。"""
        fields = {"name": name, "is_active": is_active, "sort_order": sort_order}
        return self.update_by_id(
            ServiceType, service_type_id, session=session,
            **{k: v for k, v in fields.items() if v is not None}
        )

    def get_active(self, session: Optional[Session] = None) -> List[ServiceType]:
        """获取可选的服务类型（按 sort_order 排序）。"""
        return self.get_all(
            ServiceType, filters={"is_active": True},
            order_by=ServiceType.sort_order, session=session
        )

    def deactivate(self, service_type_id: int,
                   session: Optional[Session] = None) -> Optional[ServiceType]:
        """停用服务类型。"""
        return self.update_by_id(
            ServiceType, service_type_id, session=session, is_active=False
        )


def normalize_phone(phone: str) -> str:
    """去掉手机号中的空格和连字符。

    Raises:
        ValueError: 手机号为空。
    """
    cleaned = "".join(ch for ch in (phone or "") if ch not in " -")
    if not cleaned:
        raise ValueError("Phone number is required")
    return cleaned
