"""通用 CRUD 基类。

所有仓库继承 BaseCRUD，获得按ID查询、条件查询、按ID更新等通用能力。
每个方法都接受可选的外部 session：传入时在该会话内执行且不提交，
由调用方控制事务；不传时自行开启会话并提交。
"""
from typing import Any, Dict, List, Optional, Type

from sqlalchemy.orm import Session

from .connection import DatabaseConnection


class BaseCRUD:
    """通用 CRUD 基类。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def get_by_id(self, model: Type, record_id: int,
                  session: Optional[Session] = None) -> Optional[Any]:
        """按主键查询。

        Args:
            model: ORM 模型类。
            record_id: 主键ID。

        Returns:
            ORM 对象，不存在返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type, filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[Any] = None,
                session: Optional[Session] = None) -> List[Any]:
        """按等值条件查询列表。

        Args:
            model: ORM 模型类。
            filters: 字段名到值的等值过滤条件（可选）。
            order_by: 排序表达式（可选）。

        Returns:
            ORM 对象列表。
        """
        def _query(sess):
            query = sess.query(model)
            for key, value in (filters or {}).items():
                query = query.filter(getattr(model, key) == value)
            if order_by is not None:
                query = query.order_by(order_by)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_by_id(self, model: Type, record_id: int,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[Any]:
        """按主键更新字段。

        Args:
            model: ORM 模型类。
            record_id: 主键ID。
            **fields: 要更新的字段。

        Returns:
            更新后的 ORM 对象，不存在返回 None。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            sess.flush()
            return obj

        if session:
            return _do(session)

        with self._get_session() as sess:
            obj = _do(sess)
            if obj is not None:
                sess.commit()
            return obj
