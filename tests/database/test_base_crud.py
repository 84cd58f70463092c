"""BaseCRUD tests: get_by_id, get_all, update_by_id, with and without an external session."""
from database.models import Customer, ServiceType


class TestBaseCRUD:

    def test_get_by_id(self, base_crud, customer):
        found = base_crud.get_by_id(Customer, customer.id)
        assert found.phone == "0501234567"

    def test_get_by_id_missing(self, base_crud):
        assert base_crud.get_by_id(Customer, 4242) is None

    def test_get_all_with_filters_and_order(self, temp_db, base_crud):
        temp_db.service_types.get_or_create("B", sort_order=2)
        temp_db.service_types.get_or_create("A", sort_order=1)
        hidden = temp_db.service_types.get_or_create("C", sort_order=0)
        temp_db.service_types.deactivate(hidden.id)

        rows = base_crud.get_all(ServiceType, filters={"is_active": True},
                                 order_by=ServiceType.sort_order)
        assert [r.name for r in rows] == ["A", "B"]

    def test_update_by_id(self, base_crud, customer):
        updated = base_crud.update_by_id(Customer, customer.id, notes="常客")
        assert updated.notes == "常客"
        assert base_crud.get_by_id(Customer, customer.id).notes == "常客"

    def test_update_missing_returns_none(self, base_crud):
        assert base_crud.update_by_id(Customer, 4242, notes="x") is None

    def test_external_session_not_committed(self, temp_db, base_crud, customer):
        """Changes made through an external session belong to the caller's transaction."""
        with temp_db.get_session() as session:
            base_crud.update_by_id(Customer, customer.id, session=session, notes="草稿")
            session.rollback()
        assert base_crud.get_by_id(Customer, customer.id).notes is None
