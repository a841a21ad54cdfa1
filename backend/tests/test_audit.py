"""
Audit journal tests.

Verifies:
- record() enforces the TRANSFER/target pairing and positive quantities
- record() joins the caller's transaction (no commit of its own)
- list filters (warehouse matches source or target), paging and limits
- recent returns the newest 10
"""

from datetime import datetime, timedelta

import pytest

from warehouse.errors import ValidationError
from warehouse.extensions import db
from warehouse.models import AuditEntry
from warehouse.services import audit_service


BASE_TIME = datetime(2026, 3, 1, 12, 0, 0)


def _entry(user, product, warehouse, action="ADD", quantity=1, target=None, minutes=0):
    entry = AuditEntry(
        user_id=user.id,
        action=action,
        product_id=product.id,
        warehouse_id=warehouse.id,
        target_warehouse_id=target.id if target else None,
        quantity=quantity,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )
    db.session.add(entry)
    return entry


@pytest.fixture
def journal(db_session, catalog, manager, employee):
    """Five entries one minute apart: 3 by the manager, 2 by the employee."""
    p, w1, w2 = catalog["product"], catalog["w1"], catalog["w2"]
    _entry(manager, p, w1, "ADD", 10, minutes=0)
    _entry(manager, p, w1, "REMOVE", 3, minutes=1)
    _entry(employee, p, w1, "TRANSFER", 5, target=w2, minutes=2)
    _entry(employee, p, w2, "REMOVE", 1, minutes=3)
    _entry(manager, p, w1, "ADD", 2, minutes=4)
    db.session.commit()
    return catalog


class TestRecord:

    def test_module_states_journal_rules(self):
        assert audit_service.__doc__.startswith("\nAudit journal invariants")

    def test_record_flushes_without_commit(self, db_session, catalog, manager):
        entry = audit_service.record(
            user_id=manager.id,
            action="ADD",
            product_id=catalog["product"].id,
            warehouse_id=catalog["w1"].id,
            quantity=4,
        )
        assert entry.id is not None
        assert entry.timestamp is not None

        db.session.rollback()
        assert db.session.query(AuditEntry).count() == 0

    @pytest.mark.parametrize("action,target,quantity", [
        ("TRANSFER", None, 1),
        ("TRANSFER", "w1", 1),
        ("ADD", "w2", 1),
        ("ADD", None, 0),
    ])
    def test_preconditions(self, db_session, catalog, manager, action, target, quantity):
        with pytest.raises(ValueError):
            audit_service.record(
                user_id=manager.id,
                action=action,
                product_id=catalog["product"].id,
                warehouse_id=catalog["w1"].id,
                quantity=quantity,
                target_warehouse_id=catalog[target].id if target else None,
            )

    def test_unknown_action(self, db_session, catalog, manager):
        with pytest.raises(ValueError):
            audit_service.record(
                user_id=manager.id,
                action="SET",
                product_id=catalog["product"].id,
                warehouse_id=catalog["w1"].id,
                quantity=1,
            )


class TestListEntries:

    def test_newest_first(self, journal):
        page = audit_service.list_entries()
        assert [e.quantity for e in page.items] == [2, 1, 5, 3, 10]
        assert page.total_elements == 5
        assert page.total_pages == 1

    def test_warehouse_matches_source_or_target(self, journal):
        w2 = journal["w2"]
        page = audit_service.list_entries(warehouse_id=w2.id)
        assert sorted(e.action for e in page.items) == ["REMOVE", "TRANSFER"]

    def test_filters_combine(self, journal, manager):
        page = audit_service.list_entries(user_id=manager.id, action="add")
        assert [e.quantity for e in page.items] == [2, 10]

    def test_date_range_is_inclusive(self, journal):
        page = audit_service.list_entries(
            start_date=BASE_TIME + timedelta(minutes=1),
            end_date=BASE_TIME + timedelta(minutes=3),
        )
        assert [e.quantity for e in page.items] == [1, 5, 3]

    def test_paging(self, journal):
        page = audit_service.list_entries(page=1, size=2)
        assert [e.quantity for e in page.items] == [5, 3]
        assert page.total_elements == 5
        assert page.total_pages == 3

        beyond = audit_service.list_entries(page=9, size=2)
        assert beyond.items == []
        assert beyond.total_elements == 5

    @pytest.mark.parametrize("kwargs", [
        {"size": 0},
        {"size": 101},
        {"page": -1},
        {"action": "SET"},
        {"start_date": BASE_TIME, "end_date": BASE_TIME - timedelta(days=1)},
    ])
    def test_invalid_queries(self, db_session, kwargs):
        with pytest.raises(ValidationError):
            audit_service.list_entries(**kwargs)

    def test_recent_is_capped_at_ten(self, db_session, catalog, manager):
        for minute in range(12):
            _entry(manager, catalog["product"], catalog["w1"], quantity=minute + 1, minutes=minute)
        db.session.commit()

        entries = audit_service.recent()
        assert len(entries) == 10
        assert entries[0].quantity == 12
        assert entries[-1].quantity == 3


class TestAuditEndpoints:

    def test_page_shape(self, client, journal, manager_headers):
        resp = client.get("/api/audit?size=2", headers=manager_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert set(body) == {"content", "page", "size", "totalElements", "totalPages"}
        assert (body["page"], body["size"], body["totalElements"], body["totalPages"]) == (0, 2, 5, 3)

        newest = body["content"][0]
        assert newest["username"] == "manager_a"
        assert newest["warehouseName"] == "W1"
        assert newest["targetWarehouseId"] is None
        assert newest["timestamp"] == "2026-03-01T12:04:00Z"

    def test_transfer_entry_names_target(self, client, journal, manager_headers):
        resp = client.get("/api/audit?action=TRANSFER", headers=manager_headers)
        entry = resp.get_json()["content"][0]
        assert (entry["warehouseName"], entry["targetWarehouseName"]) == ("W1", "W2")
        assert entry["userRole"] == "EMPLOYEE"

    def test_query_parameters(self, client, journal, manager_headers):
        resp = client.get(
            "/api/audit?startDate=2026-03-01T12:01:00Z&endDate=2026-03-01T12:02:00Z",
            headers=manager_headers,
        )
        assert resp.get_json()["totalElements"] == 2

    @pytest.mark.parametrize("query,field", [
        ("size=500", None),
        ("page=abc", "page"),
        ("startDate=yesterday", "startDate"),
        ("warehouseId=1.5", "warehouseId"),
    ])
    def test_bad_query_is_400(self, client, db_session, manager_headers, query, field):
        resp = client.get(f"/api/audit?{query}", headers=manager_headers)
        assert resp.status_code == 400
        if field:
            assert field in resp.get_json()["details"]

    def test_recent(self, client, journal, manager_headers):
        resp = client.get("/api/audit/recent", headers=manager_headers)
        assert resp.status_code == 200
        assert [e["quantity"] for e in resp.get_json()] == [2, 1, 5, 3, 10]

    def test_stock_change_is_journaled_with_caller(self, client, catalog, manager, manager_headers):
        client.post(
            "/api/stocks",
            json={"productId": catalog["product"].id, "warehouseId": catalog["w1"].id, "quantity": 6},
            headers=manager_headers,
        )
        entry = client.get("/api/audit/recent", headers=manager_headers).get_json()[0]
        assert (entry["userId"], entry["action"], entry["quantity"]) == (manager.id, "ADD", 6)
