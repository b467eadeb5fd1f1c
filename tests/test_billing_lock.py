"""Tests for backoffice.services.billing_lock — the lock-and-mark transition.

Scenario A: locking [10, 11, 12] while 11 is already billed raises a
conflict and leaves all three rows unchanged.
"""

from datetime import date
from decimal import Decimal

import pytest

from backoffice.core.exceptions import ConflictError, ValidationError
from backoffice.models import db
from backoffice.models.billing import BillingEntity, MaterialItem, TimeRecord
from backoffice.services import billing_lock


def _make_entity() -> BillingEntity:
    entity = BillingEntity(name="Acme", external_accounting_id="117", is_billing_owner=True)
    db.session.add(entity)
    db.session.flush()
    return entity


def _make_record(entity, record_id=None, **kwargs) -> TimeRecord:
    record = TimeRecord(id=record_id, billing_entity_id=entity.id, date=date(2026, 1, 5),
                        hours=Decimal("1.00"), **kwargs)
    db.session.add(record)
    db.session.flush()
    return record


def _make_item(record, **kwargs) -> MaterialItem:
    item = MaterialItem(time_record_id=record.id, quantity=1, description="Cable", **kwargs)
    db.session.add(item)
    db.session.flush()
    return item


class TestLockHours:
    def test_locks_all_rows_and_returns_count(self):
        entity = _make_entity()
        records = [_make_record(entity) for _ in range(3)]
        db.session.commit()

        affected = billing_lock.lock_hours([r.id for r in records], "5001")

        assert affected == 3
        for record in records:
            row = db.session.get(TimeRecord, record.id)
            assert row.billed is True
            assert row.invoice_number == "5001"

    def test_conflict_when_one_row_already_billed(self):
        """Given records 10, 11, 12 where 11 is billed,
        When lock_hours([10, 11, 12]) runs,
        Then ConflictError is raised and no row changes."""
        entity = _make_entity()
        _make_record(entity, 10)
        _make_record(entity, 11, billed=True, invoice_number="4000")
        _make_record(entity, 12)
        db.session.commit()

        with pytest.raises(ConflictError) as exc_info:
            billing_lock.lock_hours([10, 11, 12], "5001")

        assert exc_info.value.details["ineligibleIds"] == [11]
        db.session.expire_all()
        assert db.session.get(TimeRecord, 10).billed is False
        assert db.session.get(TimeRecord, 10).invoice_number is None
        assert db.session.get(TimeRecord, 11).invoice_number == "4000"
        assert db.session.get(TimeRecord, 12).billed is False

    def test_invoice_number_alone_makes_row_ineligible(self):
        entity = _make_entity()
        record = _make_record(entity, invoice_number="4000")
        db.session.commit()

        with pytest.raises(ConflictError):
            billing_lock.lock_hours([record.id], "5001")

    def test_missing_id_is_a_conflict(self):
        entity = _make_entity()
        record = _make_record(entity)
        db.session.commit()

        with pytest.raises(ConflictError):
            billing_lock.lock_hours([record.id, 99999], "5001")
        assert db.session.get(TimeRecord, record.id).billed is False

    def test_overlapping_requests_exactly_one_succeeds(self):
        """Two lock requests over overlapping ids: the first wins, the second conflicts."""
        entity = _make_entity()
        a, b, c = (_make_record(entity) for _ in range(3))
        db.session.commit()

        assert billing_lock.lock_hours([a.id, b.id], "5001") == 2
        with pytest.raises(ConflictError):
            billing_lock.lock_hours([b.id, c.id], "5002")

        db.session.expire_all()
        assert db.session.get(TimeRecord, b.id).invoice_number == "5001"
        assert db.session.get(TimeRecord, c.id).billed is False

    def test_duplicate_ids_are_collapsed(self):
        entity = _make_entity()
        record = _make_record(entity)
        db.session.commit()

        assert billing_lock.lock_hours([record.id, record.id, str(record.id)], "5001") == 1

    @pytest.mark.parametrize("ids", [[], None, ["x"], [0], [True], "1,2", [1.5]])
    def test_invalid_ids_are_rejected(self, ids):
        with pytest.raises(ValidationError):
            billing_lock.lock_hours(ids, "5001")

    @pytest.mark.parametrize("number", [None, "", "   ", "X" * 26])
    def test_invalid_invoice_number_is_rejected(self, number):
        entity = _make_entity()
        record = _make_record(entity)
        db.session.commit()

        with pytest.raises(ValidationError):
            billing_lock.lock_hours([record.id], number)
        assert db.session.get(TimeRecord, record.id).billed is False


class TestLockItems:
    def test_locks_items_without_touching_parent(self):
        entity = _make_entity()
        record = _make_record(entity)
        items = [_make_item(record), _make_item(record)]
        db.session.commit()

        assert billing_lock.lock_items([i.id for i in items], "5001") == 2

        for item in items:
            assert db.session.get(MaterialItem, item.id).invoice_number == "5001"
        assert db.session.get(TimeRecord, record.id).billed is False

    def test_items_under_billed_parent_stay_lockable(self):
        entity = _make_entity()
        record = _make_record(entity, billed=True, invoice_number="4000")
        item = _make_item(record)
        db.session.commit()

        assert billing_lock.lock_items([item.id], "4000") == 1

    def test_already_invoiced_item_is_a_conflict(self):
        entity = _make_entity()
        record = _make_record(entity)
        fresh = _make_item(record)
        done = _make_item(record, invoice_number="4000")
        db.session.commit()

        with pytest.raises(ConflictError):
            billing_lock.lock_items([fresh.id, done.id], "5001")
        db.session.expire_all()
        assert db.session.get(MaterialItem, fresh.id).invoice_number is None

    def test_items_accept_longer_invoice_numbers(self):
        entity = _make_entity()
        record = _make_record(entity)
        item = _make_item(record)
        db.session.commit()

        assert billing_lock.lock_items([item.id], "X" * 40) == 1
        with pytest.raises(ValidationError):
            billing_lock.lock_items([item.id], "Y" * 41)
