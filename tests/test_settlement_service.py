"""Tests for backoffice.services.settlement_service — per-entity settlement.

Invoices are created through a patched `accounting_gateway` singleton; the
envelopes come from the real collector so the wire shape is exercised end
to end.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from backoffice.core.exceptions import AccountingGatewayError, ValidationError
from backoffice.integrations.accounting_gateway import accounting_gateway
from backoffice.models import db
from backoffice.models.billing import BillingEntity, MaterialItem, TimeRecord
from backoffice.models.documents import DocumentJob
from backoffice.services import billing_collector, settlement_service


def _make_entity(name, external_id=None, **kwargs) -> BillingEntity:
    entity = BillingEntity(name=name, external_accounting_id=external_id, **kwargs)
    db.session.add(entity)
    db.session.flush()
    return entity


def _make_record(entity, hours="2.00", label="Install") -> TimeRecord:
    record = TimeRecord(billing_entity_id=entity.id if entity else None, date=date(2026, 1, 5),
                        hours=Decimal(hours), work_label=label)
    db.session.add(record)
    db.session.flush()
    return record


def _make_item(record, quantity=3, description="Cable") -> MaterialItem:
    item = MaterialItem(time_record_id=record.id, quantity=quantity, description=description)
    db.session.add(item)
    db.session.flush()
    return item


def _envelopes() -> list[dict]:
    db.session.commit()
    return [env.to_dict() for env in billing_collector.collect("2026-01-01", "2026-01-31")]


class TestSettle:
    def test_labor_and_materials_are_invoiced_and_locked_separately(self):
        """Given an entity with hours and a material item,
        When it is settled,
        Then a labor and a materials invoice are created, hours are locked
        under the labor number and items under the materials number."""
        entity = _make_entity("Acme", "117", is_billing_owner=True)
        record = _make_record(entity)
        item = _make_item(record)
        envelopes = _envelopes()

        with patch.object(accounting_gateway, "create_invoice",
                          side_effect=["5001", "5002"]) as create:
            summary = settlement_service.settle(envelopes, invoice_date="2026-02-01", due_in_days=30)

        assert summary["succeeded"] == 1
        result = summary["results"][0]
        assert result["status"] == "ok"
        assert result["documentNumbers"] == {"labor": "5001", "materials": "5002"}
        assert result["documentNumber"] == "5001"
        assert result["affected"] == {"hours": 1, "items": 1}

        labor, materials = (c.args[0] for c in create.call_args_list)
        assert labor["CustomerNumber"] == "117"
        assert labor["InvoiceDate"] == "2026-02-01"
        assert labor["DueDate"] == "2026-03-03"
        assert labor["InvoiceRows"] == [
            {"Description": "Install", "DeliveredQuantity": 2.0, "Unit": "h", "VAT": 25},
        ]
        assert materials["InvoiceRows"] == [
            {"Description": "Cable", "DeliveredQuantity": 3, "Unit": "pcs", "VAT": 25},
        ]

        job = db.session.get(DocumentJob, result["jobId"])
        assert job.target_document_id == "5001"
        assert job.document_number == "5001"
        assert job.payload["companyId"] == entity.id
        assert job.payload["period"] == {"from": "2026-01-05", "to": "2026-01-05"}
        assert len(job.payload["rows"]) == 1

        db.session.expire_all()
        assert db.session.get(TimeRecord, record.id).invoice_number == "5001"
        assert db.session.get(MaterialItem, item.id).invoice_number == "5002"

    def test_materials_only_document_targets_materials_invoice(self):
        entity = _make_entity("Acme", "117", is_billing_owner=True)
        record = _make_record(entity, hours="0.00")
        item = _make_item(record)
        envelopes = _envelopes()

        with patch.object(accounting_gateway, "create_invoice", return_value="7001") as create:
            summary = settlement_service.settle(envelopes)

        create.assert_called_once()
        result = summary["results"][0]
        assert result["documentNumbers"] == {"labor": None, "materials": "7001"}
        assert db.session.get(DocumentJob, result["jobId"]).target_document_id == "7001"
        assert result["affected"] == {"hours": 0, "items": 1}
        db.session.expire_all()
        assert db.session.get(MaterialItem, item.id).invoice_number == "7001"
        assert db.session.get(TimeRecord, record.id).billed is False

    def test_entity_without_target_is_skipped(self):
        orphan = _make_entity("Orphan", "77")
        _make_record(orphan)
        envelopes = _envelopes()

        with patch.object(accounting_gateway, "create_invoice") as create:
            summary = settlement_service.settle(envelopes)

        create.assert_not_called()
        assert summary["skipped"] == 1
        assert summary["results"][0]["error"] == "No bill target"

    def test_client_supplied_target_is_ignored(self):
        """Given an envelope whose billingInfo claims a target the stored entity lacks,
        When it is settled,
        Then nothing is invoiced, queued or locked."""
        orphan = _make_entity("Orphan", "77")
        record = _make_record(orphan)
        envelopes = _envelopes()
        envelopes[0]["billingInfo"]["billTarget"] = "999"

        with patch.object(accounting_gateway, "create_invoice") as create:
            summary = settlement_service.settle(envelopes)

        create.assert_not_called()
        assert summary["results"][0]["status"] == "skipped"
        assert summary["results"][0]["billTarget"] is None
        assert DocumentJob.query.count() == 0
        db.session.expire_all()
        assert db.session.get(TimeRecord, record.id).billed is False

    def test_invoice_goes_to_stored_target_not_envelope_target(self):
        entity = _make_entity("Acme", "117", bill_direct=True)
        _make_record(entity)
        envelopes = _envelopes()
        envelopes[0]["billingInfo"]["billTarget"] = "999"

        with patch.object(accounting_gateway, "create_invoice", return_value="5001") as create:
            summary = settlement_service.settle(envelopes)

        assert create.call_args.args[0]["CustomerNumber"] == "117"
        assert summary["results"][0]["billTarget"] == "117"

    def test_one_entity_failure_does_not_block_another(self):
        """Given two invoiceable entities where the first invoice call fails,
        When both are settled,
        Then the second is invoiced and locked and the first stays unbilled."""
        first = _make_entity("Alpha", "100", bill_direct=True)
        second = _make_entity("Beta", "200", bill_direct=True)
        r1 = _make_record(first)
        r2 = _make_record(second)
        envelopes = _envelopes()

        with patch.object(accounting_gateway, "create_invoice",
                          side_effect=[AccountingGatewayError("HTTP 500"), "6002"]):
            summary = settlement_service.settle(envelopes)

        assert (summary["succeeded"], summary["failed"]) == (1, 1)
        failed, ok = summary["results"]
        assert failed["step"] == "create_labor_invoice"
        assert failed["jobId"] is None
        assert ok["documentNumber"] == "6002"

        db.session.expire_all()
        assert db.session.get(TimeRecord, r1.id).billed is False
        assert db.session.get(TimeRecord, r2.id).billed is True
        assert DocumentJob.query.count() == 1

    def test_hours_conflict_does_not_stop_item_lock(self):
        entity = _make_entity("Acme", "117", is_billing_owner=True)
        record = _make_record(entity)
        item = _make_item(record)
        envelopes = _envelopes()
        record.billed = True
        record.invoice_number = "4000"
        db.session.commit()

        with patch.object(accounting_gateway, "create_invoice", side_effect=["5001", "5002"]):
            summary = settlement_service.settle(envelopes)

        result = summary["results"][0]
        assert result["status"] == "failed"
        assert result["step"] == "lock_hours"
        assert [e["step"] for e in result["errors"]] == ["lock_hours"]
        assert result["affected"] == {"hours": 0, "items": 1}
        db.session.expire_all()
        assert db.session.get(MaterialItem, item.id).invoice_number == "5002"
        assert db.session.get(TimeRecord, record.id).invoice_number == "4000"

    def test_materials_invoice_failure_still_locks_hours(self):
        entity = _make_entity("Acme", "117", is_billing_owner=True)
        record = _make_record(entity)
        item = _make_item(record)
        envelopes = _envelopes()

        with patch.object(accounting_gateway, "create_invoice",
                          side_effect=["5001", AccountingGatewayError("HTTP 503")]):
            summary = settlement_service.settle(envelopes)

        result = summary["results"][0]
        assert result["step"] == "create_materials_invoice"
        assert result["affected"] == {"hours": 1, "items": 0}
        db.session.expire_all()
        assert db.session.get(TimeRecord, record.id).invoice_number == "5001"
        assert db.session.get(MaterialItem, item.id).invoice_number is None

    @pytest.mark.parametrize("envelopes", [None, [], ["x"]])
    def test_malformed_customers_are_rejected(self, envelopes):
        with pytest.raises(ValidationError):
            settlement_service.settle(envelopes)

    @pytest.mark.parametrize("due", [-1, 400, "soon", True])
    def test_invalid_due_days_are_rejected(self, due):
        with pytest.raises(ValidationError):
            settlement_service.settle([{}], due_in_days=due)
