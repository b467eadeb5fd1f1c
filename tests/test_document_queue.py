"""Tests for backoffice.services.document_queue — durable document job queue.

Test strategy
-------------
Outbound accounting calls are mocked via patch.object on the module-level
`accounting_gateway` singleton. Mail runs in log-only mode (MAIL_SERVER is
unset in TestingConfig), so every send is recorded as an EmailLog row.

Coverage
--------
    - enqueue input shapes and per-item rejection
    - claim ordering, due-time filtering and exclusivity
    - process: render, upsert, upload/attach, include-on-send, mail
    - failure handling: backoff, terminal failure (Scenario D)
    - idempotent retry: archived copy is not uploaded twice
    - stale processing sweep, status counts, operator job list
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from backoffice.core.exceptions import AccountingGatewayError, NotFoundError, ValidationError
from backoffice.integrations.accounting_gateway import accounting_gateway
from backoffice.models import db, utcnow
from backoffice.models.billing import BillingEntity, EntityEmail
from backoffice.models.documents import DocumentJob, EmailLog, GeneratedDocument
from backoffice.services import document_queue, document_renderer
from backoffice.services.document_renderer import RenderedDocument
from backoffice.services.email_service import EmailService


# ── Helper factories ─────────────────────────────────────────────────────────


def _row(record_id=1, hours=2.0):
    return {
        "id": record_id,
        "date": "2026-01-05",
        "hours": hours,
        "userName": "Alice",
        "workLabel": "Install",
        "note": "Rack mounting",
        "project": {"id": 1, "name": "Alpha"},
        "items": [{"articleName": "Router", "quantity": 1}],
    }


def _item(invoice_id="9001", number="5001", company_id=None, **kwargs):
    item = {
        "invoiceId": invoice_id,
        "invoiceNumber": number,
        "customerName": "Acme AB",
        "rows": [_row()],
        "period": {"from": "2026-01-01", "to": "2026-01-31"},
        "companyId": company_id,
    }
    item.update(kwargs)
    return item


def _make_entity(name="Acme AB", external_id="117", emails=(), **kwargs) -> BillingEntity:
    entity = BillingEntity(name=name, external_accounting_id=external_id, **kwargs)
    db.session.add(entity)
    db.session.flush()
    for address, send_pdf in emails:
        db.session.add(EntityEmail(billing_entity_id=entity.id, email=address, send_pdf=send_pdf))
    db.session.commit()
    return entity


def _enqueue(*items) -> list[int]:
    return document_queue.enqueue(list(items), poke=False)["jobIds"]


def _make_due(job_id: int):
    job = db.session.get(DocumentJob, job_id)
    job.run_after = utcnow() - timedelta(seconds=1)
    db.session.commit()


# ── Enqueue ──────────────────────────────────────────────────────────────────


class TestEnqueue:
    def test_wrapper_object_queues_items(self):
        result = document_queue.enqueue({"items": [_item("1"), _item("2")]}, poke=False)

        assert result["queued"] == 2
        assert result["rejected"] == []
        jobs = [db.session.get(DocumentJob, jid) for jid in result["jobIds"]]
        assert [j.status for j in jobs] == ["queued", "queued"]
        assert [j.attempts for j in jobs] == [0, 0]
        assert jobs[0].payload["customerName"] == "Acme AB"

    def test_single_object_is_accepted(self):
        result = document_queue.enqueue(_item("7"), poke=False)
        assert result["queued"] == 1

    def test_invalid_items_are_rejected_individually(self):
        result = document_queue.enqueue(
            [_item("1"), {"rows": []}, _item("3", rows="nope"), "garbage"], poke=False,
        )

        assert result["queued"] == 1
        assert [r["index"] for r in result["rejected"]] == [1, 2, 3]
        assert result["rejected"][0]["reason"] == "invoiceId is required"
        assert result["rejected"][1]["reason"] == "rows must be a list"

    def test_nothing_valid_raises(self):
        with pytest.raises(ValidationError):
            document_queue.enqueue([{"invoiceId": ""}], poke=False)
        assert DocumentJob.query.count() == 0

    def test_empty_input_raises(self):
        with pytest.raises(ValidationError):
            document_queue.enqueue({"items": []}, poke=False)

    def test_invalid_lang_is_dropped(self):
        job_id = _enqueue(_item(lang="de"))[0]
        assert db.session.get(DocumentJob, job_id).payload["lang"] is None


# ── Claim ────────────────────────────────────────────────────────────────────


class TestClaim:
    def test_claims_oldest_due_job(self):
        first, second = _enqueue(_item("1"), _item("2"))

        job = document_queue.claim()

        assert job.id == first
        assert job.status == "processing"
        assert db.session.get(DocumentJob, second).status == "queued"

    def test_claimed_job_is_not_claimed_again(self):
        _enqueue(_item("1"))

        assert document_queue.claim() is not None
        assert document_queue.claim() is None

    def test_future_jobs_are_not_due(self):
        job_id = _enqueue(_item("1"))[0]
        job = db.session.get(DocumentJob, job_id)
        job.run_after = utcnow() + timedelta(minutes=5)
        db.session.commit()

        assert document_queue.claim() is None

    def test_empty_queue(self):
        assert document_queue.claim() is None
        assert document_queue.process_one().picked is False


# ── Processing ───────────────────────────────────────────────────────────────


class TestProcess:
    def test_render_only_job_without_document_number(self):
        """Given a job without invoice number,
        When it is processed,
        Then the PDF is stored and the accounting system is not called."""
        job_id = _enqueue(_item("9001", number=None))[0]

        with patch.object(accounting_gateway, "upload_document") as upload, \
                patch.object(accounting_gateway, "attach_document") as attach:
            result = document_queue.process_one()

        assert result.picked is True and result.ok is True and result.job_id == job_id
        upload.assert_not_called()
        attach.assert_not_called()
        doc = GeneratedDocument.query.filter_by(target_document_id="9001").one()
        assert doc.data.startswith(b"%PDF")
        assert doc.size_bytes == len(doc.data)
        assert doc.file_name == "worklog-invoice-9001.pdf"
        assert db.session.get(DocumentJob, job_id).status == "done"

    def test_upload_attach_and_mail(self):
        owner = _make_entity("Owner AB", "100", is_billing_owner=True,
                             include_attachments_on_send=True)
        entity = _make_entity(
            "Acme AB", "117", owner_entity_id=owner.id, language="en",
            emails=[("billing@acme.test", True), ("ceo@acme.test", False), ("broken", True)],
        )
        job_id = _enqueue(_item("9001", "5001", company_id=entity.id))[0]

        with patch.object(accounting_gateway, "upload_document", return_value="ARC-1") as upload, \
                patch.object(accounting_gateway, "attach_document") as attach:
            assert document_queue.process_one().ok is True

        assert upload.call_args.args[1] == "worklog-invoice-5001.pdf"
        attach.assert_called_once_with("ARC-1", "5001", True)
        doc = GeneratedDocument.query.filter_by(target_document_id="9001").one()
        assert doc.external_archive_id == "ARC-1"
        assert doc.attached_at is not None
        assert doc.billing_entity_id == entity.id
        assert doc.period_from.isoformat() == "2026-01-01"

        log = EmailLog.query.one()
        assert log.recipients == "billing@acme.test"
        assert log.template_name == "worklog_document_en"
        assert log.status == "sent"
        assert log.attachment_name == "Work-report-invoice-5001.pdf"
        assert db.session.get(DocumentJob, job_id).status == "done"

    def test_company_id_may_be_accounting_id(self):
        entity = _make_entity("Acme AB", "C-117", emails=[("a@acme.test", True)], language="sv")
        _enqueue(_item("9001", "5001", company_id="C-117"))

        with patch.object(accounting_gateway, "upload_document", return_value="ARC-1"), \
                patch.object(accounting_gateway, "attach_document") as attach:
            document_queue.process_one()

        attach.assert_called_once_with("ARC-1", "5001", False)
        assert GeneratedDocument.query.one().billing_entity_id == entity.id
        assert EmailLog.query.one().template_name == "worklog_document_sv"

    def test_mail_failure_does_not_revert_job(self):
        entity = _make_entity(emails=[("a@acme.test", True)])
        job_id = _enqueue(_item(company_id=entity.id))[0]

        with patch.object(accounting_gateway, "upload_document", return_value="ARC-1"), \
                patch.object(accounting_gateway, "attach_document"), \
                patch.object(EmailService, "send_from_template", side_effect=RuntimeError("smtp")):
            assert document_queue.process_one().ok is True

        assert db.session.get(DocumentJob, job_id).status == "done"

    def test_same_target_is_upserted(self):
        _enqueue(_item("9001", number=None), _item("9001", number=None))

        document_queue.process_one()
        document_queue.process_one()

        assert GeneratedDocument.query.count() == 1


# ── Failures & retries ───────────────────────────────────────────────────────


class TestFailures:
    def test_transient_failure_requeues_with_backoff(self):
        job_id = _enqueue(_item())[0]
        before = utcnow()

        with patch.object(accounting_gateway, "upload_document",
                          side_effect=AccountingGatewayError("HTTP 503: busy", status_code=503)):
            result = document_queue.process_one()

        assert result.picked is True and result.ok is False
        job = db.session.get(DocumentJob, job_id)
        assert job.status == "queued"
        assert job.attempts == 1
        assert job.last_error == "HTTP 503: busy"
        assert job.run_after >= before + timedelta(minutes=5) - timedelta(seconds=1)
        assert document_queue.claim() is None

    def test_backoff_doubles_per_attempt(self):
        assert document_queue.retry_delay(1) == timedelta(minutes=5)
        assert document_queue.retry_delay(2) == timedelta(minutes=10)

    def test_unreachable_gateway_three_times_fails_job(self):
        """Given the gateway times out on every call,
        When the job is attempted three times,
        Then it is failed with attempts=3 and never claimed again."""
        job_id = _enqueue(_item())[0]

        with patch.object(accounting_gateway, "upload_document",
                          side_effect=AccountingGatewayError("Request timed out after 30s")):
            for _ in range(3):
                _make_due(job_id)
                assert document_queue.process_one().ok is False

        job = db.session.get(DocumentJob, job_id)
        assert job.status == "failed"
        assert job.attempts == 3
        assert job.last_error
        _make_due(job_id)
        assert document_queue.claim() is None

    def test_last_error_is_truncated(self):
        job_id = _enqueue(_item())[0]

        with patch.object(accounting_gateway, "upload_document",
                          side_effect=AccountingGatewayError("x" * 5000)):
            document_queue.process_one()

        assert len(db.session.get(DocumentJob, job_id).last_error) == 2000

    def test_retry_does_not_upload_archived_copy_twice(self):
        """Given the upload succeeded but attach failed,
        When the job is retried with identical content,
        Then only the attach step is repeated."""
        job_id = _enqueue(_item())[0]
        fixed = RenderedDocument(content=b"%PDF-1.4 fixed", content_hash="abc123")

        with patch.object(document_renderer, "render", return_value=fixed), \
                patch.object(accounting_gateway, "upload_document", return_value="ARC-9") as upload, \
                patch.object(accounting_gateway, "attach_document",
                             side_effect=[AccountingGatewayError("HTTP 500"), None]) as attach:
            assert document_queue.process_one().ok is False
            _make_due(job_id)
            assert document_queue.process_one().ok is True

        assert upload.call_count == 1
        assert attach.call_count == 2
        assert db.session.get(DocumentJob, job_id).attempts == 1
        assert GeneratedDocument.query.one().external_archive_id == "ARC-9"


# ── Maintenance & status ─────────────────────────────────────────────────────


class TestMaintenance:
    def _stale(self, job_id: int, attempts: int = 0):
        db.session.execute(
            db.update(DocumentJob).where(DocumentJob.id == job_id).values(
                status="processing", attempts=attempts,
                updated_at=utcnow() - timedelta(minutes=20),
            )
        )
        db.session.commit()

    def test_stale_processing_job_is_requeued(self):
        job_id = _enqueue(_item())[0]
        self._stale(job_id)

        assert document_queue.recover_stale_jobs() == 1

        db.session.expire_all()
        job = db.session.get(DocumentJob, job_id)
        assert job.status == "queued"
        assert job.attempts == 1
        assert "presumed lost" in job.last_error

    def test_stale_job_at_attempt_limit_fails(self):
        job_id = _enqueue(_item())[0]
        self._stale(job_id, attempts=2)

        document_queue.recover_stale_jobs()

        db.session.expire_all()
        assert db.session.get(DocumentJob, job_id).status == "failed"

    def test_recent_processing_job_is_left_alone(self):
        _enqueue(_item())
        document_queue.claim()

        assert document_queue.recover_stale_jobs() == 0

    def test_status_counts_include_every_status(self):
        _enqueue(_item("1"), _item("2"))
        document_queue.claim()

        assert document_queue.status_counts() == {
            "queued": 1, "processing": 1, "done": 0, "failed": 0,
        }

    def test_jobs_query_filters_and_orders_newest_first(self):
        first, second = _enqueue(_item("1"), _item("2"))

        assert [j.id for j in document_queue.jobs_query().all()] == [second, first]
        assert document_queue.jobs_query("failed").all() == []
        with pytest.raises(ValidationError):
            document_queue.jobs_query("exploded")

    def test_get_document_not_found(self):
        with pytest.raises(NotFoundError):
            document_queue.get_document("missing")
