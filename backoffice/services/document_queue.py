"""
Billing Back Office
Document job queue — durable, retrying worklog PDF pipeline.

State machine per job:
    queued ──claim──▶ processing ──ok──▶ done
                          │
                          ├─ failure, attempts < MAX ──▶ queued (run_after = now + backoff)
                          └─ failure, attempts ≥ MAX ──▶ failed (terminal)

claim() is a short transaction: SELECT ... FOR UPDATE SKIP LOCKED picks the
oldest due job and a compare-and-swap UPDATE (WHERE status='queued') moves
it to processing, so two workers can never own the same job. process()
runs outside that transaction and never holds a lock across a network call.

Processing steps:
    1. render the PDF (payload language, else entity language, else "sv")
    2. upsert GeneratedDocument keyed on target_document_id
    3. with a document number: upload to the accounting archive, then attach
       to the invoice (include-on-send taken from the preference entity)
    4. mark done
    5. mail the PDF (BCC) to the entity's send_pdf recipients; mail failures
       are logged and never revert the job
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from backoffice.core.exceptions import NotFoundError, ValidationError
from backoffice.integrations.accounting_gateway import accounting_gateway
from backoffice.models import db, utcnow
from backoffice.models.billing import LANGUAGES, BillingEntity, EntityEmail
from backoffice.models.documents import JOB_STATUSES, DocumentJob, GeneratedDocument
from backoffice.services import bill_target, document_renderer
from backoffice.services.email_service import EmailService
from backoffice.services.queue_runner import queue_runner
from backoffice.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

LAST_ERROR_MAX = 2000
_CLAIM_RETRIES = 3


@dataclass(frozen=True)
class ProcessResult:
    picked: bool
    ok: bool = False
    job_id: int | None = None

    def to_dict(self) -> dict:
        return {"picked": self.picked, "ok": self.ok, "jobId": self.job_id}


# ── Settings ────────────────────────────────────────────────────────────────


def max_attempts() -> int:
    return int(current_app.config.get("DOCUMENT_JOB_MAX_ATTEMPTS", 3))


def retry_delay(attempts: int) -> timedelta:
    """Backoff after the given number of failed attempts: base, 2×base, 4×base, ..."""
    base = int(current_app.config.get("DOCUMENT_JOB_RETRY_MINUTES", 5))
    return timedelta(minutes=base * 2 ** max(attempts - 1, 0))


# ── Enqueue ─────────────────────────────────────────────────────────────────


def _reject_reason(item) -> str | None:
    if not isinstance(item, dict):
        return "item must be an object"
    invoice_id = item.get("invoiceId")
    if invoice_id is None or str(invoice_id).strip() == "":
        return "invoiceId is required"
    if not isinstance(item.get("rows"), list):
        return "rows must be a list"
    return None


def _payload(item: dict) -> dict:
    period = item.get("period") if isinstance(item.get("period"), dict) else None
    lang = item.get("lang")
    return {
        "customerName": item.get("customerName") or "",
        "rows": item["rows"],
        "period": period,
        "companyId": item.get("companyId"),
        "lang": lang if lang in LANGUAGES else None,
    }


def enqueue(items, *, poke: bool = True) -> dict:
    """Queue document jobs.

    Accepts ``{"items": [...]}``, a bare list, or a single item object.
    Invalid items are rejected individually with a reason; valid ones are
    committed as queued jobs due immediately.

    Returns:
        ``{"queued": n, "rejected": [...], "jobIds": [...]}``

    Raises:
        ValidationError: no items at all, or none of them valid.
    """
    if isinstance(items, dict):
        items = items["items"] if "items" in items else [items]
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"items": "empty"})

    jobs: list[DocumentJob] = []
    rejected: list[dict] = []
    now = utcnow()
    for index, item in enumerate(items):
        reason = _reject_reason(item)
        if reason:
            rejected.append({
                "index": index,
                "invoiceId": item.get("invoiceId") if isinstance(item, dict) else None,
                "reason": reason,
            })
            continue
        number = item.get("invoiceNumber")
        job = DocumentJob(
            target_document_id=str(item["invoiceId"]).strip(),
            document_number=str(number).strip() if number not in (None, "") else None,
            status="queued",
            attempts=0,
            run_after=now,
            payload=_payload(item),
        )
        db.session.add(job)
        jobs.append(job)

    if not jobs:
        raise ValidationError("No valid items to queue", details={"rejected": rejected})

    db.session.commit()
    job_ids = [job.id for job in jobs]
    logger.info("Queued %d document jobs (%d rejected)", len(jobs), len(rejected))

    if poke:
        queue_runner.poke()

    return {"queued": len(jobs), "rejected": rejected, "jobIds": job_ids}


# ── Claim ───────────────────────────────────────────────────────────────────


def claim() -> DocumentJob | None:
    """Take exclusive ownership of the oldest due queued job, or return None."""
    for _ in range(_CLAIM_RETRIES):
        now = utcnow()
        try:
            job = db.session.execute(
                db.select(DocumentJob)
                .where(DocumentJob.status == "queued", DocumentJob.run_after <= now)
                .order_by(DocumentJob.id)
                .limit(1)
                .with_for_update(skip_locked=True)
            ).scalar_one_or_none()

            if job is None:
                db.session.commit()
                return None

            result = db.session.execute(
                db.update(DocumentJob)
                .where(DocumentJob.id == job.id, DocumentJob.status == "queued")
                .values(status="processing", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another worker won the race for this row; look for the next one
                db.session.rollback()
                continue
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        db.session.refresh(job)
        logger.debug("Claimed document job", extra={"job_id": job.id})
        return job
    return None


# ── Processing ──────────────────────────────────────────────────────────────


def _entity_for(company_id) -> BillingEntity | None:
    """Look up a billing entity by local id or by accounting-system id."""
    if company_id is None or str(company_id).strip() == "":
        return None
    text = str(company_id).strip()
    if text.isdigit():
        entity = db.session.get(BillingEntity, int(text))
        if entity is not None:
            return entity
    return db.session.execute(
        db.select(BillingEntity).where(BillingEntity.external_accounting_id == text)
    ).scalar_one_or_none()


def _language(payload: dict, entity: BillingEntity | None) -> str:
    if payload.get("lang") in LANGUAGES:
        return payload["lang"]
    if entity is not None and entity.language in LANGUAGES:
        return entity.language
    return "sv"


def _upsert_document(job: DocumentJob, entity: BillingEntity | None,
                     rendered: document_renderer.RenderedDocument,
                     file_name: str) -> GeneratedDocument:
    period = job.payload.get("period") or {}
    doc = db.session.execute(
        db.select(GeneratedDocument)
        .where(GeneratedDocument.target_document_id == job.target_document_id)
    ).scalar_one_or_none()
    if doc is None:
        doc = GeneratedDocument(target_document_id=job.target_document_id)
        db.session.add(doc)
    elif doc.content_hash != rendered.content_hash or doc.document_number != job.document_number:
        # New content: the previously archived copy no longer matches
        doc.external_archive_id = None
        doc.attached_at = None

    doc.document_number = job.document_number
    doc.billing_entity_id = entity.id if entity is not None else None
    doc.period_from = _safe_date(period.get("from"))
    doc.period_to = _safe_date(period.get("to"))
    doc.file_name = file_name
    doc.mime = "application/pdf"
    doc.size_bytes = rendered.size_bytes
    doc.content_hash = rendered.content_hash
    doc.data = rendered.content
    return doc


def _safe_date(value):
    try:
        return parse_date_input(value)
    except ValidationError:
        return None


def _recipients(entity: BillingEntity | None) -> list[str]:
    if entity is None:
        return []
    rows = db.session.execute(
        db.select(EntityEmail.email)
        .where(EntityEmail.billing_entity_id == entity.id, EntityEmail.send_pdf.is_(True))
        .order_by(EntityEmail.id)
    ).scalars()
    return [email.strip() for email in rows if email and "@" in email]


def _send_mail(job: DocumentJob, entity: BillingEntity | None, content: bytes, lang: str):
    recipients = _recipients(entity)
    if not job.document_number or not recipients:
        return
    try:
        EmailService.send_from_template(
            to_list=recipients,
            template_name=f"worklog_document_{lang}",
            context={"document_number": job.document_number},
            attachment_content=content,
            document_number=job.document_number,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Document mail failed; job stays done",
                         extra={"job_id": job.id, "document_number": job.document_number})


def _run(job: DocumentJob) -> None:
    payload = job.payload or {}
    entity = _entity_for(payload.get("companyId"))
    lang = _language(payload, entity)

    rendered = document_renderer.render(
        payload.get("rows") or [],
        payload.get("period"),
        lang,
        document_number=job.document_number,
        customer_name=payload.get("customerName") or "",
    )
    file_name = f"worklog-invoice-{job.document_number or job.target_document_id}.pdf"
    doc = _upsert_document(job, entity, rendered, file_name)
    db.session.commit()

    if job.document_number:
        if doc.external_archive_id is None:
            doc.external_archive_id = accounting_gateway.upload_document(rendered.content, file_name)
            db.session.commit()
        if doc.attached_at is None:
            pref = bill_target.preference_entity(entity)
            include = bool(pref.include_attachments_on_send) if pref is not None else False
            accounting_gateway.attach_document(doc.external_archive_id, job.document_number, include)
            doc.attached_at = utcnow()

    job.status = "done"
    db.session.commit()
    logger.info("Document job done (%s)", file_name,
                extra={"job_id": job.id, "target_document_id": job.target_document_id,
                       "document_number": job.document_number})

    _send_mail(job, entity, rendered.content, lang)


def _apply_failure(job: DocumentJob, message: str) -> None:
    attempts = (job.attempts or 0) + 1
    job.attempts = attempts
    job.last_error = (message or "Unknown error")[:LAST_ERROR_MAX]
    if attempts >= max_attempts():
        job.status = "failed"
    else:
        job.status = "queued"
        job.run_after = utcnow() + retry_delay(attempts)


def _record_failure(job_id: int, exc: Exception) -> None:
    job = db.session.get(DocumentJob, job_id)
    if job is None:
        return
    _apply_failure(job, str(exc) or exc.__class__.__name__)
    db.session.commit()
    log = logger.error if job.status == "failed" else logger.warning
    log("Document job attempt %d failed → %s: %s", job.attempts, job.status, job.last_error,
        extra={"job_id": job_id, "attempts": job.attempts,
               "document_number": job.document_number})


def process(job: DocumentJob) -> bool:
    """Run one claimed job. Returns True on success; failures are recorded, not raised."""
    job_id = job.id
    try:
        _run(job)
    except Exception as exc:
        db.session.rollback()
        logger.debug("Document job raised", exc_info=True, extra={"job_id": job_id})
        _record_failure(job_id, exc)
        return False
    return True


def process_one() -> ProcessResult:
    """Claim and process at most one due job."""
    job = claim()
    if job is None:
        return ProcessResult(picked=False)
    job_id = job.id
    ok = process(job)
    return ProcessResult(picked=True, ok=ok, job_id=job_id)


# ── Maintenance & status ────────────────────────────────────────────────────


def recover_stale_jobs() -> int:
    """Treat jobs stuck in processing past the staleness timeout as failed attempts.

    A crashed worker leaves its job in processing; the sweep requeues it
    (or fails it at the attempt limit) under the normal retry rules.
    """
    minutes = int(current_app.config.get("DOCUMENT_JOB_STALE_MINUTES", 15))
    cutoff = utcnow() - timedelta(minutes=minutes)
    try:
        stale = db.session.execute(
            db.select(DocumentJob)
            .where(DocumentJob.status == "processing", DocumentJob.updated_at < cutoff)
            .order_by(DocumentJob.id)
            .with_for_update(skip_locked=True)
        ).scalars().all()
        for job in stale:
            _apply_failure(job, f"Processing exceeded {minutes} minutes; worker presumed lost")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if stale:
        logger.warning("Recovered %d stale document jobs", len(stale))
    return len(stale)


def status_counts() -> dict[str, int]:
    counts = {status: 0 for status in JOB_STATUSES}
    rows = db.session.execute(
        db.select(DocumentJob.status, db.func.count(DocumentJob.id)).group_by(DocumentJob.status)
    ).all()
    for status, count in rows:
        counts[status] = count
    return counts


def jobs_query(status: str | None = None):
    """Jobs newest first, optionally filtered by status (operator view)."""
    query = DocumentJob.query.order_by(DocumentJob.id.desc())
    if status:
        if status not in JOB_STATUSES:
            raise ValidationError(f"Unknown status '{status}'",
                                  details={"status": f"one of {', '.join(JOB_STATUSES)}"})
        query = query.filter(DocumentJob.status == status)
    return query


def get_document(target_document_id: str) -> GeneratedDocument:
    doc = db.session.execute(
        db.select(GeneratedDocument)
        .where(GeneratedDocument.target_document_id == str(target_document_id))
    ).scalar_one_or_none()
    if doc is None:
        raise NotFoundError("GeneratedDocument", target_document_id)
    return doc
