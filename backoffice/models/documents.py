"""
Billing Back Office
Document pipeline models.

Models:
    - DocumentJob: Durable queue row for worklog document generation
    - GeneratedDocument: Rendered PDF, one per target document (upserted)
    - EmailLog: Outbound email audit trail
"""

from backoffice.models import db, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = ("queued", "processing", "done", "failed")
EMAIL_STATUSES = {"queued", "sent", "failed"}


class DocumentJob(db.Model):
    """
    One unit of document-generation work.

    State machine:
        queued → processing → done
        processing → queued   (failure, attempts < max; run_after pushed out)
        processing → failed   (failure, attempts >= max; terminal)

    Rows are never deleted; the table doubles as the operator audit trail.
    """

    __tablename__ = "document_jobs"
    __table_args__ = (
        db.Index("ix_document_jobs_status_run_after", "status", "run_after"),
    )

    id = db.Column(db.Integer, primary_key=True)
    target_document_id = db.Column(db.String(50), nullable=False, index=True,
                                   comment="Invoice id in the accounting system")
    document_number = db.Column(db.String(50), nullable=True,
                                comment="Invoice number; NULL = render only, no upload")
    status = db.Column(db.String(20), nullable=False, default="queued",
                       comment="queued, processing, done, failed")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    run_after = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_error = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict,
                        comment="customerName, rows, period, companyId, lang")

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "target_document_id": self.target_document_id,
            "document_number": self.document_number,
            "status": self.status,
            "attempts": self.attempts,
            "run_after": self.run_after.isoformat() if self.run_after else None,
            "last_error": self.last_error,
            "company_id": (self.payload or {}).get("companyId"),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DocumentJob {self.id} {self.target_document_id} [{self.status}]>"


class GeneratedDocument(db.Model):
    """
    Rendered worklog PDF for one target document.

    Upserted by the worker: a retried or re-queued job overwrites the row
    keyed on target_document_id instead of appending a new one.
    """

    __tablename__ = "generated_documents"

    id = db.Column(db.Integer, primary_key=True)
    target_document_id = db.Column(db.String(50), nullable=False, unique=True)
    document_number = db.Column(db.String(50), nullable=True, index=True)
    billing_entity_id = db.Column(db.Integer,
                                  db.ForeignKey("billing_entities.id", ondelete="SET NULL"),
                                  nullable=True, index=True)
    period_from = db.Column(db.Date, nullable=True)
    period_to = db.Column(db.Date, nullable=True)
    file_name = db.Column(db.String(255), nullable=False)
    mime = db.Column(db.String(100), nullable=False, default="application/pdf")
    size_bytes = db.Column(db.Integer, nullable=False, default=0)
    content_hash = db.Column(db.String(64), nullable=True, comment="sha256 hex")
    data = db.Column(db.LargeBinary, nullable=False)
    external_archive_id = db.Column(db.String(100), nullable=True,
                                    comment="Archive file id once uploaded")
    attached_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "target_document_id": self.target_document_id,
            "document_number": self.document_number,
            "billing_entity_id": self.billing_entity_id,
            "period_from": self.period_from.isoformat() if self.period_from else None,
            "period_to": self.period_to.isoformat() if self.period_to else None,
            "file_name": self.file_name,
            "mime": self.mime,
            "size_bytes": self.size_bytes,
            "content_hash": self.content_hash,
            "external_archive_id": self.external_archive_id,
            "attached_at": self.attached_at.isoformat() if self.attached_at else None,
        }

    def __repr__(self):
        return f"<GeneratedDocument {self.target_document_id} {self.file_name}>"


class EmailLog(db.Model):
    """
    Outbound email audit trail.

    Records every email sent (or attempted) by the platform.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipients = db.Column(db.Text, nullable=False, comment="Comma-separated BCC list")
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)
    document_number = db.Column(db.String(50), nullable=True, index=True)
    attachment_name = db.Column(db.String(255), nullable=True)

    sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "recipients": self.recipients.split(",") if self.recipients else [],
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "document_number": self.document_number,
            "attachment_name": self.attachment_name,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.recipients} [{self.status}]>"
