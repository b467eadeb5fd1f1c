"""
Billing Back Office
Worklog PDF Blueprint.

HTTP boundary for the document job queue.

Routes:
    POST   /worklogpdf/queue                  — enqueue document jobs
    GET    /worklogpdf/queue/status           — job counts per status
    GET    /worklogpdf/queue/jobs             — operator job list (?status=&limit=&offset=)
    GET    /worklogpdf/<target_document_id>/pdf — stored PDF (?download=1 for attachment)
"""

from __future__ import annotations

import io
import logging

from flask import Blueprint, jsonify, request, send_file

from backoffice.blueprints import paginate_query
from backoffice.core.exceptions import NotFoundError, ValidationError
from backoffice.models.documents import DocumentJob
from backoffice.services import document_queue
from backoffice.utils.errors import E, api_error

logger = logging.getLogger(__name__)

worklog_pdf_bp = Blueprint("worklog_pdf", __name__, url_prefix="/worklogpdf")


def _job_json(job: DocumentJob) -> dict:
    d = job.to_dict()
    return {
        "id": d["id"],
        "invoiceId": d["target_document_id"],
        "invoiceNumber": d["document_number"],
        "companyId": d["company_id"],
        "status": d["status"],
        "attempts": d["attempts"],
        "runAfter": d["run_after"],
        "lastError": d["last_error"],
        "createdAt": d["created_at"],
        "updatedAt": d["updated_at"],
    }


@worklog_pdf_bp.route("/queue", methods=["POST"])
def queue_documents():
    """Queue worklog document jobs; invalid items are rejected individually."""
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    try:
        result = document_queue.enqueue(data)
    except ValidationError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)
    except Exception:
        logger.exception("queue_documents failed")
        return api_error(E.INTERNAL, "Internal server error")
    return jsonify(result), 200


@worklog_pdf_bp.route("/queue/status", methods=["GET"])
def queue_status():
    """Job counts per status (polled by the UI)."""
    return jsonify({"counts": document_queue.status_counts()}), 200


@worklog_pdf_bp.route("/queue/jobs", methods=["GET"])
def queue_jobs():
    """Newest jobs first, with last error, for operators."""
    try:
        query = document_queue.jobs_query(request.args.get("status") or None)
    except ValidationError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)
    jobs, total = paginate_query(query)
    return jsonify({"items": [_job_json(job) for job in jobs], "total": total}), 200


@worklog_pdf_bp.route("/<target_document_id>/pdf", methods=["GET"])
def document_pdf(target_document_id: str):
    """Serve the stored PDF with ETag (content hash) and conditional/range support."""
    try:
        doc = document_queue.get_document(target_document_id)
    except NotFoundError as exc:
        return api_error(E.NOT_FOUND, str(exc))

    download = request.args.get("download", "").lower() in ("1", "true", "yes")
    return send_file(
        io.BytesIO(doc.data),
        mimetype=doc.mime or "application/pdf",
        as_attachment=download,
        download_name=doc.file_name,
        etag=doc.content_hash or True,
        conditional=True,
        max_age=0,
    )
