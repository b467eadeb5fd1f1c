"""
Billing Back Office
Settlement pipeline: labor and materials invoices, document job, locks.

For each selected envelope, independently:
    1. re-resolve the bill target from the stored entity; skip when it is null
    2. create a labor invoice from the labor lines and a materials invoice
       from the item lines (either may be absent)
    3. enqueue the worklog document job against the labor invoice (the
       materials invoice when there is no labor)
    4. lock the hours under the labor invoice number and the items under the
       materials invoice number; the two locks run independently

Locking is gated on step 3 for that entity only. A failed step is reported
in the entity's result; other entities carry on and nothing already
committed for them is rolled back.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from backoffice.core.exceptions import AccountingGatewayError, ConflictError, ValidationError
from backoffice.integrations.accounting_gateway import accounting_gateway
from backoffice.models import db
from backoffice.models.billing import BillingEntity
from backoffice.services import bill_target, billing_lock, document_queue
from backoffice.services.queue_runner import queue_runner
from backoffice.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

MAX_DUE_DAYS = 365


def _invoice_rows(lines: list[dict]) -> list[dict]:
    rows = []
    for line in lines or []:
        qty = line.get("qty", line.get("quantity"))
        if qty is None or float(qty) <= 0:
            continue
        row = {
            "Description": line.get("description") or "",
            "DeliveredQuantity": qty,
            "Unit": line.get("unit"),
            "VAT": line.get("vatPercent"),
        }
        if line.get("articleNumber"):
            row["ArticleNumber"] = line["articleNumber"]
        if line.get("unitPrice") is not None:
            row["Price"] = line["unitPrice"]
        rows.append({k: v for k, v in row.items() if v is not None})
    return rows


def build_invoices(envelope: dict, customer_number: str, invoice_date: date,
                   due_in_days: int) -> dict[str, dict | None]:
    """Labor and materials invoice payloads for one envelope.

    Labor lines go on one invoice and item lines on the other; a kind with
    no billable rows yields None. Prices pass through untouched.
    """
    lines = envelope.get("lines") or []
    split = {
        "labor": [line for line in lines if line.get("kind") == "labor"],
        "materials": [line for line in lines if line.get("kind") != "labor"],
    }
    invoices = {}
    for kind, kind_lines in split.items():
        rows = _invoice_rows(kind_lines)
        invoices[kind] = {
            "CustomerNumber": str(customer_number),
            "InvoiceDate": invoice_date.isoformat(),
            "DueDate": (invoice_date + timedelta(days=due_in_days)).isoformat(),
            "InvoiceRows": rows,
        } if rows else None
    return invoices


def _rows(envelope: dict) -> list[dict]:
    timecards = envelope.get("timecards") or {}
    if isinstance(timecards, dict):
        return list(timecards.get("rows") or [])
    return list(timecards)


def _period(envelope: dict, period: dict | None) -> dict | None:
    if period:
        return period
    meta = envelope.get("meta") or {}
    if meta.get("firstDate") or meta.get("lastDate"):
        return {"from": meta.get("firstDate"), "to": meta.get("lastDate")}
    return None


def _stored_entity(company: dict) -> BillingEntity | None:
    company_id = company.get("id")
    if isinstance(company_id, bool) or not str(company_id or "").isdigit():
        return None
    return db.session.get(BillingEntity, int(company_id))


def _attempt(result: dict, step: str, fn):
    """Run one settlement step; record a failure on ``result`` and return None."""
    entity_id = result["company"]["id"]
    try:
        return fn()
    except (AccountingGatewayError, ValidationError, ConflictError) as exc:
        db.session.rollback()
        error = str(exc)
        logger.warning("Settlement step %s failed for entity %s: %s", step, entity_id, exc,
                       extra={"entity_id": entity_id})
    except Exception:
        db.session.rollback()
        error = "Internal error"
        logger.exception("Settlement step %s crashed for entity %s", step, entity_id,
                         extra={"entity_id": entity_id})
    _fail(result, step, error)
    return None


def _fail(result: dict, step: str, error: str) -> None:
    result["errors"].append({"step": step, "error": error})
    if result["step"] is None:
        result.update(step=step, error=error)
    result["status"] = "failed"


def _settle_one(envelope: dict, invoice_date: date, due_in_days: int,
                period: dict | None) -> dict:
    company = envelope.get("company") or {}
    locks = envelope.get("locks") or {}
    entity = _stored_entity(company)
    target = bill_target.resolve(entity).target
    result = {
        "company": {"id": company.get("id"), "name": company.get("name")},
        "billTarget": target,
        "status": "skipped",
        "step": None,
        "documentNumber": None,
        "documentNumbers": {"labor": None, "materials": None},
        "jobId": None,
        "affected": {"hours": 0, "items": 0},
        "error": None,
        "errors": [],
    }
    if target is None:
        result["error"] = "No bill target"
        return result

    hour_ids = locks.get("timeReportIds") or []
    item_ids = locks.get("timeReportItemIds") or []
    if not hour_ids and not item_ids:
        result["error"] = "Nothing to bill"
        return result

    result["status"] = "ok"
    invoices = build_invoices(envelope, target, invoice_date, due_in_days)
    if not any(invoices.values()):
        _fail(result, "build_invoice", "Envelope has no invoice lines")
        return result

    numbers = result["documentNumbers"]
    for kind, invoice in invoices.items():
        if invoice is not None:
            numbers[kind] = _attempt(
                result, f"create_{kind}_invoice",
                lambda invoice=invoice: accounting_gateway.create_invoice(invoice),
            )

    document_number = numbers["labor"] or numbers["materials"]
    result["documentNumber"] = document_number
    if document_number is None:
        return result

    queued = _attempt(result, "enqueue", lambda: document_queue.enqueue([{
        "invoiceId": document_number,
        "invoiceNumber": document_number,
        "customerName": company.get("name") or "",
        "rows": _rows(envelope),
        "period": _period(envelope, period),
        "companyId": entity.id,
    }], poke=False))
    if queued is None:
        return result
    result["jobId"] = queued["jobIds"][0]

    if hour_ids and numbers["labor"]:
        affected = _attempt(result, "lock_hours",
                            lambda: billing_lock.lock_hours(hour_ids, numbers["labor"]))
        result["affected"]["hours"] = affected or 0
    if item_ids and numbers["materials"]:
        affected = _attempt(result, "lock_items",
                            lambda: billing_lock.lock_items(item_ids, numbers["materials"]))
        result["affected"]["items"] = affected or 0

    if result["status"] == "ok":
        logger.info("Settled entity %s (labor %s, materials %s; %d hours rows, %d items)",
                    entity.id, numbers["labor"], numbers["materials"],
                    result["affected"]["hours"], result["affected"]["items"],
                    extra={"entity_id": entity.id, "document_number": document_number})
    return result


def settle(envelopes, invoice_date=None, due_in_days=30, period: dict | None = None) -> dict:
    """Invoice, queue documents for, and lock every selected envelope.

    The bill target is always resolved from the stored billing entity; the
    envelope's ``billingInfo`` is display data only.

    Args:
        envelopes: Envelope dicts as returned by /invoice/collect.
        invoice_date: ``YYYY-MM-DD`` or date; defaults to today.
        due_in_days: Days from invoice date to due date (0..365).
        period: Optional ``{from, to}`` for the document header; defaults to
                the envelope's first/last record date.

    Returns:
        ``{"results": [...], "succeeded": n, "failed": n, "skipped": n}``

    Raises:
        ValidationError: malformed arguments, before any I/O.
    """
    if not isinstance(envelopes, list) or not envelopes:
        raise ValidationError("customers must be a non-empty list",
                              details={"customers": "empty"})
    if any(not isinstance(env, dict) for env in envelopes):
        raise ValidationError("customers must contain objects",
                              details={"customers": "invalid"})
    day = parse_date_input(invoice_date, "invoiceDate") or date.today()
    try:
        due = int(due_in_days)
    except (TypeError, ValueError):
        raise ValidationError("dueInDays must be an integer", details={"dueInDays": due_in_days})
    if isinstance(due_in_days, bool) or not 0 <= due <= MAX_DUE_DAYS:
        raise ValidationError(f"dueInDays must be between 0 and {MAX_DUE_DAYS}",
                              details={"dueInDays": due_in_days})

    results = [_settle_one(env, day, due, period) for env in envelopes]
    summary = {
        "results": results,
        "succeeded": sum(1 for r in results if r["status"] == "ok"),
        "failed": sum(1 for r in results if r["status"] == "failed"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
    }
    if any(r["jobId"] for r in results):
        queue_runner.poke()

    logger.info("Settlement run: %d ok, %d failed, %d skipped",
                summary["succeeded"], summary["failed"], summary["skipped"])
    return summary
