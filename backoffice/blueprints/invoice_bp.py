"""
Billing Back Office
Invoice Blueprint.

HTTP boundary for period collection, lock-and-mark and settlement.

Routes:
    POST   /invoice/collect                 — per-company billing envelopes
    POST   /invoice/lock-and-mark           — bill time records under an invoice number
    POST   /invoice/lock-and-mark-items     — bill material items under an invoice number
    POST   /invoice/settle                  — labor/materials invoices → document job → locks
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from backoffice.core.exceptions import ConflictError, ValidationError
from backoffice.services import billing_collector, billing_lock, settlement_service
from backoffice.services.line_grouper import GroupingPolicy
from backoffice.utils.errors import E, api_error

logger = logging.getLogger(__name__)

invoice_bp = Blueprint("invoice", __name__, url_prefix="/invoice")


def _bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _validation(exc: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)


def _conflict(exc: ConflictError):
    return api_error(E.CONFLICT_STATE, str(exc), details=exc.details)


# ═════════════════════════════════════════════════════════════════════════════
# Collection
# ═════════════════════════════════════════════════════════════════════════════


@invoice_bp.route("/collect", methods=["POST"])
def collect():
    """Aggregate a date window into one envelope per billing entity."""
    data = request.get_json(silent=True) or {}
    status = data.get("status") or "unbilled"
    only_billable = _bool(data.get("onlyBillable"), True)
    user_id = data.get("userId")

    try:
        policy = GroupingPolicy.from_dict(data.get("group"))
        if user_id is not None and (isinstance(user_id, bool) or not str(user_id).isdigit()):
            raise ValidationError("userId must be a positive integer", details={"userId": user_id})
        envelopes = billing_collector.collect(
            data.get("start"), data.get("end"),
            status=status,
            only_billable=only_billable,
            policy=policy,
            owner_user_id=int(user_id) if user_id is not None else None,
        )
    except ValidationError as exc:
        return _validation(exc)
    except Exception:
        logger.exception("collect failed")
        return api_error(E.INTERNAL, "Internal server error")

    return jsonify({
        "start": data.get("start"),
        "end": data.get("end"),
        "status": status,
        "onlyBillable": only_billable,
        "group": policy.to_dict(),
        "count": len(envelopes),
        "customers": [env.to_dict() for env in envelopes],
    }), 200


# ═════════════════════════════════════════════════════════════════════════════
# Lock-and-mark
# ═════════════════════════════════════════════════════════════════════════════


def _locks(data: dict, key: str):
    locks = data.get("locks")
    if not isinstance(locks, dict):
        raise ValidationError("locks must be an object", details={"locks": "required"})
    return locks.get(key)


@invoice_bp.route("/lock-and-mark", methods=["POST"])
def lock_and_mark():
    """Mark time records billed under one invoice number (all or nothing)."""
    data = request.get_json(silent=True) or {}
    try:
        affected = billing_lock.lock_hours(_locks(data, "timeReportIds"), data.get("invoiceNumber"))
    except ValidationError as exc:
        return _validation(exc)
    except ConflictError as exc:
        return _conflict(exc)
    except Exception:
        logger.exception("lock-and-mark failed")
        return api_error(E.INTERNAL, "Internal server error")
    return jsonify({"ok": True, "affected": affected}), 200


@invoice_bp.route("/lock-and-mark-items", methods=["POST"])
def lock_and_mark_items():
    """Mark material items invoiced under one invoice number (all or nothing)."""
    data = request.get_json(silent=True) or {}
    try:
        affected = billing_lock.lock_items(_locks(data, "timeReportItemIds"),
                                           data.get("invoiceNumber"))
    except ValidationError as exc:
        return _validation(exc)
    except ConflictError as exc:
        return _conflict(exc)
    except Exception:
        logger.exception("lock-and-mark-items failed")
        return api_error(E.INTERNAL, "Internal server error")
    return jsonify({"ok": True, "affected": affected}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Settlement
# ═════════════════════════════════════════════════════════════════════════════


@invoice_bp.route("/settle", methods=["POST"])
def settle():
    """Create invoices, queue documents and lock rows for the selected companies.

    Per-company failures are reported in ``results``; the request itself
    succeeds unless the input is malformed.
    """
    data = request.get_json(silent=True) or {}
    try:
        summary = settlement_service.settle(
            data.get("customers"),
            invoice_date=data.get("invoiceDate"),
            due_in_days=data.get("dueInDays", 30),
            period=data.get("period") if isinstance(data.get("period"), dict) else None,
        )
    except ValidationError as exc:
        return _validation(exc)
    except Exception:
        logger.exception("settle failed")
        return api_error(E.INTERNAL, "Internal server error")
    return jsonify(summary), 200
