"""
Billing Back Office
Lock-and-mark: the atomic unbilled → billed transition.

Each call works on one exact id set inside one short transaction:

    1. validate ids + invoice number (no I/O on failure)
    2. SELECT id ... WHERE id IN (...) AND <eligible> FOR UPDATE
    3. count mismatch → rollback, ConflictError, nothing mutated
    4. UPDATE ... WHERE id IN (...) AND <eligible>, rowcount re-checked
    5. commit

The UPDATE repeats the eligibility predicate so even a backend that ignores
FOR UPDATE (SQLite) cannot bill a row twice. Of two concurrent requests with
overlapping ids exactly one succeeds; the other gets a conflict.
"""

from __future__ import annotations

import logging

from backoffice.core.exceptions import ConflictError, ValidationError
from backoffice.models import db, utcnow
from backoffice.models.billing import MaterialItem, TimeRecord
from backoffice.utils.helpers import parse_id_list

logger = logging.getLogger(__name__)

HOURS_INVOICE_NUMBER_MAX = 25
ITEMS_INVOICE_NUMBER_MAX = 40


def _validate(ids, invoice_number, *, field: str, max_len: int) -> tuple[list[int], str]:
    id_list = parse_id_list(ids, field)
    if not id_list:
        # An empty IN () must never reach the store
        raise ValidationError(f"{field} must contain at least one id",
                              details={field: "empty"})
    number = str(invoice_number).strip() if invoice_number is not None else ""
    if not number:
        raise ValidationError("invoiceNumber is required",
                              details={"invoiceNumber": "required"})
    if len(number) > max_len:
        raise ValidationError(f"invoiceNumber is longer than {max_len} characters",
                              details={"invoiceNumber": number})
    return id_list, number


def _lock_and_mark(model, ids: list[int], values: dict, resource: str) -> int:
    eligible = model.unbilled_clause()
    try:
        locked = set(db.session.execute(
            db.select(model.id)
            .where(model.id.in_(ids), eligible)
            .with_for_update()
        ).scalars())

        if len(locked) != len(ids):
            ineligible = [i for i in ids if i not in locked]
            raise ConflictError(
                resource,
                f"{len(ineligible)} of {len(ids)} {resource} rows are already billed or missing",
                details={"requested": len(ids), "eligible": len(locked),
                         "ineligibleIds": ineligible},
            )

        result = db.session.execute(
            db.update(model)
            .where(model.id.in_(ids), eligible)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            raise ConflictError(
                resource,
                f"{resource} rows changed while locking",
                details={"requested": len(ids), "updated": result.rowcount},
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    # Objects already in the identity map still carry pre-update values
    db.session.expire_all()
    return len(ids)


def lock_hours(ids, invoice_number) -> int:
    """Mark time records billed under ``invoice_number``.

    Returns:
        Number of rows affected (== number of unique ids).

    Raises:
        ValidationError: empty/invalid ids or missing invoice number.
        ConflictError: any id already billed or missing; no row changed.
    """
    id_list, number = _validate(ids, invoice_number, field="timeReportIds",
                                max_len=HOURS_INVOICE_NUMBER_MAX)
    affected = _lock_and_mark(
        TimeRecord, id_list,
        {"billed": True, "invoice_number": number, "updated_at": utcnow()},
        "TimeRecord",
    )
    logger.info("Locked %d time records under invoice %s", affected, number,
                extra={"document_number": number})
    return affected


def lock_items(ids, invoice_number) -> int:
    """Mark material items billed under ``invoice_number``.

    Items carry their own invoice number; the parent record is untouched.
    """
    id_list, number = _validate(ids, invoice_number, field="timeReportItemIds",
                                max_len=ITEMS_INVOICE_NUMBER_MAX)
    affected = _lock_and_mark(
        MaterialItem, id_list, {"invoice_number": number}, "MaterialItem",
    )
    logger.info("Locked %d material items under invoice %s", affected, number,
                extra={"document_number": number})
    return affected
