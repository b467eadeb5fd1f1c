"""
Billing Back Office
Billing collector — period aggregation into per-company envelopes.

collect() reads time records and material items for an inclusive date
window and buckets them by billing entity. Each bucket becomes a
BillingEnvelope carrying:

    - totals (hours, record count, item quantity, article counts)
    - timecards (raw rows with their in-scope items nested)
    - an article histogram (registered by article id, custom by description)
    - the resolved bill target
    - invoice line candidates (InvoiceLineGrouper)
    - the exact id lists the lock step will use
    - read-only UI flags (unbilled outside range, billing state)

Records with no billing entity land in one "unlinked" envelope rather than
being dropped. Flags are informational; they never gate locking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from flask import current_app

from backoffice.core.exceptions import ValidationError
from backoffice.models import db
from backoffice.models.billing import BillingEntity, MaterialItem, TimeRecord
from backoffice.services import bill_target
from backoffice.services.line_grouper import (
    GroupingPolicy,
    InvoiceLine,
    ItemEntry,
    LaborEntry,
    build_lines,
)
from backoffice.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

STATUSES = ("unbilled", "billed", "all")
UNLINKED_NAME = "—"


# ── Envelope ────────────────────────────────────────────────────────────────


@dataclass
class BillingEnvelope:
    """All collected billing data for one billing entity (or the unlinked bucket)."""

    entity: BillingEntity | None
    target: bill_target.BillTarget = bill_target.NO_TARGET
    hours_sum: Decimal = Decimal("0")
    time_record_count: int = 0
    item_count: int = 0
    timecards: list[dict] = field(default_factory=list)
    registered_articles: dict[int, dict] = field(default_factory=dict)
    custom_articles: dict[str, dict] = field(default_factory=dict)
    lines: list[InvoiceLine] = field(default_factory=list)
    time_record_ids: list[int] = field(default_factory=list)
    item_ids: list[int] = field(default_factory=list)
    first_date: date | None = None
    last_date: date | None = None
    project_ids: list[int] = field(default_factory=list)
    flags: dict = field(default_factory=dict)
    state: str = "empty"

    @property
    def unlinked(self) -> bool:
        return self.entity is None

    @property
    def entity_id(self) -> int | None:
        return self.entity.id if self.entity is not None else None

    @property
    def name(self) -> str:
        return self.entity.name if self.entity is not None else UNLINKED_NAME

    @property
    def has_rows(self) -> bool:
        return bool(self.time_record_ids or self.item_ids)

    def touch(self, day: date, project_id: int | None):
        if day is not None:
            if self.first_date is None or day < self.first_date:
                self.first_date = day
            if self.last_date is None or day > self.last_date:
                self.last_date = day
        if project_id is not None and project_id not in self.project_ids:
            self.project_ids.append(project_id)

    def to_dict(self) -> dict:
        entity = self.entity
        return {
            "company": (
                {"id": entity.id, "name": entity.name, "unlinked": False}
                if entity is not None
                else {"id": None, "name": UNLINKED_NAME, "unlinked": True}
            ),
            "billingInfo": {
                **self.target.to_dict(),
                "externalAccountingId": entity.external_accounting_id if entity else None,
                "isBillingOwner": bool(entity.is_billing_owner) if entity else False,
                "billDirect": bool(entity.bill_direct) if entity else False,
                "ownerEntityId": entity.owner_entity_id if entity else None,
                "language": entity.language if entity else "sv",
            },
            "total": {
                "hoursSum": float(self.hours_sum),
                "timeReportCount": self.time_record_count,
                "itemCount": self.item_count,
                "registeredArticleCount": len(self.registered_articles),
                "customArticleCount": len(self.custom_articles),
            },
            "timecards": {
                "rows": sorted(self.timecards, key=lambda r: (r["date"] or "", r["id"])),
                "articles": {
                    "registered": list(self.registered_articles.values()),
                    "custom": list(self.custom_articles.values()),
                },
            },
            "lines": [line.to_dict() for line in self.lines],
            "locks": {
                "timeReportIds": list(self.time_record_ids),
                "timeReportItemIds": list(self.item_ids),
            },
            "meta": {
                "sourceRowCount": self.time_record_count,
                "firstDate": self.first_date.isoformat() if self.first_date else None,
                "lastDate": self.last_date.isoformat() if self.last_date else None,
                "projects": list(self.project_ids),
                "flags": dict(self.flags),
                "billing": {"state": self.state},
            },
        }


# ── Queries ─────────────────────────────────────────────────────────────────


def _hours_status_clause(status: str):
    if status == "unbilled":
        return TimeRecord.unbilled_clause()
    if status == "billed":
        return TimeRecord.billed_clause()
    return None


def _items_status_clause(status: str):
    if status == "unbilled":
        return MaterialItem.unbilled_clause()
    if status == "billed":
        return MaterialItem.billed_clause()
    return None


def _scope(stmt, only_billable: bool, owner_user_id: int | None):
    if only_billable:
        stmt = stmt.where(TimeRecord.billable.is_(True))
    if owner_user_id is not None:
        stmt = stmt.where(TimeRecord.owner_user_id == owner_user_id)
    return stmt


def _range(stmt, start: date | None, end: date | None):
    if start is not None:
        stmt = stmt.where(TimeRecord.date >= start)
    if end is not None:
        stmt = stmt.where(TimeRecord.date <= end)
    return stmt


def _load_time_records(start, end, status, only_billable, owner_user_id) -> list[TimeRecord]:
    stmt = db.select(TimeRecord)
    stmt = _scope(_range(stmt, start, end), only_billable, owner_user_id)
    clause = _hours_status_clause(status)
    if clause is not None:
        stmt = stmt.where(clause)
    stmt = stmt.order_by(TimeRecord.date, TimeRecord.id)
    return list(db.session.execute(stmt).unique().scalars())


def _load_items(start, end, status, only_billable, owner_user_id) -> list[MaterialItem]:
    stmt = db.select(MaterialItem).join(TimeRecord, MaterialItem.time_record_id == TimeRecord.id)
    stmt = _scope(_range(stmt, start, end), only_billable, owner_user_id)
    clause = _items_status_clause(status)
    if clause is not None:
        stmt = stmt.where(clause)
    stmt = stmt.order_by(TimeRecord.date, MaterialItem.id)
    return list(db.session.execute(stmt).unique().scalars())


def _entity_ids_matching(*clauses, only_billable, owner_user_id, items=False) -> set:
    """Distinct billing_entity_id values (None included) for rows matching clauses."""
    if items:
        stmt = (db.select(TimeRecord.billing_entity_id).distinct()
                .select_from(MaterialItem)
                .join(TimeRecord, MaterialItem.time_record_id == TimeRecord.id))
    else:
        stmt = db.select(TimeRecord.billing_entity_id).distinct()
    stmt = _scope(stmt, only_billable, owner_user_id)
    for clause in clauses:
        stmt = stmt.where(clause)
    return set(db.session.execute(stmt).scalars())


# ── Collection ──────────────────────────────────────────────────────────────


def _validate(start, end, status):
    start_d = parse_date_input(start, "start")
    end_d = parse_date_input(end, "end")
    if start_d and end_d and start_d > end_d:
        raise ValidationError("start must be on or before end",
                              details={"start": str(start_d), "end": str(end_d)})
    if status not in STATUSES:
        raise ValidationError(f"Unknown status '{status}'",
                              details={"status": f"one of {', '.join(STATUSES)}"})
    return start_d, end_d


def _timecard_row(record: TimeRecord) -> dict:
    return {
        "id": record.id,
        "date": record.date.isoformat() if record.date else None,
        "hours": float(record.hours or 0),
        "billable": bool(record.billable),
        "note": record.note,
        "workLabel": record.work_label,
        "category": record.category.name if record.category else None,
        "categoryId": record.category_id,
        "project": ({"id": record.project.id, "name": record.project.name}
                    if record.project else None),
        "userId": record.owner_user_id,
        "userName": record.user.name if record.user else None,
        "items": [],
        "billing": {
            "billed": bool(record.billed) or bool((record.invoice_number or "").strip()),
            "invoiceNumber": record.invoice_number,
        },
    }


def _item_row(item: MaterialItem) -> dict:
    article = item.article
    return {
        "id": item.id,
        "articleId": item.article_id,
        "articleNumber": article.article_number if article else None,
        "articleName": article.name if article else None,
        "quantity": item.quantity,
        "description": item.description,
        "invoiceNumber": item.invoice_number,
    }


def _state(envelope: BillingEnvelope, status: str, billed_in: bool, unbilled_in: bool) -> str:
    if not envelope.has_rows:
        return "empty"
    if status in ("unbilled", "billed"):
        return status
    if billed_in and unbilled_in:
        return "mixed"
    if billed_in:
        return "billed"
    if unbilled_in:
        return "unbilled"
    return "empty"


def collect(
    start=None,
    end=None,
    status: str = "unbilled",
    only_billable: bool = True,
    policy: GroupingPolicy | None = None,
    owner_user_id: int | None = None,
) -> list[BillingEnvelope]:
    """Aggregate the window into one envelope per billing entity.

    Args:
        start, end: Inclusive window bounds (``YYYY-MM-DD`` or date); either may be None.
        status: ``unbilled`` | ``billed`` | ``all``.
        only_billable: Restrict to time records flagged billable (items follow their parent).
        policy: Invoice line grouping policy (defaults to byWorkLabel/byArticle).
        owner_user_id: Restrict to one user's records.

    Returns:
        Envelopes sorted by company name; the unlinked bucket sorts as "—".

    Raises:
        ValidationError: bad dates, start > end, unknown status. Raised before any query.
    """
    start_d, end_d = _validate(start, end, status)
    policy = policy or GroupingPolicy()
    vat_percent = current_app.config.get("INVOICE_VAT_PERCENT", 25)

    records = _load_time_records(start_d, end_d, status, only_billable, owner_user_id)
    items = _load_items(start_d, end_d, status, only_billable, owner_user_id)

    envelopes: dict[int | None, BillingEnvelope] = {}
    labor_entries: dict[int | None, list[LaborEntry]] = {}
    item_entries: dict[int | None, list[ItemEntry]] = {}
    timecard_by_record: dict[int, dict] = {}

    def bucket(record: TimeRecord) -> BillingEnvelope:
        # Dangling entity references go to the unlinked bucket too
        entity = record.billing_entity
        key = entity.id if entity is not None else None
        env = envelopes.get(key)
        if env is None:
            env = BillingEnvelope(entity=entity)
            envelopes[key] = env
            labor_entries[key] = []
            item_entries[key] = []
        return env

    for record in records:
        env = bucket(record)
        hours = Decimal(str(record.hours or 0))
        env.hours_sum += hours
        env.time_record_count += 1
        env.time_record_ids.append(record.id)
        env.touch(record.date, record.project_id)

        row = _timecard_row(record)
        env.timecards.append(row)
        timecard_by_record[record.id] = row

        labor_entries[env.entity_id].append(LaborEntry(
            record_id=record.id,
            hours=hours,
            category_name=record.category.name if record.category else None,
            work_label=record.work_label,
            project_id=record.project_id,
            project_name=record.project.name if record.project else None,
        ))

    for item in items:
        parent = item.time_record
        env = bucket(parent)
        qty = int(item.quantity or 0)
        env.item_count += qty
        env.item_ids.append(item.id)
        env.touch(parent.date, parent.project_id)

        card = timecard_by_record.get(parent.id)
        if card is not None:
            card["items"].append(_item_row(item))

        article = item.article
        if item.article_id is not None:
            reg = env.registered_articles.setdefault(item.article_id, {
                "article": {
                    "id": item.article_id,
                    "number": article.article_number if article else None,
                    "name": article.name if article else None,
                },
                "qty": 0,
            })
            reg["qty"] += qty
        else:
            desc = " ".join((item.description or "").split()) or "Item"
            cus = env.custom_articles.setdefault(desc.lower(), {"description": desc, "qty": 0})
            cus["qty"] += qty

        item_entries[env.entity_id].append(ItemEntry(
            item_id=item.id,
            quantity=qty,
            article_id=item.article_id,
            article_number=article.article_number if article else None,
            article_name=article.name if article else None,
            description=item.description,
            project_id=parent.project_id,
            project_name=parent.project.name if parent.project else None,
        ))

    targets = bill_target.resolve_many(
        env.entity for env in envelopes.values() if env.entity is not None
    )

    flag_args = {"only_billable": only_billable, "owner_user_id": owner_user_id}
    before = (_entity_ids_matching(TimeRecord.date < start_d, TimeRecord.unbilled_clause(),
                                   **flag_args) if start_d else set())
    after = (_entity_ids_matching(TimeRecord.date > end_d, TimeRecord.unbilled_clause(),
                                  **flag_args) if end_d else set())
    in_range = [c for c in (TimeRecord.date >= start_d if start_d else None,
                            TimeRecord.date <= end_d if end_d else None) if c is not None]
    billed_any = (
        _entity_ids_matching(*in_range, TimeRecord.billed_clause(), **flag_args)
        | _entity_ids_matching(*in_range, MaterialItem.billed_clause(),
                               items=True, **flag_args)
    )
    unbilled_any = (
        _entity_ids_matching(*in_range, TimeRecord.unbilled_clause(), **flag_args)
        | _entity_ids_matching(*in_range, MaterialItem.unbilled_clause(),
                               items=True, **flag_args)
    )

    for key, env in envelopes.items():
        if env.entity is not None:
            env.target = targets.get(env.entity.id, bill_target.NO_TARGET)
        env.lines = build_lines(labor_entries[key], item_entries[key], policy, vat_percent)

        billed_in = key in billed_any
        unbilled_in = key in unbilled_any
        if status == "unbilled":
            billed_in, unbilled_in = False, env.has_rows
        elif status == "billed":
            billed_in, unbilled_in = env.has_rows, False

        env.flags = {
            "hasUnbilledBeforeStart": key in before,
            "hasUnbilledAfterEnd": key in after,
            "hasBilledInRange": billed_in,
            "hasUnbilledInRange": unbilled_in,
            "isFullyBilledInRange": billed_in and not unbilled_in,
        }
        env.state = _state(env, status, billed_in, unbilled_in)

    result = sorted(envelopes.values(), key=lambda e: e.name.casefold())
    logger.info(
        "Collected %d envelopes (%d records, %d items) status=%s range=%s..%s",
        len(result), len(records), len(items), status, start_d, end_d,
    )
    return result
