"""
Billing Back Office
Bill-target resolution.

Decides which accounting-system customer an invoice is issued against.
Ownership is a single hop by design:

    1. entity.is_billing_owner  → entity's own id        (source "self")
    2. entity.bill_direct       → entity's own id        (source "self")
    3. otherwise                → owner's id, one hop    (source "owner")
    4. chosen id missing/blank  → (None, None)           not invoiceable

The owner's own owner is never consulted, so resolution is total and
cannot loop even on a malformed owner graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from backoffice.models import db
from backoffice.models.billing import BillingEntity


@dataclass(frozen=True)
class BillTarget:
    target: str | None
    source: str | None  # "self" | "owner" | None

    @property
    def invoiceable(self) -> bool:
        return self.target is not None

    def to_dict(self) -> dict:
        return {"billTarget": self.target, "billTargetSource": self.source}


NO_TARGET = BillTarget(None, None)


def _clean_id(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve(entity: BillingEntity | None, owner: BillingEntity | None = None) -> BillTarget:
    """Resolve the bill target for one entity.

    ``owner`` may be passed when the caller has already loaded it (bulk
    resolution); otherwise the entity's ``owner`` relationship is used.
    """
    if entity is None:
        return NO_TARGET

    if entity.is_billing_owner or entity.bill_direct:
        own = _clean_id(entity.external_accounting_id)
        return BillTarget(own, "self") if own else NO_TARGET

    if entity.owner_entity_id is None:
        return NO_TARGET

    if owner is None or owner.id != entity.owner_entity_id:
        owner = entity.owner
    owner_id = _clean_id(owner.external_accounting_id) if owner is not None else None
    return BillTarget(owner_id, "owner") if owner_id else NO_TARGET


def resolve_many(entities: Iterable[BillingEntity]) -> dict[int, BillTarget]:
    """Resolve targets for many entities, loading all owners in one query."""
    entities = [e for e in entities if e is not None]
    owner_ids = {
        e.owner_entity_id for e in entities
        if e.owner_entity_id is not None and not (e.is_billing_owner or e.bill_direct)
    }
    owners: dict[int, BillingEntity] = {}
    if owner_ids:
        rows = db.session.execute(
            db.select(BillingEntity).where(BillingEntity.id.in_(owner_ids))
        ).scalars()
        owners = {o.id: o for o in rows}

    return {e.id: resolve(e, owners.get(e.owner_entity_id)) for e in entities}


def preference_entity(entity: BillingEntity | None) -> BillingEntity | None:
    """Return the entity whose document preferences apply.

    Directly billed entities use their own settings; otherwise the owner's
    settings win when an owner exists.
    """
    if entity is None:
        return None
    if entity.bill_direct:
        return entity
    if entity.owner_entity_id is not None and entity.owner is not None:
        return entity.owner
    return entity
