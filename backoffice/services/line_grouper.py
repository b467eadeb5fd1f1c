"""
Billing Back Office
Invoice line grouper.

Turns one billing envelope's time records and material items into invoice
line candidates according to a GroupingPolicy:

    labor:  single       → one "Labor" line
            byCategory   → one line per category ("Uncategorized" when unset)
            byWorkLabel  → one line per work label ("Labor" when unset)
    items:  byArticle    → registered items per article id, custom items per
                           normalised description; registered lines first
            byDescription→ one line per human-readable description

With include_project_dimension every key also carries the project id, so
the same label on two projects yields two lines.

Groups are emitted in first-seen order and never split; every line keeps the
exact ids that contributed to it so the lock step can be driven from lines.
Prices are not computed here: unitPrice is always None and VAT is a
pass-through percentage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from backoffice.core.exceptions import ValidationError

LABOR_MODES = ("single", "byCategory", "byWorkLabel")
ITEM_MODES = ("byArticle", "byDescription")

LABOR_LABEL = "Labor"
UNCATEGORIZED_LABEL = "Uncategorized"
CUSTOM_ITEM_LABEL = "Item"
ARTICLE_LABEL = "Article"


# ── Policy ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GroupingPolicy:
    labor: str = "byWorkLabel"
    items: str = "byArticle"
    include_project_dimension: bool = False

    def __post_init__(self):
        if self.labor not in LABOR_MODES:
            raise ValidationError(
                f"Unknown labor grouping '{self.labor}'",
                details={"labor": f"one of {', '.join(LABOR_MODES)}"},
            )
        if self.items not in ITEM_MODES:
            raise ValidationError(
                f"Unknown item grouping '{self.items}'",
                details={"items": f"one of {', '.join(ITEM_MODES)}"},
            )

    @classmethod
    def from_dict(cls, data: dict | None) -> "GroupingPolicy":
        """Build a policy from the request's ``group`` object (camelCase keys)."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError("group must be an object")
        return cls(
            labor=data.get("labor") or "byWorkLabel",
            items=data.get("items") or "byArticle",
            include_project_dimension=bool(data.get("project", data.get("includeProject", False))),
        )

    def to_dict(self) -> dict:
        return {
            "labor": self.labor,
            "items": self.items,
            "project": self.include_project_dimension,
        }


# ── Inputs ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LaborEntry:
    record_id: int
    hours: Decimal
    category_name: str | None = None
    work_label: str | None = None
    project_id: int | None = None
    project_name: str | None = None


@dataclass(frozen=True)
class ItemEntry:
    item_id: int
    quantity: int
    article_id: int | None = None
    article_number: str | None = None
    article_name: str | None = None
    description: str | None = None
    project_id: int | None = None
    project_name: str | None = None


# ── Grouping keys ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LaborKey:
    label: str
    project_id: int | None


@dataclass(frozen=True)
class ArticleKey:
    article_id: int
    project_id: int | None


@dataclass(frozen=True)
class CustomKey:
    description: str
    project_id: int | None


@dataclass(frozen=True)
class DescriptionKey:
    description: str
    project_id: int | None


# ── Output ──────────────────────────────────────────────────────────────────


@dataclass
class InvoiceLine:
    kind: str  # "labor" | "registered" | "custom"
    description: str
    quantity: Decimal | int
    unit: str
    vat_percent: int
    article_id: int | None = None
    article_number: str | None = None
    project_id: int | None = None
    project_name: str | None = None
    source_ids: list[int] = field(default_factory=list)

    @property
    def source_type(self) -> str:
        return "timeReport" if self.kind == "labor" else "timeReportItem"

    def to_dict(self) -> dict:
        qty = float(self.quantity) if isinstance(self.quantity, Decimal) else self.quantity
        return {
            "kind": self.kind,
            "description": self.description,
            "qty": round(qty, 2) if isinstance(qty, float) else qty,
            "unit": self.unit,
            "unitPrice": None,
            "vatPercent": self.vat_percent,
            "articleId": self.article_id,
            "articleNumber": self.article_number,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "source": {"type": self.source_type, "ids": list(self.source_ids)},
        }


def _normalize(text: str | None) -> str:
    return " ".join((text or "").split()).lower()


def _display(text: str | None) -> str:
    return " ".join((text or "").split())


# ── Grouping ────────────────────────────────────────────────────────────────


def _labor_label(entry: LaborEntry, mode: str) -> str:
    if mode == "single":
        return LABOR_LABEL
    if mode == "byCategory":
        return _display(entry.category_name) or UNCATEGORIZED_LABEL
    return _display(entry.work_label) or LABOR_LABEL


def group_labor(entries: Iterable[LaborEntry], policy: GroupingPolicy,
                vat_percent: int = 25) -> list[InvoiceLine]:
    groups: dict[LaborKey, InvoiceLine] = {}
    for entry in entries:
        project_id = entry.project_id if policy.include_project_dimension else None
        label = _labor_label(entry, policy.labor)
        # byCategory/byWorkLabel compare labels case-insensitively
        key = LaborKey(label.lower(), project_id)
        line = groups.get(key)
        if line is None:
            line = InvoiceLine(
                kind="labor",
                description=label,
                quantity=Decimal("0"),
                unit="h",
                vat_percent=vat_percent,
                project_id=project_id,
                project_name=entry.project_name if project_id is not None else None,
            )
            groups[key] = line
        line.quantity += Decimal(str(entry.hours or 0))
        line.source_ids.append(entry.record_id)

    return [line for line in groups.values() if line.quantity > 0]


def _item_key(entry: ItemEntry, policy: GroupingPolicy, project_id):
    if policy.items == "byDescription":
        return DescriptionKey(_normalize(_item_description(entry)), project_id)
    if entry.article_id is not None:
        return ArticleKey(entry.article_id, project_id)
    return CustomKey(_normalize(entry.description), project_id)


def _item_description(entry: ItemEntry) -> str:
    if entry.article_id is not None:
        return _display(entry.article_name) or _display(entry.article_number) or ARTICLE_LABEL
    return _display(entry.description) or CUSTOM_ITEM_LABEL


def group_items(entries: Iterable[ItemEntry], policy: GroupingPolicy,
                vat_percent: int = 25) -> list[InvoiceLine]:
    groups: dict[ArticleKey | CustomKey | DescriptionKey, InvoiceLine] = {}
    for entry in entries:
        qty = int(entry.quantity or 0)
        if qty <= 0:
            continue
        project_id = entry.project_id if policy.include_project_dimension else None
        key = _item_key(entry, policy, project_id)
        line = groups.get(key)
        if line is None:
            line = InvoiceLine(
                kind="registered" if entry.article_id is not None else "custom",
                description=_item_description(entry),
                quantity=0,
                unit="pcs",
                vat_percent=vat_percent,
                article_id=entry.article_id,
                article_number=entry.article_number,
                project_id=project_id,
                project_name=entry.project_name if project_id is not None else None,
            )
            groups[key] = line
        elif entry.article_id is not None and line.kind == "custom":
            # byDescription: a registered contributor makes the line registered
            line.kind = "registered"
            line.article_id = entry.article_id
            line.article_number = entry.article_number
        line.quantity += qty
        line.source_ids.append(entry.item_id)

    lines = list(groups.values())
    if policy.items == "byArticle":
        lines = ([line for line in lines if line.kind == "registered"]
                 + [line for line in lines if line.kind == "custom"])
    return lines


def build_lines(labor: Iterable[LaborEntry], items: Iterable[ItemEntry],
                policy: GroupingPolicy, vat_percent: int = 25) -> list[InvoiceLine]:
    """Labor lines first, then item lines, each group in first-seen order."""
    return group_labor(labor, policy, vat_percent) + group_items(items, policy, vat_percent)
