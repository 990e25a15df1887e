from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Literal

from .errors import NotFoundError, RangeError, ValidationError
from .material_repository import MaterialRepository
from .models.item import DEFAULT_CATEGORY, ItemStatus, MaterialItem, utc_now
from .versions import require_working_version

logger = logging.getLogger(__name__)

# Markup is persisted as numeric(5, 4): four fractional digits, at most 9.9999.
# Below -1 the derived unit price would go negative.
MARKUP_SCALE = 4
MAX_MARKUP_FRACTION = 9.9999
MIN_MARKUP_FRACTION = -1.0

DerivedTrigger = Literal["quantity", "unit_cost", "markup", "unit_price"]

NUMERIC_FIELDS = ("quantity", "unit_cost", "unit_price")
TEXT_FIELDS = ("name", "category", "usage", "sku", "length", "color", "notes")
# Optional keyword fields accepted by ItemLedger.add_item.
EXTRA_ITEM_FIELDS = frozenset({"usage", "sku", "length", "color", "notes", "taxable", "status"})


def parse_amount(value: Any, *, field: str) -> float | None:
    """Parse a non-negative real. Blank input clears the field."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "").lstrip("$")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from exc
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{field} must be a non-negative number, got {value!r}", field=field)
    return number


def parse_markup_percent(value: Any) -> float | None:
    """Parse a percent entry ("35", "35%", 35) into a stored decimal fraction."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("markup must be a number", field="markup")
    if isinstance(value, (int, float)):
        percent = float(value)
    else:
        text = str(value).strip().rstrip("%").strip()
        if not text:
            return None
        try:
            percent = float(text)
        except ValueError as exc:
            raise ValidationError(f"markup must be a number, got {value!r}", field="markup") from exc
    if not math.isfinite(percent):
        raise ValidationError(f"markup must be a number, got {value!r}", field="markup")
    return check_markup_fraction(percent / 100)


def check_markup_fraction(fraction: float) -> float:
    stored = round(fraction, MARKUP_SCALE)
    if stored > MAX_MARKUP_FRACTION:
        raise RangeError(
            f"markup {fraction * 100:.2f}% exceeds the storable maximum of {MAX_MARKUP_FRACTION * 100:.2f}%",
            field="markup",
        )
    if stored < MIN_MARKUP_FRACTION:
        raise RangeError(
            f"markup {fraction * 100:.2f}% is below {MIN_MARKUP_FRACTION * 100:.0f}% and would price the item below zero",
            field="markup",
        )
    return stored


def _product(left: float | None, right: float | None) -> float | None:
    if left is None or right is None:
        return None
    return left * right


def _markup_from(cost: float | None, price: float | None, fallback: float | None) -> float | None:
    if cost is None or price is None or cost == 0:
        return fallback
    return check_markup_fraction((price - cost) / cost)


def recompute(item: MaterialItem, changed_field: DerivedTrigger) -> MaterialItem:
    """Return a copy of ``item`` with fields derived from ``changed_field``.

    Exactly one derivation path runs per call: a markup edit derives the
    price, a price edit derives the markup, and neither feeds back into the
    other. Extended cost and price are always rebuilt from their inputs.
    """
    markup = item.markup
    unit_price = item.unit_price

    if changed_field == "markup":
        if item.unit_cost is not None and markup is not None:
            unit_price = item.unit_cost * (1 + markup)
    elif changed_field == "unit_price":
        markup = _markup_from(item.unit_cost, unit_price, markup)
    elif changed_field == "unit_cost":
        if unit_price is not None:
            markup = _markup_from(item.unit_cost, unit_price, markup)
        elif item.unit_cost is not None and markup is not None:
            unit_price = item.unit_cost * (1 + markup)
    elif changed_field != "quantity":
        raise ValueError(f"Unknown derived-field trigger: {changed_field}")

    return item.model_copy(
        update={
            "markup": markup,
            "unit_price": unit_price,
            "extended_cost": _product(item.quantity, item.unit_cost),
            "extended_price": _product(item.quantity, unit_price),
        }
    )


def apply_edit(item: MaterialItem, field: str, value: Any, *, now: datetime) -> MaterialItem:
    """Validate one user edit and return the updated item. ``item`` is untouched."""
    if field in NUMERIC_FIELDS:
        parsed = parse_amount(value, field=field)
        updated = recompute(item.model_copy(update={field: parsed}), field)  # type: ignore[arg-type]
    elif field in ("markup", "markup_percent"):
        fraction = parse_markup_percent(value)
        updated = recompute(item.model_copy(update={"markup": fraction}), "markup")
    elif field == "status":
        try:
            status = ItemStatus(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown status {value!r}", field=field) from exc
        updated = item.model_copy(update={"status": status})
    elif field == "taxable":
        if not isinstance(value, bool):
            raise ValidationError("taxable must be true or false", field=field)
        updated = item.model_copy(update={"taxable": value})
    elif field == "order_index":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError("order_index must be a non-negative integer", field=field)
        updated = item.model_copy(update={"order_index": value})
    elif field in TEXT_FIELDS:
        text = None if value is None else str(value).strip()
        if field in ("name", "category") and not text:
            raise ValidationError(f"{field} cannot be blank", field=field)
        updated = item.model_copy(update={field: text or None})
    else:
        raise ValidationError(f"Field {field!r} cannot be edited", field=field)

    return updated.model_copy(update={"updated_at": now})


class ItemLedger:
    """Field edits on line items of a working version."""

    def __init__(self, store: MaterialRepository, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def get_item(self, item_id: str) -> MaterialItem:
        item = self._store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def edit_item_field(self, item_id: str, field: str, value: Any) -> MaterialItem:
        item = self.get_item(item_id)
        self.ensure_editable(item.sheet_id)
        updated = apply_edit(item, field, value, now=self._clock())
        self._store.save_item(updated)
        logger.debug(
            "Edited item field",
            extra={"item_id": item_id, "field": field, "sheet_id": item.sheet_id},
        )
        return updated

    def set_quantity_or_cost(self, item_id: str, field: str, value: Any) -> MaterialItem:
        """Set quantity or unit cost and rebuild the derived fields.

        A cost change on a priced item re-derives the markup; when that markup
        falls outside the storable range the edit raises ``RangeError`` and
        nothing is written.
        """
        if field not in ("quantity", "unit_cost"):
            raise ValidationError(f"Expected quantity or unit_cost, got {field!r}", field=field)
        return self.edit_item_field(item_id, field, value)

    def set_markup(self, item_id: str, percent: Any) -> MaterialItem:
        return self.edit_item_field(item_id, "markup", percent)

    def set_price(self, item_id: str, value: Any) -> MaterialItem:
        """Set the unit price and derive the markup from the unit cost.

        Raises ``RangeError`` without writing when the derived markup cannot be
        stored. With no cost, or a zero cost, the markup is left as it was.
        """
        return self.edit_item_field(item_id, "unit_price", value)

    def add_item(
        self,
        sheet_id: str,
        name: str,
        *,
        category: str | None = None,
        quantity: Any = 1,
        unit_cost: Any = None,
        markup_percent: Any = None,
        unit_price: Any = None,
        **fields: Any,
    ) -> MaterialItem:
        """Append an item to a sheet, after every item of its category.

        When both a markup and a unit price are given the price wins and the
        markup is derived from it.
        """
        unexpected = sorted(set(fields) - EXTRA_ITEM_FIELDS)
        if unexpected:
            raise ValidationError(f"Cannot set {', '.join(unexpected)} on a new item", field=unexpected[0])
        self.ensure_editable(sheet_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("name cannot be blank", field="name")
        category = (category or "").strip() or DEFAULT_CATEGORY
        draft = MaterialItem(
            id="",
            sheet_id=sheet_id,
            name=name,
            category=category,
            quantity=parse_amount(quantity, field="quantity"),
            unit_cost=parse_amount(unit_cost, field="unit_cost"),
            markup=parse_markup_percent(markup_percent),
            unit_price=parse_amount(unit_price, field="unit_price"),
            **fields,
        )
        if draft.unit_price is not None:
            draft = recompute(draft, "unit_price")
        elif draft.markup is not None:
            draft = recompute(draft, "markup")
        else:
            draft = recompute(draft, "quantity")

        siblings = [i for i in self._store.list_items(sheet_id) if i.category == category]
        order_index = max((i.order_index for i in siblings), default=-1) + 1
        values = draft.model_dump(exclude={"id", "sheet_id", "name", "created_at", "updated_at", "order_index"})
        item = self._store.create_item(sheet_id=sheet_id, name=name, order_index=order_index, **values)
        logger.debug("Added item", extra={"sheet_id": sheet_id, "item_id": item.id})
        return item

    def delete_item(self, item_id: str) -> None:
        item = self.get_item(item_id)
        self.ensure_editable(item.sheet_id)
        self._store.delete_item(item_id)

    def apply_category_markup(self, sheet_id: str, category: str, percent: Any) -> list[MaterialItem]:
        """Record a sheet-level markup for ``category`` and push it onto its items."""
        self.ensure_editable(sheet_id)
        fraction = parse_markup_percent(percent)
        if fraction is None:
            raise ValidationError("markup is required", field="markup")
        now = self._clock()
        updated = []
        with self._store.transaction():
            self._store.upsert_category_markup(sheet_id=sheet_id, category=category, markup=fraction)
            for item in self._store.list_items(sheet_id):
                if item.category != category:
                    continue
                item = recompute(item.model_copy(update={"markup": fraction}), "markup")
                updated.append(self._store.save_item(item.model_copy(update={"updated_at": now})))
        logger.info(
            "Applied category markup",
            extra={"sheet_id": sheet_id, "category": category, "items_count": len(updated)},
        )
        return updated

    def ensure_editable(self, sheet_id: str) -> None:
        sheet = self._store.get_sheet(sheet_id)
        if sheet is None:
            raise NotFoundError(f"Sheet {sheet_id} not found")
        require_working_version(self._store, sheet.workbook_id)


__all__ = [
    "ItemLedger",
    "recompute",
    "apply_edit",
    "parse_amount",
    "parse_markup_percent",
    "check_markup_fraction",
    "MAX_MARKUP_FRACTION",
]
