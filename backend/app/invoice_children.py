from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .coerce import to_float, to_number_or_null
from .invoice_items import (
    sanitize_advance_payment_cost_code,
    sanitize_co_invoice_item,
    sanitize_direct_line_item,
    sanitize_po_invoice_item,
)
from .outcomes import Advisory
from .store import Store, StoreError
from .validation import AGAINST_ADVANCE_PAYMENT, AGAINST_CO, AGAINST_PO, ENTER_DIRECT_INVOICE


@dataclass(frozen=True)
class ChildFamily:
    key: str  # request / response key
    table: str
    owner_types: tuple
    order_by: str


DIRECT_LINE_ITEMS = ChildFamily("line_items", "direct_vendor_invoice_line_items", (ENTER_DIRECT_INVOICE,), "order_index")
ADVANCE_PAYMENT_COST_CODES = ChildFamily(
    "advance_payment_cost_codes", "advance_payment_cost_codes", (AGAINST_ADVANCE_PAYMENT,), "created_at"
)
PO_INVOICE_ITEMS = ChildFamily("po_invoice_items", "purchase_order_invoice_items_list", (AGAINST_PO,), "order_index")
CO_INVOICE_ITEMS = ChildFamily("co_invoice_items", "change_order_invoice_items_list", (AGAINST_CO,), "order_index")
ADJUSTED_ADVANCE_PAYMENT_COST_CODES = ChildFamily(
    "adjusted_advance_payment_cost_codes",
    "adjusted_advance_payment_cost_codes",
    (AGAINST_PO, AGAINST_CO),
    "created_at",
)

# Families returned with an invoice, in response order.
ITEM_FAMILIES = (DIRECT_LINE_ITEMS, ADVANCE_PAYMENT_COST_CODES, PO_INVOICE_ITEMS, CO_INVOICE_ITEMS)


def _replace_children(store: Store, table: str, vendor_invoice_uuid: str, rows: List[Dict[str, Any]]) -> None:
    # Delete-then-insert; either failure propagates and aborts the save.
    store.delete(table, {"vendor_invoice_uuid": vendor_invoice_uuid})
    if rows:
        store.insert(table, rows)


def persist_direct_line_items(
    store: Store,
    *,
    vendor_invoice_uuid: Optional[str],
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    items: Any,
) -> None:
    if not vendor_invoice_uuid:
        return
    rows = []
    if isinstance(items, list):
        rows = [
            {
                **sanitize_direct_line_item(item, i),
                "corporation_uuid": corporation_uuid,
                "project_uuid": project_uuid,
                "vendor_invoice_uuid": vendor_invoice_uuid,
            }
            for i, item in enumerate(items)
        ]
    _replace_children(store, DIRECT_LINE_ITEMS.table, vendor_invoice_uuid, rows)


def persist_po_invoice_items(
    store: Store,
    *,
    vendor_invoice_uuid: Optional[str],
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    purchase_order_uuid: Optional[str],
    items: Any,
) -> None:
    if not vendor_invoice_uuid:
        return
    rows = []
    if isinstance(items, list):
        rows = [
            {
                **sanitize_po_invoice_item(item, i),
                "corporation_uuid": corporation_uuid,
                "project_uuid": project_uuid,
                "purchase_order_uuid": purchase_order_uuid,
                "vendor_invoice_uuid": vendor_invoice_uuid,
            }
            for i, item in enumerate(items)
        ]
    _replace_children(store, PO_INVOICE_ITEMS.table, vendor_invoice_uuid, rows)


def persist_co_invoice_items(
    store: Store,
    *,
    vendor_invoice_uuid: Optional[str],
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    change_order_uuid: Optional[str],
    items: Any,
) -> None:
    if not vendor_invoice_uuid:
        return
    rows = []
    if isinstance(items, list):
        rows = [
            {
                **sanitize_co_invoice_item(item, i),
                "corporation_uuid": corporation_uuid,
                "project_uuid": project_uuid,
                "change_order_uuid": change_order_uuid,
                "vendor_invoice_uuid": vendor_invoice_uuid,
            }
            for i, item in enumerate(items)
        ]
    _replace_children(store, CO_INVOICE_ITEMS.table, vendor_invoice_uuid, rows)


def persist_advance_payment_cost_codes(
    store: Store,
    *,
    vendor_invoice_uuid: Optional[str],
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    vendor_uuid: Optional[str],
    purchase_order_uuid: Optional[str],
    change_order_uuid: Optional[str],
    items: Any,
) -> None:
    if not vendor_invoice_uuid:
        return
    rows = []
    if isinstance(items, list):
        # Rows without a cost code carry no allocation.
        rows = [
            {
                **sanitize_advance_payment_cost_code(item, i),
                "corporation_uuid": corporation_uuid,
                "project_uuid": project_uuid,
                "vendor_uuid": vendor_uuid,
                "purchase_order_uuid": purchase_order_uuid,
                "change_order_uuid": change_order_uuid,
                "vendor_invoice_uuid": vendor_invoice_uuid,
            }
            for i, item in enumerate(items)
            if isinstance(item, dict) and item.get("cost_code_uuid")
        ]
    _replace_children(store, ADVANCE_PAYMENT_COST_CODES.table, vendor_invoice_uuid, rows)


def _cost_code_label(source: Dict[str, Any]) -> Optional[str]:
    if source.get("cost_code_label"):
        return source["cost_code_label"]
    number, name = source.get("cost_code_number"), source.get("cost_code_name")
    if number and name:
        return f"{number} {name}".strip()
    return None


def build_adjusted_cost_code_rows(
    *,
    vendor_invoice_uuid: str,
    advance_payment_uuid: str,
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    purchase_order_uuid: Optional[str],
    change_order_uuid: Optional[str],
    adjusted_amounts: Dict[str, Any],
    advance_payment_cost_codes: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    One row per cost code drawn from the advance payment. The key may be either
    the advance-payment cost-code row's own uuid or its cost_code_uuid; an
    unmatched key still yields an amount-only row.
    """
    rows = []
    for key, raw_amount in (adjusted_amounts or {}).items():
        amount = to_number_or_null(raw_amount)
        if not key or amount is None or amount <= 0:
            continue
        source = next(
            (cc for cc in advance_payment_cost_codes if cc.get("uuid") == key or cc.get("cost_code_uuid") == key),
            None,
        )
        row = {
            "vendor_invoice_uuid": vendor_invoice_uuid,
            "advance_payment_uuid": advance_payment_uuid,
            "corporation_uuid": corporation_uuid,
            "project_uuid": project_uuid,
            "purchase_order_uuid": purchase_order_uuid,
            "change_order_uuid": change_order_uuid,
            "cost_code_uuid": key,
            "cost_code_label": None,
            "cost_code_number": None,
            "cost_code_name": None,
            "adjusted_amount": to_float(amount),
            "is_active": True,
        }
        if source is not None:
            row["cost_code_uuid"] = source.get("cost_code_uuid") or key
            row["cost_code_label"] = _cost_code_label(source)
            row["cost_code_number"] = source.get("cost_code_number") or None
            row["cost_code_name"] = source.get("cost_code_name") or None
        rows.append(row)
    return rows


def persist_adjusted_advance_payment_cost_codes(
    store: Store,
    *,
    vendor_invoice_uuid: Optional[str],
    advance_payment_uuid: Optional[str],
    corporation_uuid: Optional[str],
    project_uuid: Optional[str],
    purchase_order_uuid: Optional[str],
    change_order_uuid: Optional[str],
    adjusted_amounts: Dict[str, Any],
    advance_payment_cost_codes: List[Dict[str, Any]],
) -> None:
    if not vendor_invoice_uuid or not advance_payment_uuid:
        return
    rows = build_adjusted_cost_code_rows(
        vendor_invoice_uuid=vendor_invoice_uuid,
        advance_payment_uuid=advance_payment_uuid,
        corporation_uuid=corporation_uuid,
        project_uuid=project_uuid,
        purchase_order_uuid=purchase_order_uuid,
        change_order_uuid=change_order_uuid,
        adjusted_amounts=adjusted_amounts,
        advance_payment_cost_codes=advance_payment_cost_codes,
    )
    _replace_children(store, ADJUSTED_ADVANCE_PAYMENT_COST_CODES.table, vendor_invoice_uuid, rows)


def clear_children(store: Store, family: ChildFamily, vendor_invoice_uuid: str) -> Optional[Advisory]:
    """Best-effort removal of a whole family (type switched away from its owner)."""
    try:
        store.delete(family.table, {"vendor_invoice_uuid": vendor_invoice_uuid})
    except StoreError as exc:
        return Advisory(
            "children.cleanup_failed",
            str(exc),
            {"table": family.table, "vendor_invoice_uuid": vendor_invoice_uuid},
        )
    return None


def fetch_children(store: Store, family: ChildFamily, vendor_invoice_uuid: str) -> tuple[List[Dict[str, Any]], Optional[Advisory]]:
    try:
        rows = store.select(
            family.table,
            {"vendor_invoice_uuid": vendor_invoice_uuid, "is_active": True},
            order_by=[family.order_by],
        )
    except StoreError as exc:
        return [], Advisory(
            "children.fetch_failed",
            str(exc),
            {"table": family.table, "vendor_invoice_uuid": vendor_invoice_uuid},
        )
    return rows, None
