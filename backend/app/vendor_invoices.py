"""
Vendor invoice save/read pipeline.

create/update: breakdown -> invoice row -> type-specific children -> advance
allocation -> decorated response. Updates first plan the cleanup implied by a
type or PO change. Child writes are fatal on failure; advance bookkeeping and
cleanup are best-effort and only logged.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException

from .advance_payments import (
    AllocationResult,
    derive_deduction_amount,
    mark_advance_payments_as_adjusted,
    unmark_advance_payments,
)
from .coerce import to_float, to_number_or_null
from .config import settings
from .financial_breakdown import build_financial_breakdown, decorate_vendor_invoice_record, has_financial_fields
from .invoice_children import (
    ADJUSTED_ADVANCE_PAYMENT_COST_CODES,
    ADVANCE_PAYMENT_COST_CODES,
    ITEM_FAMILIES,
    fetch_children,
    persist_adjusted_advance_payment_cost_codes,
    persist_advance_payment_cost_codes,
    persist_co_invoice_items,
    persist_direct_line_items,
    persist_po_invoice_items,
)
from .invoice_items import sanitize_attachments
from .invoice_transitions import clear_deactivated_families, plan_transition, release_old_purchase_order
from .logs import json_log
from .outcomes import Advisory, log_advisories
from .store import Store, StoreError
from .validation import (
    AGAINST_ADVANCE_PAYMENT,
    AGAINST_CO,
    AGAINST_PO,
    ENTER_DIRECT_INVOICE,
    derive_due_date,
    normalize_credit_days,
    normalize_invoice_type,
    normalize_status,
    normalize_utc,
)

INVOICES = "vendor_invoices"

UPDATABLE_FIELDS = (
    "corporation_uuid",
    "project_uuid",
    "vendor_uuid",
    "purchase_order_uuid",
    "change_order_uuid",
    "invoice_type",
    "number",
    "bill_date",
    "due_date",
    "credit_days",
    "amount",
    "holdback",
    "status",
    "is_active",
    "adjusted_advance_payment_uuid",
)
_BLANK_TO_NULL = (
    "project_uuid",
    "vendor_uuid",
    "purchase_order_uuid",
    "change_order_uuid",
    "adjusted_advance_payment_uuid",
    "number",
)

# (invoice column, lookup table, {lookup column: response field})
_ENRICHMENT = (
    ("project_uuid", "projects", {"project_name": "project_name", "project_id": "project_id"}),
    ("vendor_uuid", "vendors", {"vendor_name": "vendor_name"}),
    ("purchase_order_uuid", "purchase_order_forms", {"po_number": "po_number"}),
    ("change_order_uuid", "change_orders", {"co_number": "co_number"}),
)


def _require_body(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict) or not payload:
        raise HTTPException(status_code=400, detail="Request body is required")
    return payload


def _removed_cost_codes(v: Any) -> list:
    return v if isinstance(v, list) else []


def _enrich_records(store: Store, records: List[Dict[str, Any]]) -> List[Advisory]:
    """Attach project / vendor / PO / CO display fields; missing lookups are left off."""
    advisories: List[Advisory] = []
    for column, table, fields in _ENRICHMENT:
        ids = sorted({str(r[column]) for r in records if r.get(column)})
        if not ids:
            continue
        try:
            rows = store.select(table, {"uuid": ids}, columns=["uuid", *fields.keys()])
        except StoreError as exc:
            advisories.append(Advisory("enrichment.fetch_failed", str(exc), {"table": table}))
            continue
        by_id = {str(r["uuid"]): r for r in rows}
        for rec in records:
            ref = by_id.get(str(rec.get(column) or ""))
            if ref is None:
                continue
            for src, dst in fields.items():
                rec[dst] = ref.get(src) or None
    return advisories


def _adjusted_amounts_by_payment(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    out: Dict[str, Dict[str, float]] = {}
    for r in rows:
        ap_uuid = r.get("advance_payment_uuid")
        bucket = out.setdefault(ap_uuid, {})
        amount = to_float(r.get("adjusted_amount"))
        if r.get("cost_code_uuid") and amount > 0:
            bucket[r["cost_code_uuid"]] = amount
    return out


def _hydrate(store: Store, record: Dict[str, Any], *, with_adjusted_amounts: bool = False) -> Tuple[Dict[str, Any], List[Advisory]]:
    advisories: List[Advisory] = _enrich_records(store, [record])

    decorated = decorate_vendor_invoice_record(dict(record))
    invoice_type = decorated.get("invoice_type")
    for family in ITEM_FAMILIES:
        rows: List[Dict[str, Any]] = []
        if invoice_type in family.owner_types:
            rows, a = fetch_children(store, family, decorated["uuid"])
            if a is not None:
                advisories.append(a)
        decorated[family.key] = rows

    if with_adjusted_amounts:
        grouped: Dict[str, Dict[str, float]] = {}
        if invoice_type in ADJUSTED_ADVANCE_PAYMENT_COST_CODES.owner_types and decorated.get("adjusted_advance_payment_uuid"):
            rows, a = fetch_children(store, ADJUSTED_ADVANCE_PAYMENT_COST_CODES, decorated["uuid"])
            if a is not None:
                advisories.append(a)
            grouped = _adjusted_amounts_by_payment(rows)
        decorated["adjusted_advance_payment_amounts"] = grouped
    return decorated, advisories


def _persist_adjusted(store: Store, record: Dict[str, Any], payload: Dict[str, Any]) -> Optional[Advisory]:
    amounts_by_payment = payload.get("adjusted_advance_payment_amounts")
    ap_uuid = payload.get("adjusted_advance_payment_uuid")
    if amounts_by_payment is None or not ap_uuid:
        return None
    amounts = amounts_by_payment.get(ap_uuid) if isinstance(amounts_by_payment, dict) else None
    if not isinstance(amounts, dict) or not amounts:
        return None

    advisory = None
    try:
        source_rows = store.select(
            ADVANCE_PAYMENT_COST_CODES.table,
            {"vendor_invoice_uuid": ap_uuid, "is_active": True},
        )
    except StoreError as exc:
        # Rows are still written, just without cost-code labels.
        source_rows = []
        advisory = Advisory("advance_payments.cost_codes_fetch_failed", str(exc), {"advance_payment_uuid": ap_uuid})

    is_po = record.get("invoice_type") == AGAINST_PO
    persist_adjusted_advance_payment_cost_codes(
        store,
        vendor_invoice_uuid=record["uuid"],
        advance_payment_uuid=ap_uuid,
        corporation_uuid=record.get("corporation_uuid"),
        project_uuid=record.get("project_uuid"),
        purchase_order_uuid=record.get("purchase_order_uuid") if is_po else None,
        change_order_uuid=None if is_po else record.get("change_order_uuid"),
        adjusted_amounts=amounts,
        advance_payment_cost_codes=source_rows,
    )
    return advisory


def _sync_children(store: Store, record: Dict[str, Any], payload: Dict[str, Any], *, is_update: bool) -> List[Advisory]:
    """
    Rewrite the child family owned by the invoice's type. On create a family is
    written when its key carries a list; on update whenever the key is present.
    """
    invoice_type = record.get("invoice_type")
    common = {
        "vendor_invoice_uuid": record["uuid"],
        "corporation_uuid": record.get("corporation_uuid"),
        "project_uuid": record.get("project_uuid"),
    }

    def supplied(key: str) -> bool:
        return key in payload if is_update else isinstance(payload.get(key), list)

    def items(key: str) -> list:
        v = payload.get(key)
        return v if isinstance(v, list) else []

    if invoice_type == ENTER_DIRECT_INVOICE and supplied("line_items"):
        persist_direct_line_items(store, **common, items=items("line_items"))
    elif invoice_type == AGAINST_ADVANCE_PAYMENT and supplied("advance_payment_cost_codes"):
        persist_advance_payment_cost_codes(
            store,
            **common,
            vendor_uuid=record.get("vendor_uuid"),
            purchase_order_uuid=record.get("purchase_order_uuid"),
            change_order_uuid=record.get("change_order_uuid"),
            items=items("advance_payment_cost_codes"),
        )
    elif invoice_type == AGAINST_PO and supplied("po_invoice_items"):
        persist_po_invoice_items(
            store, **common, purchase_order_uuid=record.get("purchase_order_uuid"), items=items("po_invoice_items")
        )
    elif invoice_type == AGAINST_CO and supplied("co_invoice_items"):
        persist_co_invoice_items(
            store, **common, change_order_uuid=record.get("change_order_uuid"), items=items("co_invoice_items")
        )

    advisories: List[Advisory] = []
    if invoice_type in (AGAINST_PO, AGAINST_CO):
        a = _persist_adjusted(store, record, payload)
        if a is not None:
            advisories.append(a)
    return advisories


def _allocate(
    store: Store,
    record: Dict[str, Any],
    payload: Dict[str, Any],
    financial_breakdown: Optional[Dict[str, Any]],
) -> Optional[AllocationResult]:
    invoice_type = record.get("invoice_type")
    if invoice_type == AGAINST_PO and record.get("purchase_order_uuid"):
        ref = {"purchase_order_uuid": record["purchase_order_uuid"]}
    elif invoice_type == AGAINST_CO and record.get("change_order_uuid"):
        ref = {"change_order_uuid": record["change_order_uuid"]}
    else:
        return None
    deduction = derive_deduction_amount(payload, financial_breakdown, record.get("amount"))
    if deduction <= 0:
        return None
    result = mark_advance_payments_as_adjusted(store, invoice_uuid=record["uuid"], deduction_amount=deduction, **ref)
    if result.marked:
        json_log(
            "info",
            "vendor_invoice.advance_payments.marked",
            invoice_uuid=record["uuid"],
            advance_uuids=result.marked,
            deduction_amount=deduction,
            uncovered=max(0.0, result.remaining),
        )
    return result


def create_invoice(store: Store, payload: Any) -> Dict[str, Any]:
    body = _require_body(payload)
    for key in ("corporation_uuid", "invoice_type", "bill_date", "amount"):
        if not body.get(key):
            raise HTTPException(status_code=400, detail=f"{key} is required")

    invoice_type = normalize_invoice_type(body.get("invoice_type"))
    if not invoice_type:
        raise HTTPException(status_code=400, detail="Invalid invoice_type")
    status = "Draft"
    if body.get("status"):
        status = normalize_status(body.get("status"))
        if not status:
            raise HTTPException(status_code=400, detail="Invalid status")

    credit_days = normalize_credit_days(body.get("credit_days"))
    holdback = body.get("holdback")
    row: Dict[str, Any] = {
        "corporation_uuid": body["corporation_uuid"],
        "project_uuid": body.get("project_uuid") or None,
        "vendor_uuid": body.get("vendor_uuid") or None,
        "purchase_order_uuid": body.get("purchase_order_uuid") or None,
        "change_order_uuid": body.get("change_order_uuid") or None,
        "invoice_type": invoice_type,
        "number": body.get("number") or None,
        "bill_date": normalize_utc(body["bill_date"]),
        "due_date": normalize_utc(body.get("due_date"), end_of_day=True) or derive_due_date(body["bill_date"], credit_days),
        "credit_days": credit_days,
        "amount": to_float(body.get("amount")),
        "holdback": to_number_or_null(holdback) if holdback else None,
        "status": status,
        "adjusted_advance_payment_uuid": body.get("adjusted_advance_payment_uuid") or None,
        "is_active": True,
        "financial_breakdown": build_financial_breakdown(body),
        "attachments": sanitize_attachments(body.get("attachments")),
    }
    if "removed_advance_payment_cost_codes" in body:
        row["removed_advance_payment_cost_codes"] = _removed_cost_codes(body["removed_advance_payment_cost_codes"])

    created = store.insert(INVOICES, [row])[0]

    advisories = _sync_children(store, created, body, is_update=False)
    allocation = _allocate(store, created, body, row["financial_breakdown"])
    if allocation is not None:
        advisories.append(allocation.advisory)

    decorated, read_advisories = _hydrate(store, created)
    log_advisories(advisories + read_advisories, invoice_uuid=created["uuid"], op="create")
    return {"data": decorated}


def _update_patch(changes: Dict[str, Any], breakdown_source: Dict[str, Any], *, rebuild: bool = False) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    for f in UPDATABLE_FIELDS:
        if f not in changes:
            continue
        v = changes[f]
        if f == "bill_date":
            patch[f] = normalize_utc(v)
        elif f == "due_date":
            patch[f] = normalize_utc(v, end_of_day=True)
        elif f == "invoice_type":
            n = normalize_invoice_type(v)
            if n:
                patch[f] = n
        elif f == "credit_days":
            patch[f] = normalize_credit_days(v)
        elif f == "amount":
            patch[f] = to_float(v)
        elif f == "holdback":
            patch[f] = to_number_or_null(v) if v else None
        elif f == "status":
            n = normalize_status(v)
            if n:
                patch[f] = n
        else:
            patch[f] = v

    if rebuild or "financial_breakdown" in changes or has_financial_fields(changes):
        patch["financial_breakdown"] = build_financial_breakdown(breakdown_source)
    for key in _BLANK_TO_NULL:
        if patch.get(key) == "":
            patch[key] = None
    if "attachments" in changes:
        patch["attachments"] = sanitize_attachments(changes["attachments"])
    if "removed_advance_payment_cost_codes" in changes:
        patch["removed_advance_payment_cost_codes"] = _removed_cost_codes(changes["removed_advance_payment_cost_codes"])
    return patch


def update_invoice(store: Store, payload: Any) -> Dict[str, Any]:
    body = _require_body(payload)
    invoice_uuid = body.get("uuid")
    if not invoice_uuid:
        raise HTTPException(status_code=400, detail="uuid is required")
    changes = {k: v for k, v in body.items() if k != "uuid"}

    current = store.select_one(
        INVOICES,
        {"uuid": invoice_uuid},
        columns=["uuid", "invoice_type", "purchase_order_uuid", "amount", "financial_breakdown"],
    )
    if current is None:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")

    plan = plan_transition(current, changes)
    # The advance-payment rule keys off the type the invoice ends up with.
    breakdown_source = {**changes, "invoice_type": plan.new_type}
    if "amount" not in changes:
        breakdown_source["amount"] = current.get("amount")
    # A new amount or type alone re-derives an advance's totals from the stored breakdown.
    rebuild = False
    if (
        plan.new_type == AGAINST_ADVANCE_PAYMENT
        and ("amount" in changes or "invoice_type" in changes)
        and "financial_breakdown" not in changes
        and not has_financial_fields(changes)
    ):
        stored = current.get("financial_breakdown")
        breakdown_source["financial_breakdown"] = stored if isinstance(stored, dict) else {}
        rebuild = True
    patch = _update_patch(changes, breakdown_source, rebuild=rebuild)

    advisories: List[Optional[Advisory]] = [release_old_purchase_order(store, invoice_uuid, plan)]

    rows = store.update(INVOICES, {"uuid": invoice_uuid}, patch)
    if not rows:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")
    updated = rows[0]

    advisories.extend(clear_deactivated_families(store, invoice_uuid, plan))
    advisories.extend(_sync_children(store, updated, changes, is_update=True))
    allocation = _allocate(store, updated, changes, patch.get("financial_breakdown"))
    if allocation is not None:
        advisories.append(allocation.advisory)

    decorated, read_advisories = _hydrate(store, updated)
    log_advisories(advisories + read_advisories, invoice_uuid=invoice_uuid, op="update")
    return {"data": decorated}


def get_invoice(store: Store, invoice_uuid: Optional[str]) -> Dict[str, Any]:
    if not invoice_uuid:
        raise HTTPException(status_code=400, detail="Invoice UUID is required")
    record = store.select_one(INVOICES, {"uuid": invoice_uuid})
    if record is None:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")
    decorated, advisories = _hydrate(store, record, with_adjusted_amounts=True)
    log_advisories(advisories, invoice_uuid=invoice_uuid, op="read")
    return {"data": decorated}


def _positive_int(raw: Any, default: int) -> int:
    n = to_number_or_null(raw)
    if n is None or n < 1:
        return default
    return int(n)


def list_invoices(store: Store, corporation_uuid: Optional[str], page: Any = None, page_size: Any = None) -> Dict[str, Any]:
    if not corporation_uuid:
        raise HTTPException(status_code=400, detail="corporation_uuid is required")
    page_n = _positive_int(page, 1)
    size = min(_positive_int(page_size, settings.invoice_page_size), settings.invoice_max_page_size)

    where = {"corporation_uuid": corporation_uuid, "is_active": True}
    total = store.count(INVOICES, where)
    rows = store.select(INVOICES, where, order_by=["-created_at"], limit=size, offset=(page_n - 1) * size)

    log_advisories(_enrich_records(store, rows), corporation_uuid=corporation_uuid, op="list")
    total_pages = math.ceil(total / size) if total else 0
    return {
        "data": [decorate_vendor_invoice_record(dict(r)) for r in rows],
        "pagination": {
            "page": page_n,
            "page_size": size,
            "total_records": total,
            "total_pages": total_pages,
            "has_more": page_n < total_pages,
        },
    }


def delete_invoice(store: Store, invoice_uuid: Optional[str]) -> Dict[str, Any]:
    """Soft delete. Advances a PO invoice consumed are released first."""
    if not invoice_uuid:
        raise HTTPException(status_code=400, detail="uuid is required")
    existing = store.select_one(INVOICES, {"uuid": invoice_uuid}, columns=["uuid", "invoice_type"])
    if existing is None:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")

    if existing.get("invoice_type") == AGAINST_PO:
        log_advisories([unmark_advance_payments(store, invoice_uuid=invoice_uuid)], invoice_uuid=invoice_uuid, op="delete")

    rows = store.update(INVOICES, {"uuid": invoice_uuid}, {"is_active": False})
    if not rows:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")
    return {"data": decorate_vendor_invoice_record(dict(rows[0]))}


def list_order_advance_payments(
    store: Store,
    *,
    purchase_order_uuid: Optional[str] = None,
    change_order_uuid: Optional[str] = None,
) -> Dict[str, Any]:
    """Every active advance on a PO or CO (adjusted or not), newest first, with its cost codes."""
    if not purchase_order_uuid and not change_order_uuid:
        raise HTTPException(status_code=400, detail="order uuid is required")
    where: Dict[str, Any] = {"invoice_type": AGAINST_ADVANCE_PAYMENT, "is_active": True}
    if purchase_order_uuid:
        where["purchase_order_uuid"] = purchase_order_uuid
    else:
        where["change_order_uuid"] = change_order_uuid
    invoices = store.select(
        INVOICES,
        where,
        columns=[
            "uuid",
            "number",
            "bill_date",
            "amount",
            "is_active",
            "financial_breakdown",
            "adjusted_against_vendor_invoice_uuid",
        ],
        order_by=["-bill_date"],
    )
    advisories = []
    out = []
    for inv in invoices:
        cost_codes, a = fetch_children(store, ADVANCE_PAYMENT_COST_CODES, inv["uuid"])
        advisories.append(a)
        out.append({**inv, "amount": to_number_or_null(inv.get("amount")), "cost_codes": cost_codes})
    log_advisories(advisories, purchase_order_uuid=purchase_order_uuid, change_order_uuid=change_order_uuid, op="advance_payments")
    return {"data": out}
