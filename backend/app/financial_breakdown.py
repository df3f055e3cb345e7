from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .coerce import to_boolean, to_number_or_null
from .validation import AGAINST_ADVANCE_PAYMENT, normalize_invoice_type

CHARGE_TYPES = ("freight", "packing", "custom_duties", "other")
SALES_TAX_SLOTS = ("sales_tax_1", "sales_tax_2")

# Flat keys that, when present on an update body, force a breakdown rebuild.
FINANCIAL_FIELDS = (
    "item_total",
    "charges_total",
    "tax_total",
    *[f"{t}_charges_{f}" for t in CHARGE_TYPES for f in ("percentage", "amount", "taxable")],
    *[f"{s}_{f}" for s in SALES_TAX_SLOTS for f in ("percentage", "amount")],
)


def empty_totals() -> Dict[str, Any]:
    return {"item_total": None, "charges_total": None, "tax_total": None, "total_invoice_amount": None}


@dataclass(frozen=True)
class NestedBreakdown:
    """Edit flows re-post the stored nested object."""

    breakdown: Dict[str, Any]
    invoice_type: Optional[str]
    amount: Any


@dataclass(frozen=True)
class FlatFields:
    """Create flows post the form's flat `{type}_charges_*` / `sales_tax_N_*` fields."""

    payload: Dict[str, Any]


BreakdownSource = Union[NestedBreakdown, FlatFields]


def classify_breakdown_source(payload: Any) -> BreakdownSource:
    p = payload if isinstance(payload, dict) else {}
    fb = p.get("financial_breakdown")
    if isinstance(fb, dict):
        return NestedBreakdown(
            breakdown=fb,
            invoice_type=normalize_invoice_type(p.get("invoice_type") or p.get("invoiceType")),
            amount=p.get("amount"),
        )
    return FlatFields(payload=p)


def has_financial_fields(payload: Dict[str, Any]) -> bool:
    return any(k in (payload or {}) for k in FINANCIAL_FIELDS)


def _from_nested(src: NestedBreakdown) -> Dict[str, Any]:
    fb = copy.deepcopy(src.breakdown)
    if not isinstance(fb.get("totals"), dict):
        fb["totals"] = empty_totals()
    totals = fb["totals"]

    amount = to_number_or_null(src.amount) if src.amount is not None else None
    if src.invoice_type == AGAINST_ADVANCE_PAYMENT and src.amount is not None:
        # An advance is one undifferentiated sum: no charges, no taxes.
        if amount is not None:
            totals["total_invoice_amount"] = amount
            totals["item_total"] = amount
            totals["charges_total"] = 0
            totals["tax_total"] = 0
    elif totals.get("total_invoice_amount") in (None, 0) and src.amount is not None:
        totals["total_invoice_amount"] = amount
    return fb


def _pick(p: Dict[str, Any], *keys):
    for k in keys:
        v = p.get(k)
        if v is not None:
            return v
    return None


def _from_flat(src: FlatFields) -> Dict[str, Any]:
    p = src.payload
    charges = {}
    for t in CHARGE_TYPES:
        if t == "custom_duties":
            # Older clients drop the `_charges_` infix for custom duties.
            pct = _pick(p, "custom_duties_percentage", "custom_duties_charges_percentage")
            amt = _pick(p, "custom_duties_amount", "custom_duties_charges_amount")
            taxable = _pick(p, "custom_duties_taxable", "custom_duties_charges_taxable")
        else:
            pct = p.get(f"{t}_charges_percentage")
            amt = p.get(f"{t}_charges_amount")
            taxable = p.get(f"{t}_charges_taxable")
        charges[t] = {
            "percentage": to_number_or_null(pct),
            "amount": to_number_or_null(amt),
            "taxable": to_boolean(taxable),
        }

    sales_taxes = {}
    for slot in SALES_TAX_SLOTS:
        legacy = slot.replace("_tax_", "_tax")
        sales_taxes[slot] = {
            "percentage": to_number_or_null(_pick(p, f"{slot}_percentage", f"{legacy}_percentage")),
            "amount": to_number_or_null(_pick(p, f"{slot}_amount", f"{legacy}_amount")),
        }

    totals = empty_totals()
    totals["item_total"] = to_number_or_null(p.get("item_total"))
    totals["charges_total"] = to_number_or_null(p.get("charges_total"))
    totals["tax_total"] = to_number_or_null(p.get("tax_total"))
    totals["total_invoice_amount"] = to_number_or_null(_pick(p, "total_invoice_amount", "amount"))

    return {"charges": charges, "sales_taxes": sales_taxes, "totals": totals}


def build_financial_breakdown(payload: Any) -> Dict[str, Any]:
    """
    Build the stored `financial_breakdown` from either a pre-built nested object
    or discrete form fields. The caller's object is never mutated.
    """
    src = classify_breakdown_source(payload)
    if isinstance(src, NestedBreakdown):
        return _from_nested(src)
    return _from_flat(src)


def _obj(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


def decorate_vendor_invoice_record(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Project the nested breakdown onto flat read fields for the invoice form.
    Mutates and returns `record`. The flattened totals are cached hints; the
    client recomputes the authoritative figures from line items.
    """
    if record is None:
        return record

    if not isinstance(record.get("financial_breakdown"), dict):
        record["financial_breakdown"] = {}
    breakdown = record["financial_breakdown"]
    charges = _obj(breakdown.get("charges"))
    sales_taxes = _obj(breakdown.get("sales_taxes"))
    totals = _obj(breakdown.get("totals"))

    slots = {
        "freight": _obj(charges.get("freight")),
        "packing": _obj(charges.get("packing")),
        "custom_duties": _obj(charges.get("custom_duties") or charges.get("custom")),
        "other": _obj(charges.get("other")),
    }
    for t, slot in slots.items():
        record[f"{t}_charges_percentage"] = to_number_or_null(slot.get("percentage"))
        record[f"{t}_charges_amount"] = to_number_or_null(slot.get("amount"))
        record[f"{t}_charges_taxable"] = to_boolean(slot.get("taxable"))

    taxes = {
        "sales_tax_1": _obj(sales_taxes.get("sales_tax_1") or sales_taxes.get("salesTax1")),
        "sales_tax_2": _obj(sales_taxes.get("sales_tax_2") or sales_taxes.get("salesTax2")),
    }
    for slot, tax in taxes.items():
        record[f"{slot}_percentage"] = to_number_or_null(tax.get("percentage"))
        record[f"{slot}_amount"] = to_number_or_null(tax.get("amount"))

    record["item_total"] = to_number_or_null(totals.get("item_total"))
    record["charges_total"] = to_number_or_null(totals.get("charges_total"))
    record["tax_total"] = to_number_or_null(totals.get("tax_total"))
    total = totals.get("total_invoice_amount")
    record["total_invoice_amount"] = to_number_or_null(total if total is not None else totals.get("amount"))

    if not isinstance(record.get("attachments"), list):
        record["attachments"] = []
    record["amount"] = to_number_or_null(record.get("amount"))
    record["holdback"] = to_number_or_null(record.get("holdback"))
    return record
