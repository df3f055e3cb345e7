from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .coerce import to_float
from .outcomes import Advisory
from .store import Store, StoreError
from .validation import AGAINST_ADVANCE_PAYMENT

INVOICES = "vendor_invoices"


@dataclass
class AllocationResult:
    marked: List[str] = field(default_factory=list)
    # Deduction left uncovered (negative when the last advance over-covers it).
    remaining: float = 0.0
    advisory: Optional[Advisory] = None


def pick_advances_fifo(advances: Iterable[Dict[str, Any]], deduction_amount: float) -> Tuple[List[str], float]:
    """
    Walk advances oldest first and take whole invoices until the deduction is
    covered. An advance is never split: the last one taken may over-cover.
    """
    remaining = float(deduction_amount)
    picked: List[str] = []
    for adv in advances:
        if remaining <= 0:
            break
        picked.append(adv["uuid"])
        remaining -= to_float(adv.get("amount"))
    return picked, remaining


def mark_advance_payments_as_adjusted(
    store: Store,
    *,
    invoice_uuid: Optional[str],
    purchase_order_uuid: Optional[str] = None,
    change_order_uuid: Optional[str] = None,
    deduction_amount: float,
) -> AllocationResult:
    """
    Consume unadjusted advance-payment invoices of one PO or CO against
    `invoice_uuid`. Bookkeeping only: store failures come back as an advisory.
    """
    deduction_amount = to_float(deduction_amount)
    if not invoice_uuid or bool(purchase_order_uuid) == bool(change_order_uuid) or deduction_amount <= 0:
        return AllocationResult(remaining=max(0.0, deduction_amount))

    where: Dict[str, Any] = {
        "invoice_type": AGAINST_ADVANCE_PAYMENT,
        "adjusted_against_vendor_invoice_uuid": None,
    }
    if purchase_order_uuid:
        where["purchase_order_uuid"] = purchase_order_uuid
    else:
        where["change_order_uuid"] = change_order_uuid
    ctx = {
        "invoice_uuid": invoice_uuid,
        "purchase_order_uuid": purchase_order_uuid,
        "change_order_uuid": change_order_uuid,
        "deduction_amount": deduction_amount,
    }

    try:
        advances = store.select(INVOICES, where, columns=["uuid", "amount", "bill_date"], order_by=["bill_date"])
    except StoreError as exc:
        return AllocationResult(remaining=float(deduction_amount), advisory=Advisory("advance_payments.fetch_failed", str(exc), ctx))

    picked, remaining = pick_advances_fifo(advances, deduction_amount)
    if not picked:
        return AllocationResult(remaining=remaining)

    try:
        store.update(INVOICES, {"uuid": picked}, {"adjusted_against_vendor_invoice_uuid": invoice_uuid})
    except StoreError as exc:
        return AllocationResult(
            remaining=float(deduction_amount),
            advisory=Advisory("advance_payments.mark_failed", str(exc), {**ctx, "advance_uuids": picked}),
        )
    return AllocationResult(marked=picked, remaining=remaining)


def unmark_advance_payments(
    store: Store,
    *,
    invoice_uuid: str,
    purchase_order_uuid: Optional[str] = None,
) -> Optional[Advisory]:
    """Return advances consumed by `invoice_uuid` (optionally only those of one PO) to the pool."""
    where: Dict[str, Any] = {"adjusted_against_vendor_invoice_uuid": invoice_uuid}
    if purchase_order_uuid:
        where["purchase_order_uuid"] = purchase_order_uuid
    try:
        store.update(INVOICES, where, {"adjusted_against_vendor_invoice_uuid": None})
    except StoreError as exc:
        return Advisory(
            "advance_payments.unmark_failed",
            str(exc),
            {"invoice_uuid": invoice_uuid, "purchase_order_uuid": purchase_order_uuid},
        )
    return None


def derive_deduction_amount(payload: Dict[str, Any], financial_breakdown: Optional[Dict[str, Any]], final_amount: Any) -> float:
    """
    Advance drawn down by this invoice: the explicit `advance_payment_deduction`
    when sent, else the gap between items+charges+taxes and the payable amount.
    """
    explicit = payload.get("advance_payment_deduction")
    if explicit is not None:
        return to_float(explicit)
    if not isinstance(financial_breakdown, dict):
        return 0.0
    totals = financial_breakdown.get("totals")
    totals = totals if isinstance(totals, dict) else {}
    before = to_float(totals.get("item_total")) + to_float(totals.get("charges_total")) + to_float(totals.get("tax_total"))
    return max(0.0, before - to_float(final_amount))
