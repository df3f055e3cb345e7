from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .advance_payments import unmark_advance_payments
from .invoice_children import (
    ADJUSTED_ADVANCE_PAYMENT_COST_CODES,
    ITEM_FAMILIES,
    ChildFamily,
    clear_children,
)
from .outcomes import Advisory
from .store import Store
from .validation import AGAINST_PO, normalize_invoice_type


@dataclass
class TransitionPlan:
    current_type: Optional[str]
    new_type: Optional[str]
    current_purchase_order_uuid: Optional[str]
    new_purchase_order_uuid: Optional[str]
    # Advances this invoice consumed under the old PO go back to the pool.
    unmark_old_purchase_order: bool = False
    clear_families: List[ChildFamily] = field(default_factory=list)


def plan_transition(current: Dict[str, Any], changes: Dict[str, Any]) -> TransitionPlan:
    """
    Work out the cleanup an update implies, from the stored row and the
    incoming fields. Pure: nothing is written here.
    """
    current_type = current.get("invoice_type")
    current_po = current.get("purchase_order_uuid") or None

    new_type = normalize_invoice_type(changes.get("invoice_type")) or current_type
    if "purchase_order_uuid" in changes:
        new_po = changes.get("purchase_order_uuid") or None
    else:
        new_po = current_po

    plan = TransitionPlan(
        current_type=current_type,
        new_type=new_type,
        current_purchase_order_uuid=current_po,
        new_purchase_order_uuid=new_po,
        unmark_old_purchase_order=bool(current_type == AGAINST_PO and current_po and new_po != current_po),
    )

    for family in ITEM_FAMILIES:
        owned_before = current_type in family.owner_types
        owned_after = new_type in family.owner_types
        if owned_before and not owned_after:
            plan.clear_families.append(family)
        elif owned_after and not owned_before and family.key not in changes:
            # Switching in without a payload for this family: drop stale rows.
            plan.clear_families.append(family)

    adjusted = ADJUSTED_ADVANCE_PAYMENT_COST_CODES
    if new_type in adjusted.owner_types:
        if changes.get("adjusted_advance_payment_uuid") is None:
            plan.clear_families.append(adjusted)
    elif current_type in adjusted.owner_types:
        plan.clear_families.append(adjusted)
    return plan


def release_old_purchase_order(store: Store, invoice_uuid: str, plan: TransitionPlan) -> Optional[Advisory]:
    """Runs before the invoice row is rewritten, so a new allocation sees the freed advances."""
    if not plan.unmark_old_purchase_order:
        return None
    return unmark_advance_payments(
        store,
        invoice_uuid=invoice_uuid,
        purchase_order_uuid=plan.current_purchase_order_uuid,
    )


def clear_deactivated_families(store: Store, invoice_uuid: str, plan: TransitionPlan) -> List[Advisory]:
    advisories = []
    for family in plan.clear_families:
        a = clear_children(store, family, invoice_uuid)
        if a is not None:
            advisories.append(a)
    return advisories
