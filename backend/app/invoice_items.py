from typing import Any, Dict, List

from .coerce import to_number_or_null


def _as_dict(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _ref(v: Any):
    # Empty-string foreign keys are stored as NULL.
    if v is None or v == "":
        return None
    return v


def _first(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _order_index(item: Dict[str, Any], index: int) -> int:
    raw = item.get("order_index")
    n = to_number_or_null(raw) if raw is not None else None
    return int(n) if n is not None else int(index)


def sanitize_attachments(attachments: Any) -> List[Any]:
    """Attachment metadata only: inline binary payloads never reach the row."""
    if not isinstance(attachments, list):
        return []
    out = []
    for a in attachments:
        if isinstance(a, dict):
            out.append({k: v for k, v in a.items() if k not in {"file", "fileData"}})
        else:
            out.append(a)
    return out


def sanitize_direct_line_item(item: Any, index: int) -> Dict[str, Any]:
    item = _as_dict(item)
    metadata = item.get("metadata")
    meta = _as_dict(metadata)
    return {
        "order_index": _order_index(item, index),
        "cost_code_uuid": _ref(item.get("cost_code_uuid")),
        "cost_code_label": _first(item.get("cost_code_label"), meta.get("cost_code_label")),
        "cost_code_number": _first(item.get("cost_code_number"), meta.get("cost_code_number")),
        "cost_code_name": _first(item.get("cost_code_name"), meta.get("cost_code_name")),
        "division_name": _first(item.get("division_name"), meta.get("division_name")),
        "sequence_uuid": _ref(item.get("sequence_uuid")),
        "item_uuid": _ref(item.get("item_uuid")),
        "item_name": _first(item.get("item_name"), meta.get("item_name"), item.get("description"), ""),
        "description": _first(item.get("description"), ""),
        "unit_price": to_number_or_null(item.get("unit_price")),
        "quantity": to_number_or_null(item.get("quantity")),
        "total": to_number_or_null(item.get("total")),
        "unit_uuid": _ref(_first(item.get("unit_uuid"), item.get("uom_uuid"), meta.get("unit_uuid"))),
        "unit_label": _first(item.get("unit_label"), item.get("uom"), meta.get("unit_label")),
        "uom": _first(item.get("uom"), item.get("unit_label"), meta.get("unit")),
        "metadata": metadata if isinstance(metadata, dict) else {},
        "is_active": True,
    }


def _order_invoice_item(item: Dict[str, Any], index: int) -> Dict[str, Any]:
    """
    Shared shape of PO / CO invoice rows. The order's own committed quantity and
    price stay on the order line; only the `invoice_*` values billed now are kept here.
    """
    metadata = item.get("metadata")
    meta = _as_dict(metadata)
    return {
        "order_index": _order_index(item, index),
        "cost_code_uuid": _ref(item.get("cost_code_uuid")),
        "cost_code_label": _first(item.get("cost_code_label"), meta.get("cost_code_label")),
        "cost_code_number": _first(item.get("cost_code_number"), meta.get("cost_code_number")),
        "cost_code_name": _first(item.get("cost_code_name"), meta.get("cost_code_name")),
        "division_name": _first(item.get("division_name"), meta.get("division_name")),
        "item_type_uuid": _ref(item.get("item_type_uuid")),
        "item_type_label": _first(item.get("item_type_label"), meta.get("item_type_label")),
        "item_uuid": _ref(item.get("item_uuid")),
        "item_name": _first(item.get("item_name"), meta.get("item_name"), item.get("description"), ""),
        "description": _first(item.get("description"), ""),
        "model_number": _first(item.get("model_number"), meta.get("model_number"), ""),
        "location_uuid": _ref(item.get("location_uuid")),
        "location_label": _first(item.get("location"), item.get("location_label"), meta.get("location_label")),
        "unit_uuid": _ref(_first(item.get("unit_uuid"), item.get("uom_uuid"), meta.get("unit_uuid"))),
        "unit_label": _first(item.get("unit_label"), item.get("uom_label"), meta.get("unit_label"), meta.get("unit")),
        "invoice_quantity": to_number_or_null(item.get("invoice_quantity")),
        "invoice_unit_price": to_number_or_null(item.get("invoice_unit_price")),
        "invoice_total": to_number_or_null(item.get("invoice_total")),
        "metadata": metadata if isinstance(metadata, dict) else {},
        "is_active": True,
    }


def sanitize_po_invoice_item(item: Any, index: int) -> Dict[str, Any]:
    item = _as_dict(item)
    row = _order_invoice_item(item, index)
    row["po_item_uuid"] = _ref(item.get("po_item_uuid"))
    return row


def sanitize_co_invoice_item(item: Any, index: int) -> Dict[str, Any]:
    item = _as_dict(item)
    row = _order_invoice_item(item, index)
    row["co_item_uuid"] = _ref(item.get("co_item_uuid"))
    return row


def sanitize_advance_payment_cost_code(item: Any, index: int = 0) -> Dict[str, Any]:
    # total/advance amounts are always numeric: callers sum them.
    item = _as_dict(item)
    metadata = item.get("metadata")
    return {
        "cost_code_uuid": item.get("cost_code_uuid") or None,
        "cost_code_label": item.get("cost_code_label") or None,
        "cost_code_number": item.get("cost_code_number") or None,
        "cost_code_name": item.get("cost_code_name") or None,
        "gl_account_uuid": item.get("gl_account_uuid") or None,
        "total_amount": to_number_or_null(item.get("totalAmount") or item.get("total_amount")) or 0,
        "advance_amount": to_number_or_null(item.get("advanceAmount") or item.get("advance_amount")) or 0,
        "metadata": metadata if isinstance(metadata, dict) else {},
        "is_active": True,
    }
