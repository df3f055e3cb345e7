from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Annotated, Any, Literal, Optional

from pydantic import BeforeValidator, TypeAdapter, ValidationError


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


InvoiceType = Annotated[
    Literal[
        "ENTER_DIRECT_INVOICE",
        "AGAINST_PO",
        "AGAINST_CO",
        "AGAINST_ADVANCE_PAYMENT",
        "AGAINST_HOLDBACK_AMOUNT",
    ],
    BeforeValidator(_to_upper_str),
]
CreditDays = Annotated[Literal["NET_15", "NET_25", "NET_30", "NET_45", "NET_60"], BeforeValidator(_to_upper_str)]
# Status is case-sensitive (stored as shown in the UI).
InvoiceStatus = Annotated[Literal["Draft", "Pending", "Approved", "Paid"], BeforeValidator(_strip_str)]

ENTER_DIRECT_INVOICE = "ENTER_DIRECT_INVOICE"
AGAINST_PO = "AGAINST_PO"
AGAINST_CO = "AGAINST_CO"
AGAINST_ADVANCE_PAYMENT = "AGAINST_ADVANCE_PAYMENT"
AGAINST_HOLDBACK_AMOUNT = "AGAINST_HOLDBACK_AMOUNT"

_invoice_type = TypeAdapter(InvoiceType)
_credit_days = TypeAdapter(CreditDays)
_status = TypeAdapter(InvoiceStatus)

_PLAIN_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _validate_or_none(adapter: TypeAdapter, v: Any) -> Optional[str]:
    if v is None:
        return None
    try:
        return adapter.validate_python(v)
    except ValidationError:
        return None


def normalize_invoice_type(v: Any) -> Optional[str]:
    return _validate_or_none(_invoice_type, v)


def normalize_credit_days(v: Any) -> Optional[str]:
    return _validate_or_none(_credit_days, v)


def normalize_status(v: Any) -> Optional[str]:
    return _validate_or_none(_status, v)


def normalize_utc(v: Any, end_of_day: bool = False) -> Optional[str]:
    """
    Plain `YYYY-MM-DD` dates are pinned to UTC midnight (or the last second of
    the day for due dates). Anything else non-empty is stored as given.
    """
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, date):
        v = v.isoformat()[:10]
    s = str(v)
    if _PLAIN_DATE.match(s):
        return f"{s}T23:59:59.000Z" if end_of_day else f"{s}T00:00:00.000Z"
    return s


def credit_days_count(credit_days: Optional[str]) -> Optional[int]:
    if not credit_days:
        return None
    return int(credit_days.split("_", 1)[1])


def derive_due_date(bill_date: Any, credit_days: Optional[str]) -> Optional[str]:
    days = credit_days_count(credit_days)
    if days is None or bill_date is None:
        return None
    s = str(bill_date)[:10]
    if not _PLAIN_DATE.match(s):
        return None
    try:
        d = date.fromisoformat(s)
    except ValueError:
        return None
    return normalize_utc((d + timedelta(days=days)).isoformat(), end_of_day=True)
