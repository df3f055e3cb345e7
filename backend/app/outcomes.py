from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from .logs import json_log


@dataclass(frozen=True)
class Advisory:
    """
    A failed best-effort step. Fatal failures raise; advisory ones are returned
    so the caller decides (visibly) to log and carry on.
    """

    step: str
    error: str
    context: Dict[str, Any] = field(default_factory=dict)


def log_advisories(advisories: Iterable[Optional[Advisory]], **fields) -> int:
    n = 0
    for a in advisories:
        if a is None:
            continue
        # Step context wins over caller fields on a key clash.
        json_log("warning", f"vendor_invoice.{a.step}", **{**fields, **a.context, "error": a.error})
        n += 1
    return n
