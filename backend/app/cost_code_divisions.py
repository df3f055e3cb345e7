from typing import Any, Dict, List

from fastapi import HTTPException

from .coerce import to_number_or_null
from .store import Store, StoreError

DIVISIONS = "cost_code_divisions"


def _division_error(division: Dict[str, Any], message: str) -> str:
    return f"Division {division.get('division_number') or 'Unknown'}: {message}"


def import_cost_code_divisions(store: Store, corporation_uuid: Any, divisions: Any) -> Dict[str, Any]:
    """
    Insert divisions not yet known for the corporation. Existing division
    numbers count as duplicates; invalid entries are reported, not raised.
    """
    if not corporation_uuid or not isinstance(divisions, list):
        raise HTTPException(status_code=400, detail="Missing required fields: corporation_uuid and divisions array")

    new_count = 0
    duplicates = 0
    errors: List[str] = []
    for division in divisions:
        division = division if isinstance(division, dict) else {}
        number = division.get("division_number")
        if not number or not division.get("division_name") or not division.get("division_order"):
            errors.append(f"Division missing required fields: {number or 'N/A'}")
            continue
        order = to_number_or_null(division.get("division_order"))
        if order is None or order < 1 or order > 100:
            errors.append(_division_error(division, "Order must be between 1 and 100"))
            continue

        try:
            existing = store.select_one(
                DIVISIONS,
                {"corporation_uuid": corporation_uuid, "division_number": number},
                columns=["uuid"],
            )
            if existing is not None:
                duplicates += 1
                continue
            store.insert(
                DIVISIONS,
                [
                    {
                        "corporation_uuid": corporation_uuid,
                        "division_number": number,
                        "division_name": division["division_name"],
                        "division_order": int(order),
                        "description": division.get("description") or None,
                        "is_active": division["is_active"] if division.get("is_active") is not None else True,
                    }
                ],
            )
        except StoreError as exc:
            if exc.sqlstate == "23505" and "division_number" in exc.message:
                errors.append(_division_error(division, "Division number already exists"))
            else:
                errors.append(_division_error(division, exc.message))
            continue
        new_count += 1

    message = f"Import completed: {new_count} new divisions added, {duplicates} duplicates skipped"
    if errors:
        message += f", {len(errors)} errors occurred"
    return {
        "success": True,
        "message": message,
        "data": {
            "new": new_count,
            "duplicates": duplicates,
            "total": len(divisions),
            "errors": len(errors),
            "error_messages": errors,
        },
    }
