from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..cost_code_divisions import import_cost_code_divisions
from ..deps import get_store
from ..store import Store

router = APIRouter(prefix="/cost-code-divisions", tags=["cost-code-divisions"])


class DivisionBulkIn(BaseModel):
    corporation_uuid: Optional[str] = None
    divisions: Optional[Any] = None


@router.post("/bulk")
def bulk_import_divisions(data: DivisionBulkIn, store: Store = Depends(get_store)):
    return import_cost_code_divisions(store, data.corporation_uuid, data.divisions)
