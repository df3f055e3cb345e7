from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from .. import vendor_invoices as service
from ..deps import get_store
from ..store import Store

router = APIRouter(prefix="/vendor-invoices", tags=["vendor-invoices"])


@router.get("")
def list_or_get_vendor_invoices(
    uuid: Optional[str] = None,
    corporation_uuid: Optional[str] = None,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    store: Store = Depends(get_store),
):
    if uuid:
        return service.get_invoice(store, uuid)
    return service.list_invoices(store, corporation_uuid, page=page, page_size=page_size)


@router.get("/{invoice_uuid}")
def get_vendor_invoice(invoice_uuid: str, store: Store = Depends(get_store)):
    return service.get_invoice(store, invoice_uuid)


# Bodies stay free-form: the invoice form posts a loose mix of flat and nested fields.
@router.post("")
def create_vendor_invoice(payload: Optional[Dict[str, Any]] = Body(None), store: Store = Depends(get_store)):
    return service.create_invoice(store, payload)


@router.put("")
def update_vendor_invoice(payload: Optional[Dict[str, Any]] = Body(None), store: Store = Depends(get_store)):
    return service.update_invoice(store, payload)


@router.delete("")
def delete_vendor_invoice(uuid: Optional[str] = None, store: Store = Depends(get_store)):
    return service.delete_invoice(store, uuid)
