from fastapi import APIRouter, Depends

from ..deps import get_store
from ..store import Store
from ..vendor_invoices import list_order_advance_payments

router = APIRouter(tags=["advance-payments"])


@router.get("/purchase-orders/{purchase_order_uuid}/advance-payments")
def list_purchase_order_advance_payments(purchase_order_uuid: str, store: Store = Depends(get_store)):
    return list_order_advance_payments(store, purchase_order_uuid=purchase_order_uuid)


@router.get("/change-orders/{change_order_uuid}/advance-payments")
def list_change_order_advance_payments(change_order_uuid: str, store: Store = Depends(get_store)):
    return list_order_advance_payments(store, change_order_uuid=change_order_uuid)
