from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_store
from ..invoice_documents import remove_document, upload_documents
from ..store import Store

router = APIRouter(prefix="/vendor-invoices/documents", tags=["vendor-invoices"])


class DocumentUploadIn(BaseModel):
    invoice_uuid: Optional[str] = None
    # {name, type, size, fileData}; validated per file so one bad file doesn't sink the batch.
    files: Optional[List[Any]] = None


class DocumentRemoveIn(BaseModel):
    invoice_uuid: Optional[str] = None
    attachment_uuid: Optional[str] = None


@router.post("/upload")
def upload_vendor_invoice_documents(data: DocumentUploadIn, store: Store = Depends(get_store)):
    return upload_documents(store, data.invoice_uuid, data.files)


@router.post("/remove")
def remove_vendor_invoice_document(data: DocumentRemoveIn, store: Store = Depends(get_store)):
    return remove_document(store, data.invoice_uuid, data.attachment_uuid)
