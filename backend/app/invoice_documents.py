"""
Invoice documents: files are pushed to object storage and described in the
invoice's `attachments` JSON array (no separate table).
"""
import base64
import binascii
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import HTTPException

from .config import settings
from .logs import json_log
from .store import Store
from .storage import s3 as object_storage

INVOICES = "vendor_invoices"

ALLOWED_MIME_TYPES = {"application/pdf", "image/jpeg", "image/jpg", "image/png"}

_DATA_URL = re.compile(r"^data:(.*?);base64,(.*)$", re.DOTALL)


def decode_file_data(data: str) -> bytes:
    """Accepts raw base64 or a `data:<mime>;base64,<payload>` URL. Undecodable input gives b""."""
    if not data:
        return b""
    m = _DATA_URL.match(data)
    raw = m.group(2) if m else data
    try:
        return base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError):
        return b""


def _object_key(invoice_uuid: str, name: str) -> str:
    ext = name.rsplit(".", 1)[-1].strip().lower() if "." in name else ""
    return f"{settings.attachment_key_prefix}/{invoice_uuid}/{uuid.uuid4().hex}.{ext or 'pdf'}"


def _file_error(name: Any, error: str) -> Dict[str, str]:
    return {"fileName": name or "Unknown", "error": error}


def _load_invoice(store: Store, invoice_uuid: Any) -> Dict[str, Any]:
    if not invoice_uuid or not isinstance(invoice_uuid, str):
        raise HTTPException(status_code=400, detail="invoice_uuid is required")
    invoice = store.select_one(INVOICES, {"uuid": invoice_uuid}, columns=["uuid", "attachments"])
    if invoice is None:
        raise HTTPException(status_code=404, detail="Vendor invoice not found")
    return invoice


def upload_documents(store: Store, invoice_uuid: Any, files: Any) -> Dict[str, Any]:
    """Per-file problems are collected into `errors`; only the final row update can fail the call."""
    if not isinstance(files, list) or not files:
        raise HTTPException(status_code=400, detail="Files array is required and must not be empty")
    invoice = _load_invoice(store, invoice_uuid)
    existing = list(invoice.get("attachments") or []) if isinstance(invoice.get("attachments"), list) else []

    uploaded: List[Dict[str, Any]] = []
    errors: List[Dict[str, str]] = []
    max_mb = settings.attachment_max_bytes // (1024 * 1024)
    for f in files:
        f = f if isinstance(f, dict) else {}
        name = f.get("name")
        mime = (f.get("type") or "").strip()
        try:
            size = int(f.get("size"))
        except (TypeError, ValueError):
            size = None
        data = f.get("fileData") or f.get("url") or f.get("file")

        if not name or not mime or size is None or not data:
            errors.append(_file_error(name, "Missing required file properties"))
            continue
        if mime not in ALLOWED_MIME_TYPES:
            errors.append(_file_error(name, "Invalid file type. Only PDF or image files (JPEG, PNG) are allowed"))
            continue
        if size > settings.attachment_max_bytes:
            errors.append(_file_error(name, f"File size too large. Maximum size is {max_mb}MB"))
            continue
        raw = decode_file_data(data) if isinstance(data, str) else b""
        if not raw:
            errors.append(_file_error(name, "Unable to decode file contents"))
            continue

        key = _object_key(invoice_uuid, name)
        try:
            object_storage.put_bytes(key=key, data=raw, content_type=mime)
        except Exception as exc:
            json_log("warning", "vendor_invoice.documents.upload_failed", invoice_uuid=invoice_uuid, file_path=key, error=str(exc))
            errors.append(_file_error(name, f"Failed to upload file to storage: {exc}"))
            continue

        uploaded.append(
            {
                "uuid": str(uuid.uuid4()),
                "document_name": name,
                "mime_type": mime,
                "file_size": size,
                "file_url": object_storage.object_url(key),
                "file_path": key,
                "uploaded_at": datetime.now(timezone.utc).isoformat(),
            }
        )

    if not uploaded:
        return {"success": False, "attachments": existing, "errors": errors}

    rows = store.update(INVOICES, {"uuid": invoice_uuid}, {"attachments": existing + uploaded})
    attachments = rows[0].get("attachments") if rows else None
    return {"success": True, "attachments": attachments or [], "errors": errors}


def remove_document(store: Store, invoice_uuid: Any, attachment_uuid: Any) -> Dict[str, Any]:
    if not attachment_uuid or not isinstance(attachment_uuid, str):
        raise HTTPException(status_code=400, detail="attachment_uuid is required")
    invoice = _load_invoice(store, invoice_uuid)
    existing = list(invoice.get("attachments") or []) if isinstance(invoice.get("attachments"), list) else []

    target = next((a for a in existing if isinstance(a, dict) and a.get("uuid") == attachment_uuid), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    remaining = [a for a in existing if a is not target]

    if target.get("file_path"):
        try:
            object_storage.delete_object(key=target["file_path"])
        except Exception as exc:
            # The metadata entry still goes; an orphaned object is harmless.
            json_log(
                "warning",
                "vendor_invoice.documents.remove_failed",
                invoice_uuid=invoice_uuid,
                file_path=target["file_path"],
                error=str(exc),
            )

    rows = store.update(INVOICES, {"uuid": invoice_uuid}, {"attachments": remaining})
    attachments = rows[0].get("attachments") if rows else None
    return {"success": True, "attachments": attachments or []}
