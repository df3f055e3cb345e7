import pytest
from fastapi import HTTPException

from backend.app import vendor_invoices as service
from backend.app.invoice_children import (
    ADJUSTED_ADVANCE_PAYMENT_COST_CODES,
    ADVANCE_PAYMENT_COST_CODES,
    DIRECT_LINE_ITEMS,
    PO_INVOICE_ITEMS,
)
from backend.app.store import StoreError

INVOICES = "vendor_invoices"


@pytest.fixture
def po_setup(store):
    store.seed("vendors", {"uuid": "vendor-1", "vendor_name": "Acme Supply"})
    store.seed("projects", {"uuid": "proj-1", "project_name": "Tower A", "project_id": "P-100"})
    store.seed("purchase_order_forms", {"uuid": "po-1", "po_number": "PO-7"})
    advances = {}
    for key, bill_date, amount in (
        ("a3", "2024-03-01T00:00:00.000Z", 2000),
        ("a1", "2024-01-01T00:00:00.000Z", 1000),
        ("a2", "2024-02-01T00:00:00.000Z", 500),
    ):
        advances[key] = store.seed(
            INVOICES,
            {
                "corporation_uuid": "corp-1",
                "invoice_type": "AGAINST_ADVANCE_PAYMENT",
                "purchase_order_uuid": "po-1",
                "bill_date": bill_date,
                "amount": amount,
            },
        )[0]["uuid"]
    return advances


def _po_payload(**extra):
    payload = {
        "corporation_uuid": "corp-1",
        "project_uuid": "proj-1",
        "vendor_uuid": "vendor-1",
        "purchase_order_uuid": "po-1",
        "invoice_type": "against_po",
        "number": "INV-001",
        "bill_date": "2024-04-01",
        "credit_days": "net_30",
        "amount": "3800",
        "financial_breakdown": {
            "charges": {},
            "sales_taxes": {},
            "totals": {"item_total": 5000, "charges_total": 0, "tax_total": 0, "total_invoice_amount": 5000},
        },
        "po_invoice_items": [
            {"po_item_uuid": "poi-1", "description": "Pipe", "invoice_quantity": 10, "invoice_unit_price": 300, "invoice_total": 3000},
            {"po_item_uuid": "poi-2", "description": "Valve", "invoice_quantity": 4, "invoice_unit_price": 500, "invoice_total": 2000},
        ],
        "attachments": [{"uuid": "att-1", "document_name": "bill.pdf", "fileData": "data:application/pdf;base64,AAAA"}],
    }
    payload.update(extra)
    return payload


def _adjusted_against(store, uuid):
    return store.select_one(INVOICES, {"uuid": uuid})["adjusted_against_vendor_invoice_uuid"]


def test_create_po_invoice_end_to_end(store, po_setup):
    data = service.create_invoice(store, _po_payload())["data"]

    assert data["invoice_type"] == "AGAINST_PO"
    assert data["status"] == "Draft"
    assert data["bill_date"] == "2024-04-01T00:00:00.000Z"
    assert data["due_date"] == "2024-05-01T23:59:59.000Z"
    assert data["credit_days"] == "NET_30"
    assert data["amount"] == 3800.0
    assert data["total_invoice_amount"] == 5000
    assert data["attachments"] == [{"uuid": "att-1", "document_name": "bill.pdf"}]
    assert [i["po_item_uuid"] for i in data["po_invoice_items"]] == ["poi-1", "poi-2"]
    assert data["line_items"] == []
    assert data["co_invoice_items"] == []
    assert data["advance_payment_cost_codes"] == []
    assert data["vendor_name"] == "Acme Supply"
    assert data["project_name"] == "Tower A"
    assert data["po_number"] == "PO-7"

    # 5000 before deduction - 3800 payable = 1200 drawn from advances, oldest first.
    assert _adjusted_against(store, po_setup["a1"]) == data["uuid"]
    assert _adjusted_against(store, po_setup["a2"]) == data["uuid"]
    assert _adjusted_against(store, po_setup["a3"]) is None


def test_create_larger_deduction_consumes_every_advance(store, po_setup):
    data = service.create_invoice(store, _po_payload(amount="2800"))["data"]
    for key in ("a1", "a2", "a3"):
        assert _adjusted_against(store, po_setup[key]) == data["uuid"]


def test_create_explicit_deduction_wins(store, po_setup):
    data = service.create_invoice(store, _po_payload(advance_payment_deduction="100"))["data"]
    assert _adjusted_against(store, po_setup["a1"]) == data["uuid"]
    assert _adjusted_against(store, po_setup["a2"]) is None


@pytest.mark.parametrize(
    "payload, detail",
    [
        ({}, "Request body is required"),
        ({"invoice_type": "AGAINST_PO", "bill_date": "2024-01-01", "amount": 1}, "corporation_uuid is required"),
        ({"corporation_uuid": "c", "bill_date": "2024-01-01", "amount": 1}, "invoice_type is required"),
        ({"corporation_uuid": "c", "invoice_type": "AGAINST_PO", "amount": 1}, "bill_date is required"),
        ({"corporation_uuid": "c", "invoice_type": "AGAINST_PO", "bill_date": "2024-01-01"}, "amount is required"),
        ({"corporation_uuid": "c", "invoice_type": "BOGUS", "bill_date": "2024-01-01", "amount": 1}, "Invalid invoice_type"),
        (
            {"corporation_uuid": "c", "invoice_type": "AGAINST_PO", "bill_date": "2024-01-01", "amount": 1, "status": "Void"},
            "Invalid status",
        ),
    ],
)
def test_create_validation(store, payload, detail):
    with pytest.raises(HTTPException) as exc_info:
        service.create_invoice(store, payload)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == detail
    assert store.rows(INVOICES) == []


def test_create_direct_invoice_with_flat_fields(store):
    data = service.create_invoice(
        store,
        {
            "corporation_uuid": "corp-1",
            "project_uuid": "",
            "invoice_type": "ENTER_DIRECT_INVOICE",
            "bill_date": "2024-01-10",
            "due_date": "2024-02-01",
            "amount": "110",
            "holdback": "",
            "item_total": "100",
            "freight_charges_amount": "10",
            "line_items": [{"description": "Cement", "total": 100}],
        },
    )["data"]
    assert data["project_uuid"] is None
    assert data["due_date"] == "2024-02-01T23:59:59.000Z"
    assert data["holdback"] is None
    assert data["freight_charges_amount"] == 10.0
    assert data["item_total"] == 100.0
    assert data["total_invoice_amount"] == 110.0
    assert [i["item_name"] for i in data["line_items"]] == ["Cement"]


def test_create_advance_payment_invoice(store):
    data = service.create_invoice(
        store,
        {
            "corporation_uuid": "corp-1",
            "vendor_uuid": "vendor-1",
            "purchase_order_uuid": "po-1",
            "invoice_type": "AGAINST_ADVANCE_PAYMENT",
            "bill_date": "2024-01-10",
            "amount": 500,
            "financial_breakdown": {"totals": {"item_total": 480, "tax_total": 20, "total_invoice_amount": 500}},
            "advance_payment_cost_codes": [
                {"cost_code_uuid": "cc-1", "advanceAmount": 300},
                {"cost_code_uuid": "cc-2", "advance_amount": 200},
                {"cost_code_uuid": None, "advance_amount": 999},
            ],
        },
    )["data"]
    assert data["financial_breakdown"]["totals"] == {
        "item_total": 500,
        "tax_total": 0,
        "total_invoice_amount": 500,
        "charges_total": 0,
    }
    assert [c["cost_code_uuid"] for c in data["advance_payment_cost_codes"]] == ["cc-1", "cc-2"]
    assert all(c["purchase_order_uuid"] == "po-1" for c in data["advance_payment_cost_codes"])


def test_create_child_failure_is_fatal(store, po_setup):
    store.fail(PO_INVOICE_ITEMS.table, "insert")
    with pytest.raises(StoreError):
        service.create_invoice(store, _po_payload())


def test_create_allocation_failure_is_logged_not_raised(store, po_setup, capsys):
    store.fail(INVOICES, "update")
    data = service.create_invoice(store, _po_payload())["data"]
    assert data["uuid"]
    assert _adjusted_against(store, po_setup["a1"]) is None
    assert "vendor_invoice.advance_payments.mark_failed" in capsys.readouterr().err


def test_adjusted_amounts_round_trip(store, po_setup):
    store.seed(
        ADVANCE_PAYMENT_COST_CODES.table,
        {"vendor_invoice_uuid": po_setup["a1"], "cost_code_uuid": "cc-1", "cost_code_number": "03", "cost_code_name": "Concrete"},
    )
    created = service.create_invoice(
        store,
        _po_payload(
            adjusted_advance_payment_uuid=po_setup["a1"],
            adjusted_advance_payment_amounts={po_setup["a1"]: {"cc-1": "300", "cc-2": 0}, "other": {"cc-9": 5}},
        ),
    )["data"]

    (row,) = store.rows(ADJUSTED_ADVANCE_PAYMENT_COST_CODES.table)
    assert row["cost_code_label"] == "03 Concrete"
    assert row["purchase_order_uuid"] == "po-1"
    assert row["change_order_uuid"] is None

    data = service.get_invoice(store, created["uuid"])["data"]
    assert data["adjusted_advance_payment_uuid"] == po_setup["a1"]
    assert data["adjusted_advance_payment_amounts"] == {po_setup["a1"]: {"cc-1": 300.0}}


def test_update_po_to_direct_cleans_up(store, po_setup):
    created = service.create_invoice(store, _po_payload())["data"]
    assert _adjusted_against(store, po_setup["a1"]) == created["uuid"]

    data = service.update_invoice(
        store,
        {
            "uuid": created["uuid"],
            "invoice_type": "ENTER_DIRECT_INVOICE",
            "purchase_order_uuid": "",
            "line_items": [{"description": "Labour", "total": 3800}],
        },
    )["data"]

    assert data["invoice_type"] == "ENTER_DIRECT_INVOICE"
    assert data["purchase_order_uuid"] is None
    assert [i["description"] for i in data["line_items"]] == ["Labour"]
    assert data["po_invoice_items"] == []
    assert store.rows(PO_INVOICE_ITEMS.table) == []
    assert _adjusted_against(store, po_setup["a1"]) is None
    assert _adjusted_against(store, po_setup["a2"]) is None
    # Breakdown untouched: no financial keys in the body.
    assert data["total_invoice_amount"] == 5000


def test_update_ignores_invalid_enums(store):
    created = service.create_invoice(
        store,
        {"corporation_uuid": "c", "invoice_type": "ENTER_DIRECT_INVOICE", "bill_date": "2024-01-01", "amount": 1},
    )["data"]
    data = service.update_invoice(
        store,
        {"uuid": created["uuid"], "invoice_type": "BOGUS", "status": "Void", "number": "", "credit_days": "NET_99"},
    )["data"]
    assert data["invoice_type"] == "ENTER_DIRECT_INVOICE"
    assert data["status"] == "Draft"
    assert data["number"] is None
    assert data["credit_days"] is None


def test_update_rebuilds_breakdown_only_when_financial_fields_sent(store):
    created = service.create_invoice(
        store,
        {"corporation_uuid": "c", "invoice_type": "ENTER_DIRECT_INVOICE", "bill_date": "2024-01-01", "amount": 50, "item_total": 50},
    )["data"]

    data = service.update_invoice(store, {"uuid": created["uuid"], "number": "X-1"})["data"]
    assert data["item_total"] == 50.0

    data = service.update_invoice(store, {"uuid": created["uuid"], "packing_charges_amount": "5", "item_total": 60})["data"]
    assert data["packing_charges_amount"] == 5.0
    assert data["item_total"] == 60.0
    # Amount was not sent: the stored amount fills the total.
    assert data["total_invoice_amount"] == 50.0


def test_update_requires_existing_invoice(store):
    with pytest.raises(HTTPException) as exc_info:
        service.update_invoice(store, {"uuid": "missing", "number": "1"})
    assert exc_info.value.status_code == 404
    with pytest.raises(HTTPException) as exc_info:
        service.update_invoice(store, {"number": "1"})
    assert exc_info.value.status_code == 400


def test_get_invoice_errors(store):
    with pytest.raises(HTTPException) as exc_info:
        service.get_invoice(store, None)
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException) as exc_info:
        service.get_invoice(store, "missing")
    assert exc_info.value.status_code == 404


def test_get_invoice_survives_child_read_failure(store, po_setup, capsys):
    created = service.create_invoice(store, _po_payload())["data"]
    store.fail(PO_INVOICE_ITEMS.table, "select")
    data = service.get_invoice(store, created["uuid"])["data"]
    assert data["po_invoice_items"] == []
    assert "vendor_invoice.children.fetch_failed" in capsys.readouterr().err


def test_list_invoices_paginates_newest_first(store):
    store.seed("projects", {"uuid": "proj-1", "project_name": "Tower A", "project_id": "P-100"})
    for n in ("1", "2", "3"):
        store.seed(INVOICES, {"corporation_uuid": "corp-1", "project_uuid": "proj-1", "number": n, "amount": "10"})
    store.seed(INVOICES, {"corporation_uuid": "corp-1", "number": "gone", "is_active": False})
    store.seed(INVOICES, {"corporation_uuid": "corp-2", "number": "other"})

    page1 = service.list_invoices(store, "corp-1", page="1", page_size="2")
    assert [r["number"] for r in page1["data"]] == ["3", "2"]
    assert page1["data"][0]["project_name"] == "Tower A"
    assert page1["data"][0]["project_id"] == "P-100"
    assert page1["data"][0]["amount"] == 10.0
    assert page1["pagination"] == {"page": 1, "page_size": 2, "total_records": 3, "total_pages": 2, "has_more": True}

    page2 = service.list_invoices(store, "corp-1", page=2, page_size=2)
    assert [r["number"] for r in page2["data"]] == ["1"]
    assert page2["pagination"]["has_more"] is False


def test_list_invoices_page_size_bounds(store):
    store.seed(INVOICES, {"corporation_uuid": "corp-1"})
    assert service.list_invoices(store, "corp-1", page_size="0")["pagination"]["page_size"] == 100
    assert service.list_invoices(store, "corp-1", page_size="5000")["pagination"]["page_size"] == 1000
    assert service.list_invoices(store, "corp-1", page="abc")["pagination"]["page"] == 1
    with pytest.raises(HTTPException):
        service.list_invoices(store, None)


def test_delete_po_invoice_releases_advances(store, po_setup):
    created = service.create_invoice(store, _po_payload())["data"]
    data = service.delete_invoice(store, created["uuid"])["data"]
    assert data["is_active"] is False
    assert _adjusted_against(store, po_setup["a1"]) is None
    assert _adjusted_against(store, po_setup["a2"]) is None
    assert service.list_invoices(store, "corp-1")["pagination"]["total_records"] == 3


def test_delete_missing_invoice(store):
    with pytest.raises(HTTPException) as exc_info:
        service.delete_invoice(store, "missing")
    assert exc_info.value.status_code == 404


def test_list_order_advance_payments(store, po_setup):
    store.seed(
        ADVANCE_PAYMENT_COST_CODES.table,
        {"vendor_invoice_uuid": po_setup["a1"], "cost_code_uuid": "cc-1"},
        {"vendor_invoice_uuid": po_setup["a1"], "cost_code_uuid": "cc-2"},
        {"vendor_invoice_uuid": po_setup["a1"], "cost_code_uuid": "cc-x", "is_active": False},
    )
    store.update(INVOICES, {"uuid": po_setup["a2"]}, {"is_active": False})

    data = service.list_order_advance_payments(store, purchase_order_uuid="po-1")["data"]
    assert [d["uuid"] for d in data] == [po_setup["a3"], po_setup["a1"]]
    assert [c["cost_code_uuid"] for c in data[1]["cost_codes"]] == ["cc-1", "cc-2"]
    assert data[0]["cost_codes"] == []
    assert data[0]["amount"] == 2000

    assert service.list_order_advance_payments(store, change_order_uuid="co-1")["data"] == []


def test_po_invoice_draws_2200_from_two_advances(store):
    a1 = store.seed(
        INVOICES,
        {"corporation_uuid": "corp-1", "invoice_type": "AGAINST_ADVANCE_PAYMENT", "purchase_order_uuid": "po-1", "bill_date": "2024-01-05", "amount": 1200},
    )[0]["uuid"]
    a2 = store.seed(
        INVOICES,
        {"corporation_uuid": "corp-1", "invoice_type": "AGAINST_ADVANCE_PAYMENT", "purchase_order_uuid": "po-1", "bill_date": "2024-02-05", "amount": 1000},
    )[0]["uuid"]

    data = service.create_invoice(
        store,
        {
            "corporation_uuid": "corp-1",
            "invoice_type": "AGAINST_PO",
            "purchase_order_uuid": "po-1",
            "bill_date": "2024-03-01",
            "amount": 7800,
            "financial_breakdown": {"totals": {"item_total": 10000, "charges_total": 0, "tax_total": 0}},
            "po_invoice_items": [{"po_item_uuid": "poi-1", "invoice_total": 10000}],
        },
    )["data"]

    assert _adjusted_against(store, a1) == data["uuid"]
    assert _adjusted_against(store, a2) == data["uuid"]
    assert len(data["po_invoice_items"]) == 1
    assert data["advance_payment_cost_codes"] == []
    # total_invoice_amount was missing: backfilled from amount.
    assert data["total_invoice_amount"] == 7800


def test_update_advance_amount_keeps_totals_in_step(store):
    created = service.create_invoice(
        store,
        {
            "corporation_uuid": "c",
            "invoice_type": "AGAINST_ADVANCE_PAYMENT",
            "purchase_order_uuid": "po-1",
            "bill_date": "2024-01-01",
            "amount": 500,
        },
    )["data"]

    data = service.update_invoice(store, {"uuid": created["uuid"], "amount": "800"})["data"]
    totals = data["financial_breakdown"]["totals"]
    assert data["amount"] == 800.0
    assert totals["item_total"] == totals["total_invoice_amount"] == 800.0
    assert totals["charges_total"] == totals["tax_total"] == 0


def test_update_to_advance_type_derives_totals_from_stored_amount(store):
    created = service.create_invoice(
        store,
        {
            "corporation_uuid": "c",
            "invoice_type": "ENTER_DIRECT_INVOICE",
            "bill_date": "2024-01-01",
            "amount": 120,
            "item_total": 100,
            "freight_charges_amount": 20,
        },
    )["data"]

    data = service.update_invoice(store, {"uuid": created["uuid"], "invoice_type": "AGAINST_ADVANCE_PAYMENT"})["data"]
    totals = data["financial_breakdown"]["totals"]
    assert totals["item_total"] == totals["total_invoice_amount"] == 120
    assert totals["charges_total"] == 0


def test_update_blank_adjusted_advance_payment_is_stored_as_null(store):
    created = service.create_invoice(
        store,
        {"corporation_uuid": "c", "invoice_type": "ENTER_DIRECT_INVOICE", "bill_date": "2024-01-01", "amount": 1},
    )["data"]
    service.update_invoice(store, {"uuid": created["uuid"], "adjusted_advance_payment_uuid": "ap-1"})
    service.update_invoice(store, {"uuid": created["uuid"], "adjusted_advance_payment_uuid": ""})
    (row,) = store.rows(INVOICES)
    assert row["adjusted_advance_payment_uuid"] is None


def test_list_enrichment_continues_past_failed_lookup(store, capsys):
    store.seed("vendors", {"uuid": "vendor-1", "vendor_name": "Acme Supply"})
    store.seed(
        INVOICES,
        {"corporation_uuid": "corp-1", "project_uuid": "proj-1", "vendor_uuid": "vendor-1", "number": "1"},
    )
    store.fail("projects", "select")

    (row,) = service.list_invoices(store, "corp-1")["data"]
    assert row["vendor_name"] == "Acme Supply"
    assert "project_name" not in row
    err = capsys.readouterr().err
    assert "vendor_invoice.enrichment.fetch_failed" in err
    assert '"table": "projects"' in err
