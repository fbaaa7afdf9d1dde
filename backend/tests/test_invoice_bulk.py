# Overview: Pytest coverage for bulk invoice operations.

import pytest

from stocksage.models import Invoice, InvoiceItem
from stocksage.services.invoice_bulk_service import (
    BulkInvoiceEngine,
    BulkOperationError,
)


class TestValidation:

    @pytest.mark.parametrize(
        "operation,ids,payload,message",
        [
            (None, [1], None, "Invalid request, missing operation or invoiceIds"),
            ("delete", None, None, "Invalid request, missing operation or invoiceIds"),
            ("delete", [], None, "Invalid request, missing operation or invoiceIds"),
            ("delete", "1,2", None, "Invalid request, missing operation or invoiceIds"),
            ("archive", [1], None, "Unsupported operation: archive"),
            ("updateStatus", [1], None, "Status is required for updateStatus operation"),
            ("updateStatus", [1], {"status": "draft"}, "Invalid status value"),
        ],
    )
    def test_rejected_before_any_write(self, db_session, user, make_invoice, operation, ids, payload, message):
        invoice = make_invoice(user, status="draft")

        with pytest.raises(BulkOperationError, match=message):
            BulkInvoiceEngine(db_session).apply(user.id, operation, ids, payload)

        assert db_session.get(Invoice, invoice.id).status == "draft"


class TestOperations:

    def test_update_status_counts_matched_rows(self, db_session, user, make_invoice):
        a = make_invoice(user)
        b = make_invoice(user)
        untouched = make_invoice(user)

        result = BulkInvoiceEngine(db_session).apply(
            user.id, "updateStatus", [a.id, b.id, 424242], {"status": "paid"}
        )

        assert result.count == 2
        assert result.message == "Updated status for 2 invoices"
        db_session.expire_all()
        assert db_session.get(Invoice, a.id).status == "paid"
        assert db_session.get(Invoice, b.id).status == "paid"
        assert db_session.get(Invoice, untouched.id).status == "draft"

    def test_delete_removes_items_then_invoices(self, db_session, user, make_invoice):
        doomed = make_invoice(user, item_count=3)
        kept = make_invoice(user, item_count=1)
        doomed_id = doomed.id

        result = BulkInvoiceEngine(db_session).apply(user.id, "delete", [doomed_id, 999999])

        assert result.count == 1
        assert result.message == "Deleted 1 invoices"
        assert db_session.get(Invoice, doomed_id) is None
        assert db_session.query(InvoiceItem).filter_by(invoice_id=doomed_id).count() == 0
        assert db_session.query(InvoiceItem).filter_by(invoice_id=kept.id).count() == 1

    def test_export_returns_invoices_with_items(self, db_session, user, make_invoice):
        a = make_invoice(user, item_count=2)
        make_invoice(user)

        result = BulkInvoiceEngine(db_session).apply(user.id, "export", [a.id])

        assert result.count == 1
        assert result.message == "Exported 1 invoices"
        (exported,) = result.data
        assert exported["id"] == a.id
        assert exported["total_amount"] == "37.50"
        assert sorted(item["total_price"] for item in exported["items"]) == ["12.50", "25.00"]

    def test_duplicate_and_string_ids(self, db_session, user, make_invoice):
        a = make_invoice(user)

        result = BulkInvoiceEngine(db_session).apply(user.id, "export", [a.id, str(a.id), a.id])

        assert result.count == 1

    def test_fractional_id_does_not_target_truncated_invoice(self, db_session, user, make_invoice):
        a = make_invoice(user)
        a_id = a.id

        engine = BulkInvoiceEngine(db_session)
        assert engine.apply(user.id, "export", [a_id + 0.9]).data == []
        assert engine.apply(user.id, "updateStatus", [a_id + 0.9], {"status": "paid"}).count == 0
        assert engine.apply(user.id, "delete", [a_id + 0.9, float(a_id)]).count == 0

        db_session.expire_all()
        invoice = db_session.get(Invoice, a_id)
        assert invoice is not None
        assert invoice.status == "draft"

    @pytest.mark.parametrize("bad_id", ["cl9xyz", "abc", "", "-1", "1.5", True, None, {"id": 1}])
    def test_unmatchable_ids_are_skipped_not_rejected(self, db_session, user, make_invoice, bad_id):
        a = make_invoice(user)

        result = BulkInvoiceEngine(db_session).apply(
            user.id, "updateStatus", [a.id, bad_id], {"status": "paid"}
        )

        assert result.count == 1
        db_session.expire_all()
        assert db_session.get(Invoice, a.id).status == "paid"

    def test_only_unmatchable_ids_count_zero(self, db_session, user, make_invoice):
        make_invoice(user)

        result = BulkInvoiceEngine(db_session).apply(user.id, "delete", ["cl9xyz", "cl9abc"])

        assert result.count == 0
        assert result.message == "Deleted 0 invoices"
        assert db_session.query(Invoice).count() == 1

    def test_other_owners_invoices_are_not_touched(self, db_session, user, other_user, make_invoice):
        theirs = make_invoice(other_user, status="draft")
        theirs_id = theirs.id

        engine = BulkInvoiceEngine(db_session)
        assert engine.apply(user.id, "updateStatus", [theirs_id], {"status": "paid"}).count == 0
        assert engine.apply(user.id, "export", [theirs_id]).data == []
        assert engine.apply(user.id, "delete", [theirs_id]).count == 0

        db_session.expire_all()
        assert db_session.get(Invoice, theirs_id).status == "draft"


class TestBulkEndpoint:

    def test_requires_auth(self, client, db_session):
        resp = client.post("/api/invoices/bulk", json={"operation": "delete", "invoiceIds": [1]})
        assert resp.status_code == 401

    def test_bad_request(self, client, headers):
        resp = client.post("/api/invoices/bulk", json={"operation": "delete"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json == {"success": False, "error": "Invalid request, missing operation or invoiceIds"}

    def test_unknown_id_format_is_not_a_bad_request(self, client, headers, user, make_invoice):
        a = make_invoice(user)

        resp = client.post(
            "/api/invoices/bulk",
            json={"operation": "export", "invoiceIds": [a.id, "cl9xyz"]},
            headers=headers,
        )

        assert resp.status_code == 200
        assert resp.json["message"] == "Exported 1 invoices"

    def test_update_status(self, client, headers, user, make_invoice):
        a = make_invoice(user)

        resp = client.post(
            "/api/invoices/bulk",
            json={"operation": "updateStatus", "invoiceIds": [a.id], "data": {"status": "overdue"}},
            headers=headers,
        )

        assert resp.status_code == 200
        assert resp.json == {"success": True, "message": "Updated status for 1 invoices", "count": 1}

    def test_export_shape(self, client, headers, user, make_invoice):
        a = make_invoice(user)

        resp = client.post(
            "/api/invoices/bulk",
            json={"operation": "export", "invoiceIds": [a.id]},
            headers=headers,
        )

        assert resp.status_code == 200
        assert resp.json["success"] is True
        assert resp.json["message"] == "Exported 1 invoices"
        assert resp.json["data"][0]["invoice_number"] == a.invoice_number

    def test_delete(self, client, headers, user, make_invoice, db_session):
        a = make_invoice(user)
        a_id = a.id

        resp = client.post(
            "/api/invoices/bulk",
            json={"operation": "delete", "invoiceIds": [a_id]},
            headers=headers,
        )

        assert resp.json["count"] == 1
        assert db_session.query(InvoiceItem).filter_by(invoice_id=a_id).count() == 0
