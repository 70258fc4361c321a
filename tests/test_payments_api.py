"""Payments, voids and refunds through the HTTP API."""

from hms.models.audit import AuditLog

VOID_REASON = "Entered against the wrong bill"


def _void(client, headers, payment_id, reason=VOID_REASON):
    return client.post(f"/api/payments/{payment_id}/void", json={"reason": reason}, headers=headers)


def _refund(client, headers, payment_id, amount, reason="Service not rendered"):
    return client.post(
        f"/api/payments/{payment_id}/refund",
        json={"refund_amount": amount, "refund_reason": reason},
        headers=headers,
    )


class TestRecordPayment:

    def test_full_payment_settles_bill(self, bill, pay):
        assert bill["total_amount"] == 210

        resp = pay(bill["id"], 210)

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["payment"]["status"] == "completed"
        assert body["data"]["payment"]["transaction_id"].startswith("TXN-")
        assert body["data"]["bill"]["amount_due"] == 0
        assert body["data"]["bill"]["payment_status"] == "paid"

    def test_partial_payment(self, bill, pay):
        resp = pay(bill["id"], 100)

        data = resp.json()["data"]
        assert data["bill"]["amount_paid"] == 100
        assert data["bill"]["amount_due"] == 110
        assert data["bill"]["payment_status"] == "partial"

    def test_change_due_from_amount_tendered(self, bill, pay):
        resp = pay(bill["id"], 210, amount_tendered=250)

        assert resp.status_code == 201
        assert resp.json()["data"]["change_due"] == 40

    def test_tendered_less_than_amount(self, bill, pay):
        resp = pay(bill["id"], 210, amount_tendered=200)

        assert resp.status_code == 422
        assert resp.json()["success"] is False

    def test_non_positive_amount(self, bill, pay):
        resp = pay(bill["id"], 0)

        assert resp.status_code == 422
        assert "amount" in resp.json()["errors"]

    def test_overpayment_is_accepted(self, bill, pay):
        resp = pay(bill["id"], 250)

        assert resp.status_code == 201
        assert resp.json()["data"]["bill"]["amount_due"] == -40
        assert resp.json()["data"]["bill"]["payment_status"] == "paid"

    def test_duplicate_transaction_id(self, bill, pay):
        assert pay(bill["id"], 10, transaction_id="EXT-1").status_code == 201

        resp = pay(bill["id"], 10, transaction_id="EXT-1")

        assert resp.status_code == 409

    def test_voided_bill_rejects_payment(self, client, admin_headers, bill, pay):
        client.post(f"/api/bills/{bill['id']}/void", json={"reason": "Duplicate registration"},
                    headers=admin_headers)

        resp = pay(bill["id"], 50)

        assert resp.status_code == 409

    def test_unknown_bill(self, pay):
        assert pay(999, 10).status_code == 404


class TestVoidPayment:

    def test_void_restores_balance(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]

        resp = _void(client, admin_headers, payment["id"])

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["payment"]["status"] == "voided"
        assert data["payment"]["void_reason"] == VOID_REASON
        assert data["bill"]["amount_paid"] == 0
        assert data["bill"]["amount_due"] == 210
        assert data["bill"]["payment_status"] == "pending"

    def test_void_twice(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _void(client, admin_headers, payment["id"])

        resp = _void(client, admin_headers, payment["id"])

        assert resp.status_code == 409
        assert resp.json()["message"] == "Payment is already voided"

    def test_reason_too_short(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]

        resp = _void(client, admin_headers, payment["id"], reason="oops")

        assert resp.status_code == 422
        assert "reason" in resp.json()["errors"]

    def test_void_after_partial_refund_reverses_only_net(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _refund(client, admin_headers, payment["id"], 30)

        data = _void(client, admin_headers, payment["id"]).json()["data"]

        assert data["bill"]["amount_paid"] == 0
        assert data["bill"]["amount_due"] == 210

    def test_void_writes_audit_row(self, client, admin_headers, bill, pay, db_session):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _void(client, admin_headers, payment["id"])

        row = (db_session.query(AuditLog).filter(
            AuditLog.table_name == "payments",
            AuditLog.action == "VOID",
        ).one())
        assert row.record_id == str(payment["id"])
        assert row.reason == VOID_REASON


class TestRefund:

    def test_partial_refund_and_limit(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]

        first = _refund(client, admin_headers, payment["id"], 30)

        assert first.status_code == 201
        data = first.json()["data"]
        assert data["remaining_refundable"] == 70
        assert data["payment"]["status"] == "completed"
        assert data["bill"]["amount_paid"] == 70
        assert data["bill"]["amount_due"] == 140
        assert data["refund"]["refund_method"] == "cash"

        second = _refund(client, admin_headers, payment["id"], 80)

        assert second.status_code == 409
        assert "remaining refundable" in second.json()["message"]

    def test_full_refund_marks_payment_refunded(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _refund(client, admin_headers, payment["id"], 40)

        resp = _refund(client, admin_headers, payment["id"], 60)

        assert resp.status_code == 201
        assert resp.json()["data"]["payment"]["status"] == "refunded"
        assert resp.json()["data"]["remaining_refundable"] == 0

        # refunded is terminal
        assert _refund(client, admin_headers, payment["id"], 1).status_code == 409
        assert _void(client, admin_headers, payment["id"]).status_code == 409

    def test_voided_payment_cannot_be_refunded(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _void(client, admin_headers, payment["id"])

        assert _refund(client, admin_headers, payment["id"], 10).status_code == 409

    def test_payment_detail_lists_refunds(self, client, admin_headers, bill, pay):
        payment = pay(bill["id"], 100).json()["data"]["payment"]
        _refund(client, admin_headers, payment["id"], 25)
        _refund(client, admin_headers, payment["id"], 5)

        detail = client.get(f"/api/payments/{payment['id']}", headers=admin_headers).json()["data"]
        stats = client.get(f"/api/payments/{payment['id']}/statistics", headers=admin_headers).json()["data"]

        assert [r["refund_amount"] for r in detail["refunds"]] == [25, 5]
        assert stats["total_refunded"] == 30
        assert stats["remaining_refundable"] == 70
        assert stats["refund_count"] == 2


class TestListing:

    def test_bill_payment_statistics(self, client, admin_headers, bill, pay):
        pay(bill["id"], 50, method="cash")
        card = pay(bill["id"], 100, method="card", card_last_four="4242").json()["data"]["payment"]
        _void(client, admin_headers, card["id"])
        pay(bill["id"], 60, method="upi")

        stats = client.get(f"/api/bills/{bill['id']}/payments/statistics", headers=admin_headers).json()["data"]

        assert stats["payment_count"] == 3
        assert stats["voided_count"] == 1
        assert stats["total_collected"] == 110
        assert stats["by_method"] == {"cash": 50, "upi": 60}
        assert stats["bill"]["amount_due"] == 100

    def test_filters(self, client, admin_headers, bill, pay):
        pay(bill["id"], 50, method="cash")
        pay(bill["id"], 120, method="card")

        resp = client.get("/api/payments", params={"method": "card"}, headers=admin_headers)
        assert resp.json()["meta"]["total"] == 1
        assert resp.json()["data"][0]["amount"] == 120

        resp = client.get("/api/payments", params={"min_amount": 60}, headers=admin_headers)
        assert [p["amount"] for p in resp.json()["data"]] == [120]

        resp = client.get(f"/api/bills/{bill['id']}/payments", headers=admin_headers)
        assert resp.json()["meta"]["total"] == 2
