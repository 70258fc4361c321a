"""Pharmacy stock ledger: medicines, sales, purchases and adjustments."""

from datetime import date, timedelta

import pytest


@pytest.fixture
def add_medicine(client, admin_headers):
    counter = {"n": 0}

    def _add(**overrides):
        counter["n"] += 1
        body = {
            "medicine_code": f"med-{counter['n']:03d}",
            "name": f"Paracetamol {counter['n']}",
            "form": "tablet",
            "cost_price": 1.5,
            "sale_price": 2.5,
            "stock_quantity": 100,
            "reorder_level": 10,
        }
        body.update(overrides)
        resp = client.post("/api/pharmacy/medicines", json=body, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _add


@pytest.fixture
def supplier(client, admin_headers):
    resp = client.post("/api/pharmacy/suppliers", json={"name": "Kovai Pharma Distributors"}, headers=admin_headers)
    assert resp.status_code == 201
    return resp.json()["data"]


def _stock(client, headers, medicine_id):
    return client.get(f"/api/pharmacy/medicines/{medicine_id}", headers=headers).json()["data"]


def _sell(client, headers, items, **extra):
    body = {"items": items}
    body.update(extra)
    return client.post("/api/pharmacy/sales", json=body, headers=headers)


class TestMedicines:

    def test_opening_stock_is_a_movement(self, client, admin_headers, add_medicine):
        med = add_medicine()

        assert med["medicine_code"] == "MED-001"
        assert med["stock_quantity"] == 100
        detail = _stock(client, admin_headers, med["id"])
        assert len(detail["recent_movements"]) == 1
        mv = detail["recent_movements"][0]
        assert mv["type"] == "in"
        assert mv["reference_type"] == "adjustment"
        assert (mv["previous_stock"], mv["new_stock"]) == (0, 100)

    def test_duplicate_code(self, client, admin_headers, add_medicine):
        add_medicine(medicine_code="AMOX-500")

        resp = client.post("/api/pharmacy/medicines",
                           json={"medicine_code": "amox-500", "name": "Amoxicillin"},
                           headers=admin_headers)

        assert resp.status_code == 409

    def test_adjust_stock(self, client, admin_headers, add_medicine):
        med = add_medicine()

        resp = client.post(f"/api/pharmacy/medicines/{med['id']}/adjust-stock",
                           json={"new_quantity": 95, "reason": "Monthly count, 5 strips damaged"},
                           headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["stock_quantity"] == 95
        mv = _stock(client, admin_headers, med["id"])["recent_movements"][0]
        assert mv["type"] == "out"
        assert mv["quantity"] == 5
        assert mv["notes"] == "Monthly count, 5 strips damaged"

    def test_adjust_to_same_quantity_writes_nothing(self, client, admin_headers, add_medicine):
        med = add_medicine()

        client.post(f"/api/pharmacy/medicines/{med['id']}/adjust-stock",
                    json={"new_quantity": 100, "reason": "Count matches"}, headers=admin_headers)

        assert len(_stock(client, admin_headers, med["id"])["recent_movements"]) == 1

    def test_low_stock_and_expiry_alerts(self, client, admin_headers, add_medicine):
        low = add_medicine(stock_quantity=5, reorder_level=10)
        soon = add_medicine(expiry_date=(date.today() + timedelta(days=30)).isoformat())
        gone = add_medicine(expiry_date=(date.today() - timedelta(days=3)).isoformat())
        add_medicine(expiry_date=(date.today() + timedelta(days=400)).isoformat())

        low_ids = [m["id"] for m in client.get("/api/pharmacy/medicines/low-stock",
                                               headers=admin_headers).json()["data"]]
        alerts = client.get("/api/pharmacy/alerts", headers=admin_headers).json()["data"]

        assert low_ids == [low["id"]]
        assert [m["id"] for m in alerts["expiring_soon"]] == [soon["id"]]
        assert [m["id"] for m in alerts["expired"]] == [gone["id"]]


class TestSales:

    def test_sale_deducts_stock(self, client, admin_headers, add_medicine, patient):
        a = add_medicine()
        b = add_medicine(sale_price=10)

        resp = _sell(client, admin_headers,
                     [{"medicine_id": a["id"], "quantity": 4}, {"medicine_id": b["id"], "quantity": 2}],
                     patient_id=patient.id, tax_amount=1, discount_amount=2, payment_method="cash")

        assert resp.status_code == 201
        sale = resp.json()["data"]
        assert sale["sale_number"].startswith("PHS")
        assert sale["sub_total"] == 30
        assert sale["grand_total"] == 29
        assert _stock(client, admin_headers, a["id"])["stock_quantity"] == 96
        assert _stock(client, admin_headers, b["id"])["stock_quantity"] == 98

        mv = _stock(client, admin_headers, a["id"])["recent_movements"][0]
        assert (mv["type"], mv["reference_type"], mv["reference_id"]) == ("out", "sale", sale["id"])

    def test_insufficient_stock_changes_nothing(self, client, admin_headers, add_medicine):
        a = add_medicine(stock_quantity=50)
        b = add_medicine(stock_quantity=3)

        resp = _sell(client, admin_headers,
                     [{"medicine_id": a["id"], "quantity": 10}, {"medicine_id": b["id"], "quantity": 5}])

        assert resp.status_code == 409
        assert resp.json()["message"].startswith("Insufficient stock")
        assert _stock(client, admin_headers, a["id"])["stock_quantity"] == 50
        assert _stock(client, admin_headers, b["id"])["stock_quantity"] == 3

    def test_repeated_lines_are_checked_together(self, client, admin_headers, add_medicine):
        a = add_medicine(stock_quantity=5)

        resp = _sell(client, admin_headers,
                     [{"medicine_id": a["id"], "quantity": 3}, {"medicine_id": a["id"], "quantity": 3}])

        assert resp.status_code == 409

    def test_unknown_medicine(self, client, admin_headers):
        assert _sell(client, admin_headers, [{"medicine_id": 999, "quantity": 1}]).status_code == 404

    def test_empty_basket(self, client, admin_headers):
        assert _sell(client, admin_headers, []).status_code == 422

    def test_cancel_restores_stock_once(self, client, admin_headers, add_medicine):
        a = add_medicine()
        sale = _sell(client, admin_headers, [{"medicine_id": a["id"], "quantity": 7}]).json()["data"]

        resp = client.post(f"/api/pharmacy/sales/{sale['id']}/void", json={"reason": "Patient returned"},
                           headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "cancelled"
        assert _stock(client, admin_headers, a["id"])["stock_quantity"] == 100
        mv = _stock(client, admin_headers, a["id"])["recent_movements"][0]
        assert (mv["type"], mv["reference_type"]) == ("in", "return")

        again = client.post(f"/api/pharmacy/sales/{sale['id']}/void", headers=admin_headers)
        assert again.status_code == 409
        assert _stock(client, admin_headers, a["id"])["stock_quantity"] == 100


class TestPurchases:

    def _purchase(self, client, headers, supplier, items, **extra):
        body = {"supplier_id": supplier["id"], "items": items}
        body.update(extra)
        resp = client.post("/api/pharmacy/purchases", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    def test_receive_adds_stock_and_updates_cost(self, client, admin_headers, add_medicine, supplier):
        a = add_medicine(stock_quantity=0)
        p = self._purchase(client, admin_headers, supplier,
                           [{"medicine_id": a["id"], "quantity": 50, "cost_price": 5, "batch_number": "B-77",
                             "expiry_date": "2030-01-31"}], tax=10)

        assert p["purchase_number"].startswith("PUR")
        assert p["subtotal"] == 250
        assert p["total"] == 260
        assert p["status"] == "pending"

        client.post(f"/api/pharmacy/purchases/{p['id']}/order", headers=admin_headers)
        resp = client.post(f"/api/pharmacy/purchases/{p['id']}/receive", headers=admin_headers)

        assert resp.json()["data"]["status"] == "received"
        med = _stock(client, admin_headers, a["id"])
        assert med["stock_quantity"] == 50
        assert med["cost_price"] == 5
        assert med["batch_number"] == "B-77"
        assert med["expiry_date"] == "2030-01-31"

    def test_receive_twice(self, client, admin_headers, add_medicine, supplier):
        a = add_medicine()
        p = self._purchase(client, admin_headers, supplier, [{"medicine_id": a["id"], "quantity": 5, "cost_price": 1}])
        client.post(f"/api/pharmacy/purchases/{p['id']}/receive", headers=admin_headers)

        assert client.post(f"/api/pharmacy/purchases/{p['id']}/receive", headers=admin_headers).status_code == 409

    def test_cancel_received_purchase_never_goes_negative(self, client, admin_headers, add_medicine, supplier):
        a = add_medicine(stock_quantity=0)
        p = self._purchase(client, admin_headers, supplier, [{"medicine_id": a["id"], "quantity": 20, "cost_price": 2}])
        client.post(f"/api/pharmacy/purchases/{p['id']}/receive", headers=admin_headers)
        _sell(client, admin_headers, [{"medicine_id": a["id"], "quantity": 15}])

        resp = client.post(f"/api/pharmacy/purchases/{p['id']}/cancel", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "cancelled"
        med = _stock(client, admin_headers, a["id"])
        assert med["stock_quantity"] == 0
        mv = med["recent_movements"][0]
        assert (mv["reference_type"], mv["quantity"]) == ("purchase_cancellation", 5)

        assert client.post(f"/api/pharmacy/purchases/{p['id']}/cancel", headers=admin_headers).status_code == 409

    def test_cancel_pending_purchase_leaves_stock(self, client, admin_headers, add_medicine, supplier):
        a = add_medicine()
        p = self._purchase(client, admin_headers, supplier, [{"medicine_id": a["id"], "quantity": 20, "cost_price": 2}])

        client.post(f"/api/pharmacy/purchases/{p['id']}/cancel", headers=admin_headers)

        assert _stock(client, admin_headers, a["id"])["stock_quantity"] == 100

    def test_movement_listing_by_reference(self, client, admin_headers, add_medicine, supplier):
        a = add_medicine()
        p = self._purchase(client, admin_headers, supplier, [{"medicine_id": a["id"], "quantity": 5, "cost_price": 1}])
        client.post(f"/api/pharmacy/purchases/{p['id']}/receive", headers=admin_headers)

        resp = client.get("/api/pharmacy/stock-movements", params={"reference_type": "purchase"},
                          headers=admin_headers)

        assert resp.json()["meta"]["total"] == 1
        assert resp.json()["data"][0]["new_stock"] == 105

    def test_duplicate_supplier(self, client, admin_headers, supplier):
        resp = client.post("/api/pharmacy/suppliers", json={"name": supplier["name"]}, headers=admin_headers)

        assert resp.status_code == 409
