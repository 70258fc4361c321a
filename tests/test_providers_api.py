"""Insurance provider catalogue."""

from hms.core import permissions as P


def _create(client, headers, **overrides):
    body = {
        "name": "Care Assure",
        "code": "care",
        "email": "claims@careassure.in",
        "coverage_types": ["inpatient", "pharmacy"],
        "max_coverage_amount": 500000,
        "address": {"city": "Coimbatore", "country": "IN"},
    }
    body.update(overrides)
    return client.post("/api/insurance-providers", json=body, headers=headers)


class TestProviders:

    def test_create_normalizes_code(self, client, admin_headers):
        resp = _create(client, admin_headers)

        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["code"] == "CARE"
        assert data["email"] == "claims@careassure.in"
        assert data["coverage_types"] == ["inpatient", "pharmacy"]
        assert data["address"] == {"city": "Coimbatore", "country": "IN"}
        assert "api_key" not in data

    def test_duplicate_name_and_code(self, client, admin_headers):
        _create(client, admin_headers)

        by_name = _create(client, admin_headers, code="OTHER")
        by_code = _create(client, admin_headers, name="Another Name", code="Care")

        assert by_name.status_code == 409
        assert by_name.json()["message"] == "Insurance provider name already exists"
        assert by_code.status_code == 409
        assert by_code.json()["message"] == "Insurance provider code already exists"

    def test_malformed_email(self, client, admin_headers):
        resp = _create(client, admin_headers, email="claims-at-careassure")

        assert resp.status_code == 422
        assert "email" in resp.json()["errors"]

    def test_unknown_coverage_type(self, client, admin_headers):
        resp = _create(client, admin_headers, coverage_types=["cosmetic"])

        assert resp.status_code == 422

    def test_search_and_active_list(self, client, admin_headers, provider):
        care = _create(client, admin_headers).json()["data"]
        client.post(f"/api/insurance-providers/{provider.id}/toggle-status", headers=admin_headers)

        found = client.get("/api/insurance-providers", params={"q": "assure"}, headers=admin_headers).json()
        active = client.get("/api/insurance-providers/active", headers=admin_headers).json()["data"]

        assert found["meta"]["total"] == 1
        assert found["data"][0]["id"] == care["id"]
        assert [p["id"] for p in active] == [care["id"]]

    def test_toggle_status(self, client, admin_headers, provider):
        resp = client.post(f"/api/insurance-providers/{provider.id}/toggle-status", headers=admin_headers)

        assert resp.json()["data"]["is_active"] is False
        assert resp.json()["message"] == "Insurance provider deactivated"

    def test_update(self, client, admin_headers, provider):
        resp = client.put(f"/api/insurance-providers/{provider.id}", json={"phone": "0422-555000"},
                          headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["phone"] == "0422-555000"
        assert resp.json()["data"]["code"] == "STAR"

    def test_delete_guarded_by_policies(self, client, admin_headers, provider, policy):
        resp = client.delete(f"/api/insurance-providers/{provider.id}", headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json()["message"] == "Cannot delete provider with active patient policies"

    def test_delete_unused(self, client, admin_headers):
        pid = _create(client, admin_headers).json()["data"]["id"]

        assert client.delete(f"/api/insurance-providers/{pid}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/insurance-providers/{pid}", headers=admin_headers).status_code == 404

    def test_statistics(self, client, admin_headers, create_bill, provider, policy):
        bill = create_bill(sub_total=500, tax=0, discount=0)
        claim = client.post(f"/api/bills/{bill['id']}/insurance-claims",
                            json={"patient_insurance_id": policy.id, "claim_amount": 400},
                            headers=admin_headers).json()["data"]
        client.post(f"/api/insurance-claims/{claim['id']}/submit", headers=admin_headers)
        client.put(f"/api/insurance-claims/{claim['id']}", json={"status": "approved", "approved_amount": 300},
                   headers=admin_headers)

        stats = client.get(f"/api/insurance-providers/{provider.id}/statistics", headers=admin_headers).json()["data"]

        assert stats["total_policies"] == 1
        assert stats["active_policies"] == 1
        assert stats["primary_policies"] == 1
        assert stats["claims_by_status"] == {"approved": 1}
        assert stats["total_claimed"] == 400
        assert stats["total_approved"] == 300
        assert stats["approval_rate"] == 75

    def test_requires_provider_permission(self, client, make_user, headers_for):
        viewer = make_user([P.VIEW_PROVIDERS])

        assert client.get("/api/insurance-providers", headers=headers_for(viewer)).status_code == 200
        resp = _create(client, headers_for(viewer))
        assert resp.status_code == 403
        assert resp.json()["message"] == f"You do not have permission: {P.CREATE_PROVIDERS}"
