"""Patient insurance policies: primary handling, balances and coverage."""

from datetime import date, timedelta

import pytest


@pytest.fixture
def add_policy(client, admin_headers, patient, provider):
    def _add(**overrides):
        body = {
            "insurance_provider_id": provider.id,
            "policy_number": "POL-2001",
            "coverage_start_date": (date.today() - timedelta(days=1)).isoformat(),
            "deductible_amount": 100,
            "deductible_met": 40,
            "co_pay_percentage": 20,
            "annual_max_coverage": 1000,
        }
        body.update(overrides)
        return client.post(f"/api/patients/{patient.id}/insurance", json=body, headers=admin_headers)

    return _add


class TestCreatePolicy:

    def test_create(self, add_policy):
        resp = add_policy()

        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["policy_number"] == "POL-2001"
        assert data["priority_order"] == 1
        assert data["relationship_to_patient"] == "self"
        assert data["is_primary"] is False

    def test_priority_follows_existing_policies(self, add_policy):
        add_policy(policy_number="A-1")

        second = add_policy(policy_number="A-2").json()["data"]

        assert second["priority_order"] == 2

    def test_duplicate(self, add_policy):
        add_policy()

        resp = add_policy()

        assert resp.status_code == 409
        assert resp.json()["message"] == "This insurance policy already exists for this patient"

    def test_end_before_start(self, add_policy):
        resp = add_policy(coverage_start_date="2025-06-01", coverage_end_date="2025-05-01")

        assert resp.status_code == 422

    def test_unknown_patient(self, client, admin_headers, provider):
        resp = client.get("/api/patients/999/insurance", headers=admin_headers)

        assert resp.status_code == 404

    def test_deductible_met_clamped_to_deductible(self, add_policy):
        data = add_policy(deductible_amount=100, deductible_met=250).json()["data"]

        assert data["deductible_met"] == 100


class TestPrimary:

    def test_only_one_primary(self, client, admin_headers, patient, add_policy):
        first = add_policy(policy_number="P-1", is_primary=True).json()["data"]
        second = add_policy(policy_number="P-2", is_primary=True).json()["data"]

        rows = client.get(f"/api/patients/{patient.id}/insurance", headers=admin_headers).json()["data"]
        primaries = [r["id"] for r in rows if r["is_primary"]]

        assert primaries == [second["id"]]
        assert first["id"] in [r["id"] for r in rows]

    def test_set_primary_reorders(self, client, admin_headers, patient, add_policy):
        first = add_policy(policy_number="P-1", is_primary=True).json()["data"]
        second = add_policy(policy_number="P-2").json()["data"]

        resp = client.post(f"/api/patient-insurance/{second['id']}/set-primary", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["priority_order"] == 1
        rows = {r["id"]: r for r in
                client.get(f"/api/patients/{patient.id}/insurance", headers=admin_headers).json()["data"]}
        assert rows[second["id"]]["is_primary"] is True
        assert rows[first["id"]]["is_primary"] is False
        assert rows[first["id"]]["priority_order"] == 2

    def test_filter_primary(self, client, admin_headers, patient, add_policy):
        add_policy(policy_number="P-1", is_primary=True)
        add_policy(policy_number="P-2")

        rows = client.get(f"/api/patients/{patient.id}/insurance", params={"primary": True},
                          headers=admin_headers).json()["data"]

        assert [r["policy_number"] for r in rows] == ["P-1"]


class TestBalances:

    def _deductible(self, client, headers, pid, amount, op):
        return client.post(f"/api/patient-insurance/{pid}/update-deductible",
                           json={"amount": amount, "operation": op}, headers=headers)

    def test_deductible_operations(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        data = self._deductible(client, admin_headers, pid, 30, "add").json()["data"]
        assert data == {"deductible_met": 70, "deductible_remaining": 30}

        data = self._deductible(client, admin_headers, pid, 500, "add").json()["data"]
        assert data["deductible_met"] == 100
        assert data["deductible_remaining"] == 0

        data = self._deductible(client, admin_headers, pid, 500, "subtract").json()["data"]
        assert data["deductible_met"] == 0

        data = self._deductible(client, admin_headers, pid, 25, "set").json()["data"]
        assert data["deductible_met"] == 25

    def test_unknown_operation(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        assert self._deductible(client, admin_headers, pid, 10, "multiply").status_code == 422

    def test_annual_used(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        resp = client.post(f"/api/patient-insurance/{pid}/update-annual-used",
                           json={"amount": 900, "operation": "set"}, headers=admin_headers)

        assert resp.json()["data"] == {"annual_used_amount": 900, "annual_remaining": 100}

    def test_annual_used_without_cap(self, client, admin_headers, add_policy):
        pid = add_policy(annual_max_coverage=None).json()["data"]["id"]

        resp = client.post(f"/api/patient-insurance/{pid}/update-annual-used",
                           json={"amount": 50, "operation": "add"}, headers=admin_headers)

        assert resp.json()["data"]["annual_remaining"] is None


class TestCoverageEndpoints:

    def test_calculate_coverage(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        data = client.post(f"/api/patient-insurance/{pid}/calculate-coverage", json={"amount": 500},
                           headers=admin_headers).json()["data"]

        assert data["deductible_applied"] == 60
        assert data["co_pay_amount"] == 88
        assert data["insurance_coverage"] == 352
        assert data["patient_responsibility"] == 148

    def test_calculate_after_cap_mostly_used(self, client, admin_headers, add_policy):
        pid = add_policy(annual_used_amount=900).json()["data"]["id"]

        data = client.post(f"/api/patient-insurance/{pid}/calculate-coverage", json={"amount": 500},
                           headers=admin_headers).json()["data"]

        assert data["insurance_coverage"] == 100
        assert data["patient_responsibility"] == 400

    def test_amount_must_be_positive(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        resp = client.post(f"/api/patient-insurance/{pid}/calculate-coverage", json={"amount": 0},
                           headers=admin_headers)

        assert resp.status_code == 422

    def test_validate(self, client, admin_headers, add_policy):
        pid = add_policy(coverage_start_date="2020-01-01", coverage_end_date="2021-01-01").json()["data"]["id"]

        data = client.get(f"/api/patient-insurance/{pid}/validate", headers=admin_headers).json()["data"]

        assert data["is_valid"] is False
        assert data["is_expired"] is True


class TestUpdateAndDelete:

    def test_update(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        resp = client.put(f"/api/patient-insurance/{pid}", json={"co_pay_amount": 25, "notes": "corporate plan"},
                          headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["co_pay_amount"] == 25

    def test_update_dates_checked_against_stored_values(self, client, admin_headers, add_policy):
        pid = add_policy(coverage_start_date="2025-01-01").json()["data"]["id"]

        resp = client.put(f"/api/patient-insurance/{pid}", json={"coverage_end_date": "2024-12-31"},
                          headers=admin_headers)

        assert resp.status_code == 422

    @pytest.mark.parametrize("field", ["coverage_start_date", "policy_number", "deductible_amount", "is_active"])
    def test_required_fields_cannot_be_cleared(self, client, admin_headers, add_policy, field):
        pid = add_policy().json()["data"]["id"]

        resp = client.put(f"/api/patient-insurance/{pid}", json={field: None}, headers=admin_headers)

        assert resp.status_code == 422
        assert field in resp.json()["errors"]
        detail = client.get(f"/api/patient-insurance/{pid}", headers=admin_headers).json()["data"]
        assert detail["policy_number"] == "POL-2001"

    def test_optional_fields_can_be_cleared(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        resp = client.put(f"/api/patient-insurance/{pid}", json={"annual_max_coverage": None, "notes": None},
                          headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["annual_max_coverage"] is None

    def test_detail_has_claim_statistics(self, client, admin_headers, policy):
        data = client.get(f"/api/patient-insurance/{policy.id}", headers=admin_headers).json()["data"]

        assert data["provider_name"] == "Star Health"
        assert data["claim_statistics"]["total_claims"] == 0

    def test_delete(self, client, admin_headers, add_policy):
        pid = add_policy().json()["data"]["id"]

        assert client.delete(f"/api/patient-insurance/{pid}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/patient-insurance/{pid}", headers=admin_headers).status_code == 404

    def test_delete_with_claims(self, client, admin_headers, create_bill, policy):
        bill = create_bill()
        client.post(f"/api/bills/{bill['id']}/insurance-claims",
                    json={"patient_insurance_id": policy.id, "claim_amount": 100},
                    headers=admin_headers)

        resp = client.delete(f"/api/patient-insurance/{policy.id}", headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json()["message"] == "Cannot delete insurance with existing claims"
