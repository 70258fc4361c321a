"""Authentication and permission checks on the API."""

from hms.core import permissions as P
from hms.core.config import settings
from hms.db.init_db import seed_admin_role, seed_permissions
from hms.models.permission import Permission
from hms.models.role import Role
from hms.models.user import User
from hms.utils.jwt import create_access_token


class TestAuthentication:

    def test_missing_token(self, client):
        resp = client.get("/api/bills")

        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Missing token", "errors": None}

    def test_garbage_token(self, client):
        resp = client.get("/api/bills", headers={"Authorization": "Bearer not-a-jwt"})

        assert resp.status_code == 401

    def test_expired_token(self, client, admin_user):
        token = create_access_token(admin_user.email, expires_minutes=-1)

        resp = client.get("/api/bills", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 401

    def test_unknown_user(self, client):
        token = create_access_token("ghost@hospital.test")

        assert client.get("/api/bills", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    def test_inactive_user(self, client, make_user, headers_for):
        user = make_user([P.VIEW_BILLING], active=False)

        assert client.get("/api/bills", headers=headers_for(user)).status_code == 403


class TestPermissions:

    def test_cashier_can_collect_but_not_void(self, client, make_user, headers_for, bill):
        cashier = make_user([P.VIEW_BILLING, P.VIEW_PAYMENTS, P.RECORD_PAYMENTS])
        h = headers_for(cashier)

        assert client.get(f"/api/bills/{bill['id']}", headers=h).status_code == 200
        resp = client.post(f"/api/bills/{bill['id']}/payments", json={"payment_method": "cash", "amount": 10},
                           headers=h)
        assert resp.status_code == 201

        payment_id = resp.json()["data"]["payment"]["id"]
        resp = client.post(f"/api/payments/{payment_id}/void", json={"reason": "Entered against the wrong bill"},
                           headers=h)
        assert resp.status_code == 403
        assert resp.json()["message"] == "You do not have permission to perform this action."

        assert client.post(f"/api/bills/{bill['id']}/void", json={"reason": "Duplicate registration"},
                           headers=h).status_code == 403

    def test_viewer_cannot_create_bill(self, client, make_user, headers_for, patient):
        viewer = make_user([P.VIEW_BILLING])

        resp = client.post("/api/bills", json={"patient_id": patient.id, "sub_total": 10}, headers=headers_for(viewer))

        assert resp.status_code == 403

    def test_pharmacy_roles(self, client, make_user, headers_for):
        clerk = make_user([P.VIEW_PHARMACY, P.CREATE_SALES])
        h = headers_for(clerk)

        assert client.get("/api/pharmacy/medicines", headers=h).status_code == 200
        assert client.post("/api/pharmacy/medicines", json={"medicine_code": "X1", "name": "X"},
                           headers=h).status_code == 403

    def test_me_lists_permissions(self, client, make_user, headers_for):
        user = make_user([P.VIEW_CLAIMS, P.SUBMIT_CLAIMS])

        data = client.get("/api/system/me", headers=headers_for(user)).json()["data"]

        assert data["is_admin"] is False
        assert data["permissions"] == sorted([P.VIEW_CLAIMS, P.SUBMIT_CLAIMS])

    def test_admin_bypasses_role_checks(self, client, admin_headers):
        assert client.get("/api/reports/outstanding", headers=admin_headers).status_code == 200

    def test_administrator_role_with_all_access(self, client, db_session, headers_for, monkeypatch):
        role = Role(name=P.ADMIN_ROLE)
        user = User(name="Billing Head", email="head@hospital.test", is_active=True)
        user.roles = [role]
        db_session.add_all([role, user])
        db_session.commit()

        assert client.get("/api/reports/outstanding", headers=headers_for(user)).status_code == 403

        monkeypatch.setattr(settings, "ADMIN_ALL_ACCESS", True)
        resp = client.get("/api/reports/outstanding", headers=headers_for(user))

        assert resp.status_code == 200


class TestSeeding:

    def test_seed_is_idempotent(self, db_session):
        first = seed_permissions(db_session)
        second = seed_permissions(db_session)
        db_session.commit()

        assert first == len(P.all_codes())
        assert second == 0
        perm = db_session.query(Permission).filter(Permission.code == P.PROCESS_REFUNDS).one()
        assert perm.label == "Process Refunds"
        assert perm.module == "payments"

    def test_admin_role_gets_every_permission(self, db_session):
        seed_permissions(db_session)
        role = seed_admin_role(db_session)
        db_session.commit()

        assert {p.code for p in role.permissions} == set(P.all_codes())


def test_health(client):
    resp = client.get("/api/system/health")

    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "ok", "database": "ok"}
