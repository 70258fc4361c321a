"""Pytest configuration and fixtures for the billing, insurance and pharmacy API."""

import os
import tempfile

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="hms-test-storage-"))
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key")
os.environ.setdefault("BILLING_DEFAULT_TAX", "0")

from datetime import date, timedelta  # noqa: E402
from typing import Callable, Dict, Generator, Iterable  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from hms.api.deps import get_db  # noqa: E402
from hms.core.config import settings  # noqa: E402
from hms.db.base import Base  # noqa: E402
from hms.db.init_db import seed_permissions  # noqa: E402
from hms.main import app  # noqa: E402
from hms.models.insurance import InsuranceProvider, PatientInsurance  # noqa: E402
from hms.models.patient import Patient  # noqa: E402
from hms.models.permission import Permission  # noqa: E402
from hms.models.role import Role  # noqa: E402
from hms.models.user import User  # noqa: E402
from hms.utils.jwt import create_access_token  # noqa: E402


@pytest.fixture
def engine():
    """Fresh in-memory database per test, shared by every session through StaticPool."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session used by fixtures and assertions; fixtures always commit."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def storage_dir(tmp_path, monkeypatch):
    path = tmp_path / "storage"
    path.mkdir()
    monkeypatch.setattr(settings, "STORAGE_DIR", str(path))
    return path


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    def _get_test_db():
        db = session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------- users ----------

def _auth(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest.fixture
def admin_user(db_session) -> User:
    user = User(name="Billing Admin", email="admin@hospital.test", is_admin=True, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_headers(admin_user) -> Dict[str, str]:
    return _auth(admin_user)


@pytest.fixture
def make_user(db_session) -> Callable[..., User]:
    """Create a non-admin user holding a role with exactly the given permission codes."""
    seed_permissions(db_session)
    db_session.commit()
    counter = {"n": 0}

    def _make(codes: Iterable[str], *, active: bool = True) -> User:
        counter["n"] += 1
        n = counter["n"]
        role = Role(name=f"Test Role {n}")
        role.permissions = db_session.query(Permission).filter(Permission.code.in_(list(codes))).all()
        user = User(name=f"Staff {n}", email=f"staff{n}@hospital.test", is_active=active)
        user.roles = [role]
        db_session.add_all([role, user])
        db_session.commit()
        return user

    return _make


@pytest.fixture
def headers_for() -> Callable[[User], Dict[str, str]]:
    return _auth


# ---------- domain data ----------

@pytest.fixture
def patient(db_session) -> Patient:
    p = Patient(uhid="UH000001", first_name="Asha", last_name="Raman", gender="female")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def other_patient(db_session) -> Patient:
    p = Patient(uhid="UH000002", first_name="Karthik", last_name="Iyer")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def provider(db_session) -> InsuranceProvider:
    p = InsuranceProvider(name="Star Health", code="STAR", coverage_types=["inpatient", "outpatient"], is_active=True)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def policy(db_session, patient, provider) -> PatientInsurance:
    """deductible 100 (40 met), 20% co-pay, 1000 annual cap, nothing used yet."""
    pol = PatientInsurance(
        patient_id=patient.id,
        insurance_provider_id=provider.id,
        policy_number="POL-1001",
        relationship_to_patient="self",
        coverage_start_date=date.today() - timedelta(days=30),
        coverage_end_date=date.today() + timedelta(days=335),
        co_pay_amount=0,
        co_pay_percentage=20,
        deductible_amount=100,
        deductible_met=40,
        annual_max_coverage=1000,
        annual_used_amount=0,
        is_primary=True,
        priority_order=1,
        is_active=True,
    )
    db_session.add(pol)
    db_session.commit()
    return pol


@pytest.fixture
def create_bill(client, admin_headers, patient) -> Callable[..., dict]:
    def _create(**overrides) -> dict:
        body = {"patient_id": patient.id, "sub_total": 200, "tax": 20, "discount": 10}
        body.update(overrides)
        resp = client.post("/api/bills", json=body, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _create


@pytest.fixture
def bill(create_bill) -> dict:
    """sub_total 200 + tax 20 - discount 10 = 210"""
    return create_bill()


@pytest.fixture
def pay(client, admin_headers) -> Callable[..., dict]:
    def _pay(bill_id: int, amount, method: str = "cash", **extra):
        body = {"payment_method": method, "amount": amount}
        body.update(extra)
        return client.post(f"/api/bills/{bill_id}/payments", json=body, headers=admin_headers)

    return _pay
