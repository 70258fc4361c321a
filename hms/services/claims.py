# FILE: hms/services/claims.py
"""
Insurance claim lifecycle: creation, edits and decisions, submission,
supporting documents and posting of the insurer's response to the bill.
"""
from __future__ import annotations

import base64
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.core.config import settings
from hms.models.billing import Payment, PaymentMethod, PaymentStatus
from hms.models.insurance import ClaimStatus, InsuranceClaim, PatientInsurance
from hms.models.user import User
from hms.schemas.insurance import ClaimCreate
from hms.services.audit_logger import log_audit, snapshot
from hms.services.billing_math import D0, _d, _q2
from hms.services.billing_numbers import next_number
from hms.services.bills import ensure_bill_open, get_bill_or_404
from hms.services.coverage import calculate_coverage, validate_policy
from hms.services.payments import post_payment
from hms.services.workflow import (
    CLAIM_APPROVED,
    CLAIM_FINAL,
    CLAIM_OPEN,
    CLAIM_RESOLVED,
    CLAIM_SUBMITTABLE,
    CLAIM_TRANSITIONS,
    ensure_transition,
)
from hms.utils.files import delete_dir_if_empty, delete_stored, read_stored, save_upload

logger = logging.getLogger(__name__)

CLAIM_AUDIT_FIELDS = (
    "claim_number",
    "bill_id",
    "patient_insurance_id",
    "claim_amount",
    "approved_amount",
    "status",
    "rejection_reason",
)


def _uid(user: Optional[User]) -> Optional[int]:
    return getattr(user, "id", None)


def claim_storage_dir(claim_id: int) -> str:
    return f"insurance_claims/{int(claim_id)}"


def get_claim_or_404(db: Session, claim_id: int, *, lock: bool = False) -> InsuranceClaim:
    q = db.query(InsuranceClaim).filter(InsuranceClaim.id == int(claim_id))
    if lock:
        q = q.with_for_update().populate_existing()
    claim = q.one_or_none()
    if not claim:
        raise HTTPException(status_code=404, detail="Insurance claim not found")
    return claim


def _open_claim_for_bill(db: Session, bill_id: int) -> Optional[InsuranceClaim]:
    return (db.query(InsuranceClaim).filter(
        InsuranceClaim.bill_id == int(bill_id),
        InsuranceClaim.status.in_(list(CLAIM_OPEN)),
    ).first())


def create_claim(db: Session, *, bill_id: int, inp: ClaimCreate, user: User) -> InsuranceClaim:
    # bill row lock serializes concurrent claim creation for the same bill
    bill = get_bill_or_404(db, bill_id, lock=True)
    ensure_bill_open(bill, "Cannot create a claim for a voided bill")

    if _open_claim_for_bill(db, bill.id):
        raise HTTPException(status_code=409,
                            detail="Bill already has a pending insurance claim")

    policy = db.get(PatientInsurance, int(inp.patient_insurance_id))
    if not policy:
        raise HTTPException(status_code=404, detail="Patient insurance not found")
    if int(policy.patient_id) != int(bill.patient_id):
        raise HTTPException(status_code=422,
                            detail="Insurance policy does not belong to the bill's patient")

    if inp.claim_number:
        taken = db.query(InsuranceClaim.id).filter(
            InsuranceClaim.claim_number == inp.claim_number).first()
        if taken:
            raise HTTPException(status_code=409, detail="Claim number already exists")
        claim_number = inp.claim_number
    else:
        claim_number = next_number(db, prefix="CLM", padding=5)

    claim = InsuranceClaim(
        claim_number=claim_number,
        bill_id=bill.id,
        patient_insurance_id=policy.id,
        claim_amount=_q2(inp.claim_amount),
        notes=inp.notes,
        status=ClaimStatus.DRAFT,
        documents=[],
        created_by=_uid(user),
    )
    db.add(claim)
    db.flush()

    log_audit(db,
              user_id=_uid(user),
              action="CREATE",
              table_name="insurance_claims",
              record_id=claim.id,
              new_values=snapshot(claim, CLAIM_AUDIT_FIELDS))
    logger.info("Claim %s created for bill %s", claim.claim_number, bill.bill_number)
    return claim


def _settled_amount(db: Session, claim_id: int) -> Decimal:
    s = (db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.insurance_claim_id == int(claim_id),
        Payment.status != PaymentStatus.VOIDED,
    ).scalar())
    return _q2(s)


def process_claim_response(db: Session, claim: InsuranceClaim, user: User) -> Dict[str, Any]:
    """
    Apply an insurer decision to the bill and policy.

    Approved amounts are posted as an insurance payment on the bill (only the part
    not posted yet) and added to the policy's annual_used_amount.
    Rejections change nothing on the bill.
    """
    if claim.status not in CLAIM_RESOLVED:
        return {"posted_amount": D0, "payment_id": None}

    if claim.status not in CLAIM_APPROVED:
        logger.info("Claim %s rejected: %s", claim.claim_number, claim.rejection_reason)
        return {"posted_amount": D0, "payment_id": None}

    delta = _q2(_d(claim.approved_amount) - _settled_amount(db, claim.id))
    if delta <= D0:
        return {"posted_amount": D0, "payment_id": None}

    bill = get_bill_or_404(db, claim.bill_id, lock=True)
    ensure_bill_open(bill, "Cannot apply an insurance response to a voided bill")

    payment = post_payment(
        db,
        bill,
        amount=delta,
        method=PaymentMethod.INSURANCE,
        user=user,
        insurance_claim_id=claim.id,
        reference_number=claim.claim_number,
        notes=f"Insurance claim {claim.claim_number} ({claim.status.value})",
    )

    policy = (db.query(PatientInsurance).filter(
        PatientInsurance.id == claim.patient_insurance_id).with_for_update().populate_existing().one())
    policy.annual_used_amount = _q2(_d(policy.annual_used_amount) + delta)
    db.flush()

    logger.info("Claim %s posted %s to bill %s", claim.claim_number, delta, bill.bill_number)
    return {"posted_amount": delta, "payment_id": payment.id}


def ensure_policy_submittable(policy: PatientInsurance):
    """Blocking policy errors stop a claim from entering `submitted`, whatever the route."""
    validation = validate_policy(policy)
    if not validation.is_valid:
        raise HTTPException(status_code=409,
                            detail="Insurance is not valid: " + "; ".join(validation.errors))
    return validation


def update_claim(db: Session, *, claim_id: int, data: Dict[str, Any], user: User):
    claim = get_claim_or_404(db, claim_id, lock=True)
    if claim.status in CLAIM_FINAL:
        raise HTTPException(status_code=409, detail="Finalized claims cannot be edited")

    old = snapshot(claim, CLAIM_AUDIT_FIELDS)
    target = data.get("status")
    target = ClaimStatus(target) if target is not None else claim.status

    if data.get("approved_amount") is not None and target not in CLAIM_APPROVED:
        raise HTTPException(status_code=422,
                            detail="approved_amount can only be set when approving a claim")

    if "claim_amount" in data and data["claim_amount"] is not None:
        claim.claim_amount = _q2(data["claim_amount"])
    if "notes" in data:
        claim.notes = data["notes"]

    if target != claim.status:
        ensure_transition(CLAIM_TRANSITIONS, claim.status, target, what="Claim")
        if target == ClaimStatus.SUBMITTED:
            ensure_policy_submittable(claim.policy)

        if target in CLAIM_APPROVED:
            approved = _q2(data["approved_amount"])
            if approved > _d(claim.claim_amount):
                raise HTTPException(status_code=422,
                                    detail="approved_amount cannot exceed claim_amount")
            claim.approved_amount = approved
            claim.approval_date = datetime.utcnow()
            claim.processed_by = _uid(user)
        elif target == ClaimStatus.REJECTED:
            claim.rejection_reason = data["rejection_reason"].strip()
            claim.processed_by = _uid(user)
        elif target == ClaimStatus.SUBMITTED and claim.submission_date is None:
            claim.submission_date = datetime.utcnow()
            claim.submitted_by = _uid(user)

        claim.status = target

    db.flush()
    response = process_claim_response(db, claim, user)

    log_audit(db,
              user_id=_uid(user),
              action="UPDATE",
              table_name="insurance_claims",
              record_id=claim.id,
              old_values=old,
              new_values=snapshot(claim, CLAIM_AUDIT_FIELDS))
    return claim, response


def submit_claim(db: Session, *, claim_id: int, user: User):
    claim = get_claim_or_404(db, claim_id, lock=True)
    if claim.status not in CLAIM_SUBMITTABLE:
        raise HTTPException(status_code=409,
                            detail="Only draft or pending claims can be submitted")

    policy = claim.policy
    validation = ensure_policy_submittable(policy)

    ensure_transition(CLAIM_TRANSITIONS, claim.status, ClaimStatus.SUBMITTED, what="Claim")
    old = snapshot(claim, CLAIM_AUDIT_FIELDS)
    claim.status = ClaimStatus.SUBMITTED
    claim.submission_date = datetime.utcnow()
    claim.submitted_by = _uid(user)
    db.flush()

    log_audit(db,
              user_id=_uid(user),
              action="SUBMIT",
              table_name="insurance_claims",
              record_id=claim.id,
              old_values=old,
              new_values=snapshot(claim, CLAIM_AUDIT_FIELDS))
    coverage = calculate_coverage(claim.claim_amount, policy)
    return claim, coverage, validation


def close_claim(db: Session, *, claim_id: int, user: User) -> InsuranceClaim:
    claim = get_claim_or_404(db, claim_id, lock=True)
    ensure_transition(CLAIM_TRANSITIONS, claim.status, ClaimStatus.CLOSED, what="Claim")
    old = snapshot(claim, CLAIM_AUDIT_FIELDS)
    claim.status = ClaimStatus.CLOSED
    claim.closed_at = datetime.utcnow()
    db.flush()
    log_audit(db,
              user_id=_uid(user),
              action="CLOSE",
              table_name="insurance_claims",
              record_id=claim.id,
              old_values=old,
              new_values=snapshot(claim, CLAIM_AUDIT_FIELDS))
    return claim


def claim_status(db: Session, claim_id: int) -> Dict[str, Any]:
    claim = get_claim_or_404(db, claim_id)
    policy = claim.policy
    days = None
    if claim.submission_date:
        days = (datetime.utcnow() - claim.submission_date).days
    return {
        "claim": claim,
        "validation": validate_policy(policy).as_dict(),
        "coverage": calculate_coverage(claim.claim_amount, policy).as_dict(),
        "days_since_submission": days,
        "settled_amount": _settled_amount(db, claim.id),
    }


def add_documents(db: Session, *, claim_id: int, files: List[UploadFile], user: User) -> InsuranceClaim:
    claim = get_claim_or_404(db, claim_id, lock=True)
    if claim.status in CLAIM_FINAL:
        raise HTTPException(status_code=409,
                            detail="Cannot attach documents to a finalized claim")
    if not files:
        raise HTTPException(status_code=422, detail="documents are required")

    saved: List[Dict[str, Any]] = []
    try:
        for f in files:
            saved.append(
                save_upload(
                    f,
                    claim_storage_dir(claim.id),
                    allowed_ext=settings.CLAIM_DOCUMENT_TYPES,
                    max_bytes=settings.CLAIM_DOCUMENT_MAX_BYTES,
                ))
    except HTTPException:
        for d in saved:
            delete_stored(d["path"])
        raise

    # new list so the JSON column is flagged dirty
    claim.documents = list(claim.documents or []) + saved
    db.flush()

    log_audit(db,
              user_id=_uid(user),
              action="UPLOAD",
              table_name="insurance_claims",
              record_id=claim.id,
              new_values={"documents": [d["name"] for d in saved]})
    return claim


def read_document(db: Session, *, claim_id: int, index: int) -> Dict[str, Any]:
    claim = get_claim_or_404(db, claim_id)
    docs = claim.documents or []
    if index < 0 or index >= len(docs):
        raise HTTPException(status_code=404, detail="Document not found")
    doc = docs[index]
    content = read_stored(doc["path"])
    return {
        "filename": doc.get("name"),
        "mime_type": doc.get("mime_type") or "application/octet-stream",
        "size": len(content),
        "content": base64.b64encode(content).decode("ascii"),
    }


def delete_claim(db: Session, *, claim_id: int, user: User) -> None:
    claim = get_claim_or_404(db, claim_id, lock=True)
    if claim.status in CLAIM_APPROVED:
        raise HTTPException(status_code=409, detail="Approved claims cannot be deleted")
    if claim.status not in CLAIM_OPEN:
        raise HTTPException(status_code=409, detail="Finalized claims cannot be deleted")

    paths = [d.get("path") for d in (claim.documents or []) if d.get("path")]
    old = snapshot(claim, CLAIM_AUDIT_FIELDS)
    db.delete(claim)
    db.flush()

    log_audit(db,
              user_id=_uid(user),
              action="DELETE",
              table_name="insurance_claims",
              record_id=claim_id,
              old_values=old)

    for p in paths:
        delete_stored(p)
    delete_dir_if_empty(claim_storage_dir(claim_id))


def list_claims(
    db: Session,
    *,
    status: Optional[str] = None,
    bill_id: Optional[int] = None,
    patient_insurance_id: Optional[int] = None,
    pending_only: bool = False,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(InsuranceClaim)
    if status:
        q = q.filter(InsuranceClaim.status == status)
    if pending_only:
        q = q.filter(InsuranceClaim.status.in_(list(CLAIM_OPEN)))
    if bill_id:
        q = q.filter(InsuranceClaim.bill_id == int(bill_id))
    if patient_insurance_id:
        q = q.filter(InsuranceClaim.patient_insurance_id == int(patient_insurance_id))
    if date_from:
        q = q.filter(InsuranceClaim.created_at >= date_from)
    if date_to:
        q = q.filter(InsuranceClaim.created_at <= date_to)
    total = q.count()
    rows = q.order_by(InsuranceClaim.id.desc()).offset(offset).limit(limit).all()
    return rows, total
