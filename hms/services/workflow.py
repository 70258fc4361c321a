# FILE: hms/services/workflow.py
"""
Central status-transition tables.

Every status change on a claim, payment, bill, sale or purchase goes through
ensure_transition(); anything not listed here is a 409 for the caller.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Set

from fastapi import HTTPException

from hms.models.billing import BillStatus, PaymentStatus
from hms.models.insurance import ClaimStatus
from hms.models.pharmacy import PurchaseStatus, SaleStatus

CLAIM_TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    ClaimStatus.DRAFT: frozenset({ClaimStatus.PENDING, ClaimStatus.SUBMITTED}),
    ClaimStatus.PENDING: frozenset({ClaimStatus.DRAFT, ClaimStatus.SUBMITTED}),
    ClaimStatus.SUBMITTED: frozenset({
        ClaimStatus.UNDER_REVIEW,
        ClaimStatus.APPROVED,
        ClaimStatus.PARTIAL_APPROVED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.UNDER_REVIEW: frozenset({
        ClaimStatus.APPROVED,
        ClaimStatus.PARTIAL_APPROVED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.PARTIAL_APPROVED: frozenset({ClaimStatus.CLOSED}),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.CLOSED}),
    ClaimStatus.REJECTED: frozenset({ClaimStatus.CLOSED}),
    ClaimStatus.CLOSED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.VOIDED, PaymentStatus.REFUNDED}),
    PaymentStatus.VOIDED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

BILL_TRANSITIONS: Dict[BillStatus, FrozenSet[BillStatus]] = {
    BillStatus.ACTIVE: frozenset({BillStatus.VOIDED}),
    BillStatus.VOIDED: frozenset(),
}

SALE_TRANSITIONS: Dict[SaleStatus, FrozenSet[SaleStatus]] = {
    SaleStatus.COMPLETED: frozenset({SaleStatus.CANCELLED}),
    SaleStatus.CANCELLED: frozenset(),
}

PURCHASE_TRANSITIONS: Dict[PurchaseStatus, FrozenSet[PurchaseStatus]] = {
    PurchaseStatus.PENDING: frozenset({
        PurchaseStatus.ORDERED,
        PurchaseStatus.RECEIVED,
        PurchaseStatus.CANCELLED,
    }),
    PurchaseStatus.ORDERED: frozenset({PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED}),
    PurchaseStatus.RECEIVED: frozenset({PurchaseStatus.CANCELLED}),
    PurchaseStatus.CANCELLED: frozenset(),
}

# claim groupings used by the lifecycle rules
CLAIM_OPEN: Set[ClaimStatus] = {
    ClaimStatus.DRAFT,
    ClaimStatus.PENDING,
    ClaimStatus.SUBMITTED,
    ClaimStatus.UNDER_REVIEW,
}
CLAIM_SUBMITTABLE: Set[ClaimStatus] = {ClaimStatus.DRAFT, ClaimStatus.PENDING}
CLAIM_FINAL: Set[ClaimStatus] = {
    ClaimStatus.APPROVED,
    ClaimStatus.PARTIAL_APPROVED,
    ClaimStatus.REJECTED,
    ClaimStatus.CLOSED,
}
CLAIM_APPROVED: Set[ClaimStatus] = {
    ClaimStatus.APPROVED,
    ClaimStatus.PARTIAL_APPROVED,
}
CLAIM_RESOLVED: Set[ClaimStatus] = CLAIM_APPROVED | {ClaimStatus.REJECTED}


def _label(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


def can_transition(table: Dict, current, target) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(table: Dict, current, target, *, what: str = "Record") -> None:
    if not can_transition(table, current, target):
        raise HTTPException(
            status_code=409,
            detail=f"{what} cannot move from {_label(current)} to {_label(target)}",
        )
