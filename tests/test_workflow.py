"""Status transition tables."""

import pytest
from fastapi import HTTPException

from hms.models.billing import PaymentStatus
from hms.models.insurance import ClaimStatus
from hms.models.pharmacy import PurchaseStatus, SaleStatus
from hms.services.workflow import (
    CLAIM_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    PURCHASE_TRANSITIONS,
    SALE_TRANSITIONS,
    can_transition,
    ensure_transition,
)


class TestClaimTransitions:

    @pytest.mark.parametrize("current,target", [
        (ClaimStatus.DRAFT, ClaimStatus.SUBMITTED),
        (ClaimStatus.PENDING, ClaimStatus.SUBMITTED),
        (ClaimStatus.SUBMITTED, ClaimStatus.UNDER_REVIEW),
        (ClaimStatus.SUBMITTED, ClaimStatus.APPROVED),
        (ClaimStatus.UNDER_REVIEW, ClaimStatus.PARTIAL_APPROVED),
        (ClaimStatus.UNDER_REVIEW, ClaimStatus.REJECTED),
        (ClaimStatus.APPROVED, ClaimStatus.CLOSED),
        (ClaimStatus.REJECTED, ClaimStatus.CLOSED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(CLAIM_TRANSITIONS, current, target)

    @pytest.mark.parametrize("current,target", [
        (ClaimStatus.DRAFT, ClaimStatus.APPROVED),
        (ClaimStatus.DRAFT, ClaimStatus.CLOSED),
        (ClaimStatus.SUBMITTED, ClaimStatus.DRAFT),
        (ClaimStatus.APPROVED, ClaimStatus.REJECTED),
        (ClaimStatus.REJECTED, ClaimStatus.APPROVED),
        (ClaimStatus.CLOSED, ClaimStatus.DRAFT),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(CLAIM_TRANSITIONS, current, target)

    def test_every_status_has_an_entry(self):
        assert set(CLAIM_TRANSITIONS) == set(ClaimStatus)


class TestOtherTables:

    def test_payment_refunded_and_voided_are_terminal(self):
        assert PAYMENT_TRANSITIONS[PaymentStatus.VOIDED] == frozenset()
        assert PAYMENT_TRANSITIONS[PaymentStatus.REFUNDED] == frozenset()

    def test_sale_cancel_once(self):
        assert can_transition(SALE_TRANSITIONS, SaleStatus.COMPLETED, SaleStatus.CANCELLED)
        assert not can_transition(SALE_TRANSITIONS, SaleStatus.CANCELLED, SaleStatus.CANCELLED)

    def test_received_purchase_can_still_be_cancelled(self):
        assert can_transition(PURCHASE_TRANSITIONS, PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED)
        assert not can_transition(PURCHASE_TRANSITIONS, PurchaseStatus.RECEIVED, PurchaseStatus.ORDERED)


def test_ensure_transition_raises_conflict():
    with pytest.raises(HTTPException) as exc:
        ensure_transition(CLAIM_TRANSITIONS, ClaimStatus.CLOSED, ClaimStatus.SUBMITTED, what="Claim")

    assert exc.value.status_code == 409
    assert exc.value.detail == "Claim cannot move from closed to submitted"
