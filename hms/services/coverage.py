# FILE: hms/services/coverage.py
"""
Insurance coverage arithmetic and policy validation.

Both functions are pure: they read policy attributes and never touch the session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from hms.services.billing_math import D0, _d, _q2

HUNDRED = Decimal("100")
NEARLY_EXHAUSTED_RATIO = Decimal("0.1")


@dataclass(frozen=True)
class CoverageBreakdown:
    total_amount: Decimal
    deductible_applied: Decimal
    deductible_remaining: Decimal
    co_pay_amount: Decimal
    insurance_coverage: Decimal
    patient_responsibility: Decimal
    annual_remaining: Optional[Decimal]  # None when the policy has no annual cap

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_amount": self.total_amount,
            "deductible_applied": self.deductible_applied,
            "deductible_remaining": self.deductible_remaining,
            "co_pay_amount": self.co_pay_amount,
            "insurance_coverage": self.insurance_coverage,
            "patient_responsibility": self.patient_responsibility,
            "annual_remaining": self.annual_remaining,
        }


@dataclass
class PolicyValidation:
    is_active: bool
    is_expired: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def annual_remaining(policy: Any) -> Optional[Decimal]:
    cap = getattr(policy, "annual_max_coverage", None)
    if cap is None:
        return None
    return _q2(_d(cap) - _d(policy.annual_used_amount))


def calculate_coverage(amount: Any, policy: Any) -> CoverageBreakdown:
    """
    Split a charge between insurer and patient.

    deductible first, then co-pay (fixed amount wins over percentage),
    then the insurer share clamped to what is left of the annual cap.
    """
    total = _q2(amount)

    deductible_remaining = max(D0, _q2(_d(policy.deductible_amount) - _d(policy.deductible_met)))
    deductible_applied = min(deductible_remaining, total)
    after_deductible = total - deductible_applied

    fixed_co_pay = _q2(policy.co_pay_amount)
    if fixed_co_pay > D0:
        co_pay = fixed_co_pay
    else:
        co_pay = _q2(after_deductible * _d(policy.co_pay_percentage) / HUNDRED)

    coverage = max(D0, after_deductible - co_pay)

    remaining = annual_remaining(policy)
    if remaining is not None and coverage > remaining:
        coverage = max(D0, remaining)
    coverage = _q2(coverage)

    return CoverageBreakdown(
        total_amount=total,
        deductible_applied=_q2(deductible_applied),
        deductible_remaining=_q2(deductible_remaining - deductible_applied),
        co_pay_amount=co_pay,
        insurance_coverage=coverage,
        patient_responsibility=_q2(total - coverage),
        annual_remaining=None if remaining is None else _q2(remaining - coverage),
    )


def is_policy_expired(policy: Any, today: Optional[date] = None) -> bool:
    today = today or date.today()
    end = getattr(policy, "coverage_end_date", None)
    return bool(end and end < today)


def validate_policy(policy: Any, today: Optional[date] = None) -> PolicyValidation:
    today = today or date.today()
    result = PolicyValidation(
        is_active=bool(policy.is_active),
        is_expired=is_policy_expired(policy, today),
    )

    if not policy.is_active:
        result.errors.append("Insurance policy is not active")

    start = getattr(policy, "coverage_start_date", None)
    if start and start > today:
        result.errors.append("Insurance coverage has not started yet")

    if result.is_expired:
        result.errors.append("Insurance coverage has expired")

    provider = getattr(policy, "provider", None)
    if provider is None:
        result.errors.append("Insurance provider not found")
    elif not provider.is_active:
        result.errors.append("Insurance provider is not active")

    deductible = _d(policy.deductible_amount)
    if deductible > 0 and _d(policy.deductible_met) >= deductible:
        result.warnings.append("Deductible has been fully met")

    # a zero cap is not checked here; calculate_coverage still clamps to it
    cap = getattr(policy, "annual_max_coverage", None)
    if cap is not None and _d(cap) > D0:
        remaining = annual_remaining(policy)
        if remaining <= D0:
            result.errors.append("Annual maximum coverage has been reached")
        elif remaining < _d(cap) * NEARLY_EXHAUSTED_RATIO:
            result.warnings.append("Annual coverage is nearly exhausted")

    return result
