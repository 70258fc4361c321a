# hms/api/router.py
from fastapi import APIRouter

from hms.api import (
    routes_bills,
    routes_payments,
    routes_insurance_claims,
    routes_insurance_providers,
    routes_patient_insurance,
    routes_pharmacy,
    routes_reports,
    routes_system,
)

api_router = APIRouter()

# Billing
api_router.include_router(routes_bills.router)
api_router.include_router(routes_payments.router)
api_router.include_router(routes_insurance_claims.router)

# Insurance
api_router.include_router(routes_insurance_providers.router)
api_router.include_router(routes_patient_insurance.router)

# Pharmacy
api_router.include_router(routes_pharmacy.router)

api_router.include_router(routes_reports.router)
api_router.include_router(routes_system.router)
