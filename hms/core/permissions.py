# hms/core/permissions.py
"""Permission codes checked by the API, grouped by module for seeding."""

ADMIN_ROLE = "Billing Administrator"

VIEW_BILLING = "view-billing"
MANAGE_BILLING = "manage-billing"
VOID_BILLING = "void-billing"

VIEW_PAYMENTS = "view-payments"
RECORD_PAYMENTS = "record-payments"
VOID_PAYMENTS = "void-payments"
PROCESS_REFUNDS = "process-refunds"

VIEW_CLAIMS = "view-insurance-claims"
CREATE_CLAIMS = "create-insurance-claims"
EDIT_CLAIMS = "edit-insurance-claims"
DELETE_CLAIMS = "delete-insurance-claims"
SUBMIT_CLAIMS = "submit-insurance-claims"
PROCESS_CLAIMS = "process-insurance-claims"

VIEW_PROVIDERS = "view-insurance-providers"
CREATE_PROVIDERS = "create-insurance-providers"
EDIT_PROVIDERS = "edit-insurance-providers"
DELETE_PROVIDERS = "delete-insurance-providers"

VIEW_PATIENT_INSURANCE = "view-patient-insurance"
MANAGE_PATIENT_INSURANCE = "manage-patient-insurance"

VIEW_PHARMACY = "view-pharmacy"
CREATE_SALES = "create-sales"
CANCEL_SALES = "cancel-sales"
MANAGE_MEDICINES = "manage-medicines"
MANAGE_PURCHASES = "manage-purchases"
ADJUST_STOCK = "adjust-stock"

VIEW_BILLING_REPORTS = "view-billing-reports"

MODULES = [
    ("billing", [VIEW_BILLING, MANAGE_BILLING, VOID_BILLING]),
    ("payments", [VIEW_PAYMENTS, RECORD_PAYMENTS, VOID_PAYMENTS, PROCESS_REFUNDS]),
    ("insurance.claims", [
        VIEW_CLAIMS,
        CREATE_CLAIMS,
        EDIT_CLAIMS,
        DELETE_CLAIMS,
        SUBMIT_CLAIMS,
        PROCESS_CLAIMS,
    ]),
    ("insurance.providers", [VIEW_PROVIDERS, CREATE_PROVIDERS, EDIT_PROVIDERS, DELETE_PROVIDERS]),
    ("insurance.patients", [VIEW_PATIENT_INSURANCE, MANAGE_PATIENT_INSURANCE]),
    ("pharmacy", [
        VIEW_PHARMACY,
        CREATE_SALES,
        CANCEL_SALES,
        MANAGE_MEDICINES,
        MANAGE_PURCHASES,
        ADJUST_STOCK,
    ]),
    ("reports", [VIEW_BILLING_REPORTS]),
]


def all_codes():
    return [code for _module, codes in MODULES for code in codes]
