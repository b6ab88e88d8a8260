"""Billing API - the account service the patient write path calls."""

from fastapi import APIRouter, Depends, HTTPException, status

from patient_hub.api.dependencies import service
from patient_hub.billing.models import AccountProvisionRequest, AccountProvisionResult
from patient_hub.billing.service import BillingRequestError, BillingService
from patient_hub.exceptions import ResourceNotFoundError

router = APIRouter()


@router.post("/billing/accounts", response_model=AccountProvisionResult)
async def create_billing_account(
    request: AccountProvisionRequest,
    billing_service: BillingService = Depends(service(BillingService)),
) -> AccountProvisionResult:
    """Open a billing account for a patient (returns the existing one on repeat)."""
    try:
        return await billing_service.create_billing_account(request)
    except BillingRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


@router.get("/billing/accounts/{patient_id}", response_model=AccountProvisionResult)
def get_billing_account(
    patient_id: str,
    billing_service: BillingService = Depends(service(BillingService)),
) -> AccountProvisionResult:
    """Get the billing account of a patient.

    Raises:
        ResourceNotFoundError: If the patient has no account
    """
    account = billing_service.get_account(patient_id)
    if account is None:
        raise ResourceNotFoundError("Billing account", patient_id)
    return account
