"""
Patient API - creation and lookup of patients.

All endpoints delegate to PatientService for business logic.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from patient_hub.api.dependencies import get_principal, service
from patient_hub.database import get_db_session
from patient_hub.exceptions import ResourceNotFoundError
from patient_hub.models.api_model import PatientCreateInput, PatientCreateResponse, PatientResponse, Principal
from patient_hub.services.patient_service import PatientService

router = APIRouter()


@router.get("/patients/recent", response_model=list[PatientResponse])
def get_recent_patients(
    limit: int = Query(10, ge=1, le=100),
    patient_service: PatientService = Depends(service(PatientService)),
    session: Session = Depends(get_db_session),
) -> list[PatientResponse]:
    """Get the most recently created patients."""
    return patient_service.get_recent_patients(session, limit)


@router.get("/patients/{patient_id}", response_model=PatientResponse)
def get_patient(
    patient_id: UUID,
    patient_service: PatientService = Depends(service(PatientService)),
    session: Session = Depends(get_db_session),
) -> PatientResponse:
    """Get a patient by ID.

    Raises:
        ResourceNotFoundError: If patient not found
    """
    patient = patient_service.get_patient(session, patient_id)
    if not patient:
        raise ResourceNotFoundError("Patient", patient_id)
    return patient


@router.post("/patients", response_model=PatientCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    patient: PatientCreateInput,
    patient_service: PatientService = Depends(service(PatientService)),
    session: Session = Depends(get_db_session),
    principal: Principal | None = Depends(get_principal),
) -> PatientCreateResponse:
    """Create a new patient.

    The patient is created whenever it could be stored; failures to open the
    billing account or to announce the patient are reported in ``warnings``.
    """
    result = await patient_service.create_patient(session, patient, principal)
    return PatientCreateResponse(
        **result.patient.model_dump(),
        billing_account_id=result.account.account_id if result.account else None,
        billing_status=result.account.status if result.account else None,
        warnings=result.warnings,
    )
