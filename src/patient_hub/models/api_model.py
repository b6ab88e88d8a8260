"""API models for the patient hub."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from patient_hub.billing.models import AccountStatus


class Principal(BaseModel):
    """Authenticated caller, as vouched for by the gateway."""

    subject: str


class PatientCreateInput(BaseModel):
    """Patient creation request.

    Fields are only trimmed here; the write path validates them before
    anything is stored so every caller gets the same rules.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    email: str = ""


class PatientResponse(BaseModel):
    """Stored patient."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    created_by: str | None = None
    created_at: datetime


class CreationWarning(BaseModel):
    """A secondary step of patient creation that did not succeed."""

    step: str = Field(description="Stage that failed: PROVISIONING or PUBLISHING")
    kind: str = Field(description="Error kind, e.g. UNAVAILABLE or PERMANENT")
    message: str


class PatientCreateResponse(PatientResponse):
    """Created patient together with the outcome of its side effects."""

    billing_account_id: str | None = None
    billing_status: AccountStatus | None = None
    warnings: list[CreationWarning] = []


class AnalyticsSummary(BaseModel):
    """Aggregated view of the patient events processed so far."""

    patients_created: int = 0
    events_by_type: dict[str, int] = {}
    patients_by_email_domain: dict[str, int] = {}
    duplicates_ignored: int = 0
    decode_failures: int = 0
    last_event_at: datetime | None = None
    consumer_lag: int | None = None
