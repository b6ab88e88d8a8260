"""Request and response models of the billing account service."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AccountStatus(StrEnum):
    """Lifecycle state of a billing account."""

    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    FAILED = "FAILED"


class AccountProvisionRequest(BaseModel):
    """Request to open a billing account for a patient."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    patient_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str = Field(min_length=1)


class AccountProvisionResult(BaseModel):
    """Billing account opened (or found) for a patient."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    account_id: str = Field(min_length=1)
    status: AccountStatus
