"""Common exceptions for the patient hub.

Fatal errors (``PatientValidationError``, ``PersistenceError``) abort a
creation request and reach the caller. Non-fatal errors
(``ProvisioningError``, publish errors from the event bus, ``DecodeError``)
stay inside the step that raised them and end up as logged warnings.
"""

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from patient_hub.billing.client import CallError


class PatientValidationError(Exception):
    """Raised when patient input is rejected before anything is persisted.

    Attributes:
        errors: Mapping of field name to the reason it was rejected
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        details = "; ".join(f"{field}: {reason}" for field, reason in errors.items())
        super().__init__(f"Invalid patient input: {details}")


class PersistenceError(Exception):
    """Raised when the patient record could not be stored.

    Nothing was written when this is raised: the transaction has been rolled back.
    """


class ProvisioningError(Exception):
    """Raised when no billing account could be provisioned for a patient.

    Wraps the last ``CallError`` returned by the account service after the
    retry budget was spent (or immediately for non-retryable errors).
    """

    def __init__(self, patient_id: str, cause: "CallError", attempts: int):
        self.patient_id = patient_id
        self.cause = cause
        self.attempts = attempts
        super().__init__(f"Billing account provisioning failed for patient {patient_id} after {attempts} attempt(s): {cause}")

    @property
    def kind(self) -> str:
        """Kind of the underlying call error (e.g. ``UNAVAILABLE``)."""
        return self.cause.kind


class DecodeError(Exception):
    """Raised when a bus payload cannot be decoded into a domain event."""


class ResourceNotFoundError(Exception):
    """Raised when a resource doesn't exist.

    Generic exception for any resource that cannot be found by its identifier.
    """

    def __init__(self, resource_type: str, identifier: str | UUID | int):
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(f"{resource_type} not found: {identifier}")
