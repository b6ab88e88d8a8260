"""Event type definitions for the patient topic.

Events are the contract between the write path and its consumers. They are
serialized as UTF-8 JSON with camelCase field names:

    {"schemaVersion": 1, "patientId": "...", "name": "...", "email": "...",
     "eventType": "PATIENT_CREATED", "occurredAt": "..."}
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from patient_hub.exceptions import DecodeError

SCHEMA_VERSION = 1


class PatientEventType(StrEnum):
    """Kinds of facts published about a patient."""

    PATIENT_CREATED = "PATIENT_CREATED"


# Fields that must be present and non-empty for each event type
REQUIRED_FIELDS: dict[PatientEventType, tuple[str, ...]] = {
    PatientEventType.PATIENT_CREATED: ("patient_id", "name", "email"),
}


class PatientEvent(BaseModel):
    """Domain event describing something that happened to a patient.

    Instances are immutable and can only be built with every field their
    ``event_type`` requires, so a partially populated event never reaches
    the bus. The patient id doubles as the partition key.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    schema_version: int = Field(default=SCHEMA_VERSION, ge=1)
    patient_id: str
    name: str = ""
    email: str = ""
    event_type: PatientEventType
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("occurred_at")
    @classmethod
    def normalize_occurred_at(cls, value: datetime) -> datetime:
        """Store timestamps in UTC; producers that omit the offset are assumed to send UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @model_validator(mode="after")
    def check_required_fields(self) -> "PatientEvent":
        """Reject events missing a field their type requires."""
        missing = [name for name in REQUIRED_FIELDS.get(self.event_type, ("patient_id",)) if not getattr(self, name).strip()]
        if missing:
            raise ValueError(f"{self.event_type} event requires non-empty {', '.join(missing)}")
        if self.schema_version > SCHEMA_VERSION:
            raise ValueError(f"Unsupported schema version {self.schema_version} (newest known: {SCHEMA_VERSION})")
        return self

    @property
    def partition_key(self) -> str:
        return self.patient_id

    @property
    def identity(self) -> tuple[str, PatientEventType]:
        """Natural identity of the fact, independent of how often it was delivered."""
        return self.patient_id, self.event_type

    def encode(self) -> bytes:
        """Serialize the event for the bus."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def decode(cls, payload: bytes) -> "PatientEvent":
        """Parse a bus payload.

        Raises:
            DecodeError: If the payload is not a valid, complete event
        """
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise DecodeError(f"Invalid patient event payload ({len(payload)} bytes): {e.error_count()} error(s), first: {e.errors()[0]['msg']}") from e


def patient_created(patient_id: str, name: str, email: str) -> PatientEvent:
    """Build the event announcing a newly created patient."""
    return PatientEvent(
        patient_id=patient_id,
        name=name,
        email=email,
        event_type=PatientEventType.PATIENT_CREATED,
    )
