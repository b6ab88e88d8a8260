from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Patient(SQLModel, table=True):
    """Patient model."""

    __tablename__ = "patients"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(min_length=1)
    email: str = Field(index=True)
    created_by: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
