"""Shared fixtures: isolated settings and an in-memory database."""

from collections.abc import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from patient_hub.models import db_model  # noqa: F401
from patient_hub.settings import Settings


@pytest.fixture
def settings() -> Settings:
    """Settings that ignore the environment and never sleep between retries."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        billing_retry_backoff_seconds=0,
        publish_retry_backoff_seconds=0,
        bus_redelivery_backoff_seconds=0,
    )


@pytest.fixture
def session() -> Generator[Session, None, None]:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as db_session:
        yield db_session
    engine.dispose()
