"""Application configuration using Pydantic Settings.

This module centralizes runtime configuration for the patient hub. Values can
be provided via environment variables (preferred) or fall back to the defaults
below. A ``Settings`` instance is intended to be retrieved via ``get_settings``
which caches the object for reuse across the process.

Environment variable prefix: ``PATIENT_HUB_`` (e.g. ``PATIENT_HUB_BILLING_RETRIES``).
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from patient_hub.constants import ANALYTICS_CONSUMER_GROUP, PATIENT_TOPIC


class Settings(BaseSettings):
    """Runtime application settings.

    Attributes map directly to environment variables using the ``PATIENT_HUB_``
    prefix (case-insensitive). For example, ``host`` <- ``PATIENT_HUB_HOST``.
    """

    # Server settings
    host: str = Field(
        default="0.0.0.0",
        description="Host interface to bind the server",
    )  # fmt: skip
    port: int = Field(
        default=8080,
        description="Server port",
    )  # fmt: skip
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Application log level",
    )
    reload: bool = Field(
        default=False,
        description="Enable auto-reload in development",
    )  # fmt: skip
    sql_log: bool = Field(
        default=False,
        description="Enable SQL query logging",
    )  # fmt: skip
    database_url: str = Field(
        default="sqlite:///./patient_hub.db",
        description="Database connection string",
    )  # fmt: skip
    profiles: str | None = Field(
        default=None,
        description="Server profiles: patient, billing, analytics or comma-separated combination. Empty/None enables all.",
    )  # fmt: skip

    # Event bus settings
    bus_address: str = Field(
        default="memory://",
        description="Event bus address; memory:// selects the in-process broker",
    )  # fmt: skip
    bus_partitions: int = Field(
        default=3,
        ge=1,
        description="Number of partitions per topic",
    )  # fmt: skip
    bus_buffer_size: int = Field(
        default=100,
        ge=1,
        description="Messages buffered per assigned partition ahead of the handler",
    )  # fmt: skip
    bus_max_message_bytes: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Largest accepted payload; bigger payloads fail permanently",
    )  # fmt: skip
    bus_redelivery_attempts: int = Field(
        default=3,
        ge=1,
        description="Handler attempts per message before it is dead-lettered",
    )  # fmt: skip
    bus_redelivery_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Pause between handler attempts for the same message",
    )  # fmt: skip
    patient_topic: str = Field(
        default=PATIENT_TOPIC,
        description="Topic carrying patient domain events",
    )  # fmt: skip
    analytics_consumer_group: str = Field(
        default=ANALYTICS_CONSUMER_GROUP,
        description="Consumer group of the analytics processor",
    )  # fmt: skip

    # Billing account service settings
    billing_transport: Literal["local", "http"] = Field(
        default="local",
        description="How the write path reaches the billing service: in-process or over HTTP",
    )  # fmt: skip
    billing_service_address: str = Field(
        default="localhost",
        description="Billing service host",
    )  # fmt: skip
    billing_service_port: int = Field(
        default=9001,
        description="Billing service port",
    )  # fmt: skip
    billing_service_tls: bool = Field(
        default=False,
        description="Use https when talking to the billing service",
    )  # fmt: skip
    billing_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Timeout of a single account provisioning call",
    )  # fmt: skip
    billing_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transient provisioning failures",
    )  # fmt: skip
    billing_retry_backoff_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Base of the exponential backoff between provisioning retries",
    )  # fmt: skip

    # Publishing settings
    publish_retries: int = Field(
        default=3,
        ge=0,
        description="Retries for transient publish failures",
    )  # fmt: skip
    publish_retry_backoff_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Base of the exponential backoff between publish retries",
    )  # fmt: skip
    await_publish: bool = Field(
        default=True,
        description="Wait for the bus acknowledgment before answering a creation request",
    )  # fmt: skip

    # Authentication boundary
    principal_header: str = Field(
        default="X-Authenticated-Subject",
        description="Header set by the gateway with the authenticated subject",
    )  # fmt: skip
    require_principal: bool = Field(
        default=False,
        description="Reject write requests that carry no authenticated subject",
    )  # fmt: skip

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | None) -> str:
        """Normalize and validate log level."""
        if v is None:
            return "INFO"

        v_upper = str(v).upper()

        allowed = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR"}
        if v_upper not in allowed:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(sorted(allowed))}")

        return v_upper

    @property
    def billing_base_url(self) -> str:
        """Base URL of the billing service built from address, port and TLS flag."""
        scheme = "https" if self.billing_service_tls else "http"
        return f"{scheme}://{self.billing_service_address}:{self.billing_service_port}"

    model_config = SettingsConfigDict(
        env_prefix="PATIENT_HUB_",  # Prefix for env vars
        case_sensitive=False,
        extra="ignore",  # Ignore unexpected env vars
        env_file=".env",  # Optional .env loading (if present)
        env_file_encoding="utf-8",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the cached ``Settings`` instance.

    The first invocation reads environment variables / .env file; subsequent
    calls reuse the same object to ensure consistent config.
    """

    return Settings()


__all__ = ["Settings", "get_settings"]
