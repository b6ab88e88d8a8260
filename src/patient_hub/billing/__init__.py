"""Billing account provisioning: models, service and clients."""

from .client import (
    AccountServiceClient,
    CallError,
    DeadlineExceededError,
    HttpAccountServiceClient,
    InvalidArgumentError,
    LocalAccountServiceClient,
    UnavailableError,
    UnknownCallError,
)
from .models import AccountProvisionRequest, AccountProvisionResult, AccountStatus
from .service import BillingRequestError, BillingService

__all__ = [
    "AccountProvisionRequest",
    "AccountProvisionResult",
    "AccountServiceClient",
    "AccountStatus",
    "BillingRequestError",
    "BillingService",
    "CallError",
    "DeadlineExceededError",
    "HttpAccountServiceClient",
    "InvalidArgumentError",
    "LocalAccountServiceClient",
    "UnavailableError",
    "UnknownCallError",
]
