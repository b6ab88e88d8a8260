"""Billing account service.

This is the remote side of account provisioning: the write path reaches it
through ``AccountServiceClient`` either over HTTP (``api/billing.py``) or
in-process.
"""

from loguru import logger

from patient_hub.billing.models import AccountProvisionRequest, AccountProvisionResult, AccountStatus
from patient_hub.utils.ids import generate_account_id


class BillingRequestError(Exception):
    """Raised when an account request cannot be processed as sent."""


class BillingService:
    """Opens billing accounts, one per patient.

    A repeated request for the same patient returns the account opened the
    first time instead of opening another one.
    """

    def __init__(self):
        self._accounts: dict[str, AccountProvisionResult] = {}

    async def create_billing_account(self, request: AccountProvisionRequest) -> AccountProvisionResult:
        """Open (or return the existing) billing account for ``request.patient_id``."""
        logger.info(f"create_billing_account request received for patient {request.patient_id}")
        if "@" not in request.email:
            raise BillingRequestError(f"Billing contact email is not an address: {request.email}")

        existing = self._accounts.get(request.patient_id)
        if existing is not None:
            logger.debug(f"Billing account {existing.account_id} already exists for patient {request.patient_id}")
            return existing

        account = AccountProvisionResult(account_id=generate_account_id(), status=AccountStatus.ACTIVE)
        self._accounts[request.patient_id] = account
        logger.info(f"Opened billing account {account.account_id} for patient {request.patient_id}")
        return account

    def get_account(self, patient_id: str) -> AccountProvisionResult | None:
        """Return the account opened for ``patient_id``, if any."""
        return self._accounts.get(patient_id)

    @property
    def account_count(self) -> int:
        return len(self._accounts)

