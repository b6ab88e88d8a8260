"""Service for patient-related operations.

Creating a patient walks through fixed stages::

    VALIDATING -> PERSISTING -> PROVISIONING -> PUBLISHING -> DONE

Validation and persistence failures abort the request. Once the patient row
is committed the request succeeds: provisioning a billing account and
publishing the ``PATIENT_CREATED`` event are side effects whose failures are
logged and returned as warnings, never rolled back.
"""

import asyncio
import re
from enum import StrEnum
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from patient_hub.billing.client import AccountServiceClient, CallError, UnknownCallError
from patient_hub.billing.models import AccountProvisionRequest, AccountProvisionResult
from patient_hub.event_bus.core import PublishError
from patient_hub.events.publisher import PatientEventPublisher
from patient_hub.events.types import PatientEvent, patient_created
from patient_hub.exceptions import PatientValidationError, PersistenceError, ProvisioningError
from patient_hub.models.api_model import CreationWarning, PatientCreateInput, PatientResponse, Principal
from patient_hub.models.db_model import Patient as PatientModel
from patient_hub.settings import Settings, get_settings

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")


class CreationStage(StrEnum):
    """Stages of a patient creation request."""

    VALIDATING = "VALIDATING"
    PERSISTING = "PERSISTING"
    PROVISIONING = "PROVISIONING"
    PUBLISHING = "PUBLISHING"
    DONE = "DONE"


class PatientCreateResult(BaseModel):
    """Outcome of a successful creation request."""

    patient: PatientResponse
    account: AccountProvisionResult | None = None
    warnings: list[CreationWarning] = []
    stages: list[CreationStage] = []


def validate_patient_input(patient: PatientCreateInput) -> None:
    """Check a creation request before anything is stored.

    Raises:
        PatientValidationError: If the name is blank or the email is not an address
    """
    errors: dict[str, str] = {}
    if not patient.name.strip():
        errors["name"] = "must not be empty"
    if not EMAIL_PATTERN.match(patient.email):
        errors["email"] = "must be a valid email address"
    if errors:
        raise PatientValidationError(errors)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, CallError) and error.retryable


def _log_provisioning_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Provisioning attempt {retry_state.attempt_number} failed ({error!r}); retrying")


class PatientService:
    """Service for patient-related operations."""

    def __init__(
        self,
        account_client: AccountServiceClient,
        publisher: PatientEventPublisher,
        settings: Settings | None = None,
    ):
        """Initialize the patient service.

        Args:
            account_client: Client used to open billing accounts
            publisher: Publisher for patient domain events
            settings: Timeouts, retry budgets and publish mode; defaults to the cached settings
        """
        self.account_client = account_client
        self.publisher = publisher
        self.settings = settings or get_settings()
        self._background: set[asyncio.Task] = set()

    def get_patient(self, session: Session, id_: UUID) -> PatientResponse | None:
        """Get a patient by ID.

        Args:
            session: Database session
            id_: UUID of the patient to retrieve

        Returns:
            PatientResponse if found, None otherwise
        """
        patient = session.get(PatientModel, id_)
        logger.debug(f"Service: get_patient {id_}: {'found' if patient else 'not found'}")
        return PatientResponse.model_validate(patient) if patient else None

    def get_recent_patients(self, session: Session, limit: int = 10) -> list[PatientResponse]:
        """Get the most recently created patients, newest first."""
        stmt = select(PatientModel).order_by(PatientModel.created_at.desc()).limit(limit)
        patients = session.exec(stmt).all()
        logger.debug(f"Service: get_recent_patients found {len(patients)} patients")
        return [PatientResponse.model_validate(patient) for patient in patients]

    async def create_patient(
        self,
        session: Session,
        patient: PatientCreateInput,
        principal: Principal | None = None,
    ) -> PatientCreateResult:
        """Create a patient, then provision billing and announce the creation.

        Args:
            session: Database session used to store the patient
            patient: Creation request
            principal: Authenticated caller, recorded as the creator

        Returns:
            The stored patient with the billing account (if any) and warnings
            for side effects that failed

        Raises:
            PatientValidationError: Input rejected; nothing was stored or sent
            PersistenceError: The patient could not be stored; nothing was sent
        """
        stages = [CreationStage.VALIDATING]
        validate_patient_input(patient)

        stages.append(CreationStage.PERSISTING)
        record = self._persist(session, patient, principal)
        logger.info(f"Service: create_patient - stored patient {record.id}")

        # Side effects run in their own task: a caller that gives up waiting does not stop them
        side_effects = asyncio.ensure_future(self._run_side_effects(record, stages))
        self._track(side_effects)
        try:
            account, warnings = await asyncio.shield(side_effects)
        except asyncio.CancelledError:
            logger.warning(f"Service: create_patient - caller cancelled after patient {record.id} was stored; side effects continue")
            raise

        return PatientCreateResult(patient=record, account=account, warnings=warnings, stages=stages)

    def _persist(self, session: Session, patient: PatientCreateInput, principal: Principal | None) -> PatientResponse:
        new_patient = PatientModel(
            name=patient.name,
            email=patient.email,
            created_by=principal.subject if principal else None,
        )
        try:
            session.add(new_patient)
            session.commit()
            session.refresh(new_patient)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Service: create_patient - failed to store patient: {e}")
            raise PersistenceError(f"Could not store patient: {e.__class__.__name__}") from e
        return PatientResponse.model_validate(new_patient)

    async def _run_side_effects(
        self, record: PatientResponse, stages: list[CreationStage]
    ) -> tuple[AccountProvisionResult | None, list[CreationWarning]]:
        patient_id = str(record.id)
        warnings: list[CreationWarning] = []

        stages.append(CreationStage.PROVISIONING)
        account = None
        try:
            account = await self._provision(record)
        except ProvisioningError as e:
            logger.error(f"Patient {patient_id} step=PROVISIONING kind={e.kind} attempts={e.attempts}: {e.cause}")
            warnings.append(CreationWarning(step=CreationStage.PROVISIONING, kind=e.kind, message=str(e)))

        stages.append(CreationStage.PUBLISHING)
        warning = await self._publish_created_event(record) if self.settings.await_publish else self._publish_in_background(record)
        if warning is not None:
            warnings.append(warning)

        stages.append(CreationStage.DONE)
        return account, warnings

    async def _provision(self, record: PatientResponse) -> AccountProvisionResult:
        """Open the billing account, retrying transient call errors within the budget.

        Raises:
            ProvisioningError: When the budget is spent or the error is not retryable
        """
        request = AccountProvisionRequest(patient_id=str(record.id), name=record.name, email=record.email)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.billing_retries + 1),
            wait=wait_exponential(multiplier=self.settings.billing_retry_backoff_seconds, max=2),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_provisioning_retry,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    account = await self.account_client.provision_account(request, timeout=self.settings.billing_timeout_seconds)
        except CallError as e:
            raise ProvisioningError(request.patient_id, e, attempts) from e
        except Exception as e:
            cause = UnknownCallError(f"Unexpected {e.__class__.__name__} from the account service: {e}")
            raise ProvisioningError(request.patient_id, cause, attempts) from e
        return account

    def _build_created_event(self, record: PatientResponse) -> PatientEvent | CreationWarning:
        try:
            return patient_created(patient_id=str(record.id), name=record.name, email=record.email)
        except ValidationError as e:
            logger.error(f"Patient {record.id} step=PUBLISHING kind=INVALID_EVENT: {e}")
            return CreationWarning(step=CreationStage.PUBLISHING, kind="INVALID_EVENT", message=str(e))

    async def _publish_created_event(self, record: PatientResponse) -> CreationWarning | None:
        event = self._build_created_event(record)
        if isinstance(event, CreationWarning):
            return event
        try:
            await self.publisher.publish(event)
        except PublishError as e:
            logger.error(f"Patient {record.id} step=PUBLISHING kind={e.kind}: {e}")
            return CreationWarning(step=CreationStage.PUBLISHING, kind=e.kind, message=str(e))
        except Exception as e:
            logger.error(f"Patient {record.id} step=PUBLISHING kind=UNKNOWN: {e!r}")
            return CreationWarning(step=CreationStage.PUBLISHING, kind="UNKNOWN", message=f"{e.__class__.__name__}: {e}")
        return None

    def _publish_in_background(self, record: PatientResponse) -> None:
        task = asyncio.create_task(self._publish_created_event(record), name=f"publish:{record.id}")
        self._track(task)

    def _track(self, task: asyncio.Future) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background_tasks(self) -> None:
        """Wait for side effects still running for abandoned or fire-and-forget requests."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
