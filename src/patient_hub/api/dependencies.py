"""API dependencies for FastAPI endpoints."""

from collections.abc import Callable

from fastapi import HTTPException, Request, status

from patient_hub.models.api_model import Principal
from patient_hub.services.registry import get_service_registry
from patient_hub.settings import Settings


def service[T](service_type: type[T]) -> Callable[[], T]:
    """FastAPI dependency that provides a service by type.

    Args:
        service_type: The type of service to retrieve from the registry

    Returns:
        A callable that returns the requested service instance

    Example:
        ```python
        @router.get("/endpoint")
        def endpoint(service: MyService = Depends(service(MyService))):
            return service.do_something()
        ```
    """

    def get_service() -> T:
        registry = get_service_registry()
        return registry.get(service_type)

    return get_service


def get_principal(request: Request) -> Principal | None:
    """Authenticated caller forwarded by the gateway.

    Bearer credentials are validated upstream; the gateway passes the
    authenticated subject in a trusted header.

    Raises:
        HTTPException: 401 if a principal is required and the header is missing
    """
    settings: Settings = request.app.state.settings
    subject = request.headers.get(settings.principal_header, "").strip()
    if subject:
        return Principal(subject=subject)
    if settings.require_principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authenticated principal required")
    return None
