"""Main entry point for the patient hub using Typer and Pydantic Settings."""

import typer
import uvicorn
from loguru import logger

from patient_hub.logging import setup_logging
from patient_hub.settings import get_settings

app = typer.Typer()


HOST_OPTION = typer.Option(
    None,
    help="Host to bind the server to (overrides PATIENT_HUB_HOST)",
    metavar="<server>",
)  # fmt: skip
PORT_OPTION = typer.Option(
    None,
    help="Port to bind the server to (overrides PATIENT_HUB_PORT)",
    metavar="<port>",
)  # fmt: skip
RELOAD_OPTION = typer.Option(
    None,
    help="Enable/disable auto-reload (overrides PATIENT_HUB_RELOAD)",
)  # fmt: skip
LOG_LEVEL_OPTION = typer.Option(
    None,
    help="Log level (overrides PATIENT_HUB_LOG_LEVEL)",
    metavar="<level>",
    case_sensitive=False,
)  # fmt: skip
SQL_LOG_OPTION = typer.Option(
    None,
    help="Enable/disable SQL query logging (overrides PATIENT_HUB_SQL_LOG)",
)  # fmt: skip
DATABASE_URL_OPTION = typer.Option(
    None,
    help="Database URL (overrides PATIENT_HUB_DATABASE_URL)",
    metavar="<dsn>",
)  # fmt: skip
PROFILE_OPTION = typer.Option(
    None,
    "-p",
    "--profile",
    help="Server profile: patient, billing, analytics, or combination (e.g., 'patient,analytics'). Omit for all.",
    metavar="<profile>",
)  # fmt: skip
BILLING_TRANSPORT_OPTION = typer.Option(
    None,
    help="Reach billing 'local'ly or over 'http' (overrides PATIENT_HUB_BILLING_TRANSPORT)",
    metavar="<transport>",
)  # fmt: skip
BILLING_ADDRESS_OPTION = typer.Option(
    None,
    help="Billing service host (overrides PATIENT_HUB_BILLING_SERVICE_ADDRESS)",
    metavar="<host>",
)  # fmt: skip
BILLING_PORT_OPTION = typer.Option(
    None,
    help="Billing service port (overrides PATIENT_HUB_BILLING_SERVICE_PORT)",
    metavar="<port>",
)  # fmt: skip


def _update_settings(
    host: str | None,
    port: int | None,
    log_level: str | None,
    reload: bool | None,
    sql_log: bool | None,
    database_url: str | None,
    profiles: str | None,
    billing_transport: str | None,
    billing_address: str | None,
    billing_port: int | None,
) -> None:
    """Update the cached settings with CLI overrides."""
    settings = get_settings()

    # Apply overrides
    if host is not None:
        settings.host = host
    if port is not None:
        settings.port = port
    if log_level is not None:
        settings.log_level = log_level.upper()
    if reload is not None:
        settings.reload = reload
    if sql_log is not None:
        settings.sql_log = sql_log
    if database_url is not None:
        settings.database_url = database_url
    if profiles is not None:
        settings.profiles = profiles
    if billing_transport is not None:
        settings.billing_transport = billing_transport.lower()
    if billing_address is not None:
        settings.billing_service_address = billing_address
    if billing_port is not None:
        settings.billing_service_port = billing_port


@app.command()
def run(
    host: str = HOST_OPTION,
    port: int = PORT_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    reload: bool = RELOAD_OPTION,
    sql_log: bool = SQL_LOG_OPTION,
    database_url: str = DATABASE_URL_OPTION,
    profile: str = PROFILE_OPTION,
    billing_transport: str = BILLING_TRANSPORT_OPTION,
    billing_address: str = BILLING_ADDRESS_OPTION,
    billing_port: int = BILLING_PORT_OPTION,
) -> None:
    """Run the patient hub."""
    _update_settings(
        host, port, log_level, reload, sql_log, database_url, profile, billing_transport, billing_address, billing_port
    )

    settings = get_settings()

    setup_logging(settings.log_level)

    logger.info(f"Starting patient hub on {settings.host}:{settings.port}")
    logger.info(f"Profile: {settings.profiles or 'all'}")
    logger.info(f"Billing: {settings.billing_transport} ({settings.billing_base_url})")
    logger.info(f"Reload: {settings.reload}")

    # Run the app - use import string for reload mode
    if settings.reload:
        # The reloaded worker rebuilds settings from the environment, so CLI overrides do not reach it
        uvicorn.run(
            "patient_hub.app:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=True,
            log_level=settings.log_level.lower(),
        )
    else:
        from patient_hub.app import create_app

        uvicorn.run(
            create_app(settings),
            host=settings.host,
            port=settings.port,
            reload=False,
            log_level=settings.log_level.lower(),
        )


if __name__ == "__main__":
    app()
