"""
FastAPI dependencies for reaching the watchdog services.
"""

from fastapi import HTTPException, Request, status

from auditguard.container import Services
from auditguard.utils.logging import get_logger

logger = get_logger(__name__)


def get_services(request: Request) -> Services:
    """
    Return the service graph built by the application lifespan.

    Raises:
        HTTPException: 503 if the lifespan has not built the services
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        logger.warning("services_unavailable", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Watchdog services are not running",
        )
    return services


def busy_conflict(operation: str) -> HTTPException:
    """409 for an operator request dropped by the recovery guard."""
    logger.info("operator_request_dropped", operation=operation)
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"A recovery attempt is already running; {operation} was not started",
    )
