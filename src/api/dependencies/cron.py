"""
Cron service dependency.

The service instance is attached to app.state by create_app(); routers
resolve it per request.
"""

from fastapi import HTTPException, Request, status

from src.cron.service import CronService


def get_cron_service(request: Request) -> CronService:
    """
    Get the CronService bound to this app.

    Raises:
        HTTPException: 503 if the app was built without a service
    """
    service = getattr(request.app.state, "cron_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron service not initialized",
        )
    return service
