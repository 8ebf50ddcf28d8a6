"""
FastAPI dependencies and error mapping shared by the route modules.

The manager and coordinator are created by the app lifespan and stored on
`app.state`; tests replace them through `app.dependency_overrides`.
"""
import logging

from fastapi import HTTPException, Request, status

from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.deletion.coordinator import DeletionCoordinator
from mailboard.core.errors import AuthError, MailboardError, MessageNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def get_manager(request: Request) -> MultiAccountManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Accounts are not initialized")
    return manager


def get_coordinator(request: Request) -> DeletionCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Accounts are not initialized")
    return coordinator


def to_http_error(error: MailboardError) -> HTTPException:
    """Map a mailboard error to the HTTP status the dashboard expects."""
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, AuthError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(error, MessageNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    logger.warning(f"Request failed ({code}): {error}")
    return HTTPException(status_code=code, detail=str(error))
