"""
Caller authentication.

Every exchange (including the `health` action) requires a bearer JWT issued
by the hosted auth service. The token is validated remotely and the caller's
organization is read from their profile; tier and cost are never taken from
the client.
"""

from typing import Optional

from fastapi import HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ai_gateway.models import CallerIdentity
from ai_gateway.tenant import TenantDirectory, TenantLookupError
from config.logging_config import get_logger

logger = get_logger(__name__)

# HTTP Bearer security scheme; missing credentials are handled below
security = HTTPBearer(auto_error=False)


def unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate_caller(
    directory: TenantDirectory,
    credentials: Optional[HTTPAuthorizationCredentials]
) -> CallerIdentity:
    """
    Resolve bearer credentials to a caller and their billing tenant.

    Raises:
        HTTPException: 401 when the token is missing or rejected
    """
    if not credentials or not credentials.credentials:
        raise unauthorized()

    user = await directory.get_user(credentials.credentials)
    if not user:
        raise unauthorized()

    user_id = str(user["id"])
    try:
        tenant_id = await directory.get_organization_id(user_id)
    except TenantLookupError as e:
        # Caller is still authenticated; they are treated as an individual
        logger.warning(f"Profile lookup failed for user {user_id}: {e}")
        tenant_id = None

    return CallerIdentity(user_id=user_id, tenant_id=tenant_id)


async def verify_caller(request: Request) -> CallerIdentity:
    """FastAPI dependency: authenticate against the app's tenant directory."""
    credentials = await security(request)
    directory = request.app.state.directory
    return await authenticate_caller(directory, credentials)
