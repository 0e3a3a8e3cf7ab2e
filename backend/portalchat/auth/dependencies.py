"""FastAPI dependency resolving the caller of an HTTP request."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portalchat.directory import User, get_directory

from .service import AuthenticationFailure, get_token_service

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    """
    Extract and validate the caller from the Bearer token.

    Raises:
        HTTPException 401 if the token is missing, invalid, expired, or
        names a user the directory does not know.
    """
    token = credentials.credentials if credentials else None
    try:
        return get_token_service().authenticate(token, get_directory())
    except AuthenticationFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
