"""Bearer token authentication for the /api routes."""

import secrets
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = structlog.get_logger(__name__)

# auto_error=False so a missing header is a 401 like a wrong one
bearer_scheme = HTTPBearer(auto_error=False)


def token_matches(presented: str, expected: str) -> bool:
    """Compare tokens in constant time."""
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def verify_token(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Reject requests that do not carry the configured bearer token.

    Raises:
        HTTPException: 401 if the header is missing, malformed or wrong.
    """
    expected = request.app.state.settings.token

    if credentials is None or not token_matches(credentials.credentials, expected):
        logger.warning(
            "unauthorized_request",
            path=request.url.path,
            client=request.client.host if request.client else None,
            has_credentials=credentials is not None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
