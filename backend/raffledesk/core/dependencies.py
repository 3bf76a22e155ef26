from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from raffledesk.core.exceptions import UnauthorizedError
from raffledesk.core.security import decode_operator_token
from raffledesk.db.session import get_db

__all__ = ["bearer_scheme", "get_db", "require_operator"]

bearer_scheme = HTTPBearer(auto_error=False)


async def require_operator(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Guard for operator routes; returns the token subject."""
    if credentials is None:
        raise UnauthorizedError()
    try:
        payload = decode_operator_token(credentials.credentials)
    except ValueError:
        raise UnauthorizedError("Invalid or expired operator token")

    if payload.get("type") != "operator":
        raise UnauthorizedError("Invalid token type")

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError()
    return subject
