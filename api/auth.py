import logging
import secrets

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

BEARER = HTTPBearer(auto_error=False)


def check_admin_key(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an unset admin key never matches."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(BEARER),
):
    """Dependency that enforces ``Authorization: Bearer <ADMIN_KEY>``."""
    token = credentials.credentials if credentials else None
    if not check_admin_key(token, request.app.state.admin_key):
        raise HTTPException(status_code=401, detail="unauthorized")
