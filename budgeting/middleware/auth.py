from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from budgeting.services.auth_service import verify_access_token

logger = structlog.get_logger()

bearer = HTTPBearer()


def user_from_claims(claims: dict) -> dict:
    """Map verified token claims onto the user dict the services take."""
    if not claims.get("sub") or not claims.get("role"):
        raise JWTError("Token is missing sub or role")
    return {
        "user_id": claims["sub"],
        "role": claims["role"],
        "email": claims.get("email"),
        "department_id": claims.get("department_id"),
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
) -> dict:
    try:
        user = user_from_claims(verify_access_token(credentials.credentials))
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    structlog.contextvars.bind_contextvars(user_id=user["user_id"], role=user["role"])
    return user
