"""
PointLedger API Dependencies

Dependency injection for DB sessions and auth.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.security import ROLE_STAFF, is_staff
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory():
    """Session factory for operations that open their own units of work."""
    return AsyncSessionLocal


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {"sub": "dev-staff", "username": "dev", "role": ROLE_STAFF}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def require_staff(user: dict = Depends(get_current_user)) -> dict:
    if not is_staff(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff only")
    return user


def resolve_cust_code(user: dict, requested: str | None) -> str:
    """Staff may act on any customer; members only on themselves."""
    cust_code = requested if is_staff(user) else user.get("cust_code")
    if not cust_code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cust_code is required")
    return cust_code
