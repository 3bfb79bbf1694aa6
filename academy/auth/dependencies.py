from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.schemas import CurrentUser
from academy.auth.services import resolve_session
from academy.core.exceptions import ServiceError, http_error
from academy.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated identity; user and branch must still be active."""
    try:
        return await resolve_session(db, token)
    except ServiceError as e:
        raise http_error(e)
