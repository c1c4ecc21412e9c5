"""
Shared dependency functions for FastAPI routers.
Every protected handler receives the resolved Caller explicitly.
"""
import logging
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from database.DB import get_db, USERS
from helpers.AccessToken import verify_access_token
from models.models import Caller, Role
from .errors import Unauthorized, Forbidden, BadRequest

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security), db = Depends(get_db)) -> Caller:
    """
    Resolve the bearer token to a live user.
    Identity is re-read on every request so deleted users lose access immediately.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("No token provided")

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise Unauthorized("Invalid or expired token")

    user = await db.find_one(USERS, {"_id": payload["sub"]})
    if not user:
        logger.info("Token for missing user %s rejected", payload["sub"])
        raise Unauthorized("User no longer exists")

    return Caller(
        id=user["_id"],
        role=Role(user["role"]),
        name=user.get("name", ""),
        email=user.get("email", ""),
        coordinatingClub=user.get("coordinatingClub"),
        clubs=user.get("clubs") or [],
    )


def require_role(*roles: Role):
    """Build a dependency that only lets the given roles through"""
    allowed = set(roles)

    async def checker(user: Caller = Depends(get_current_user)) -> Caller:
        if user.role not in allowed:
            names = " or ".join(sorted(r.value for r in allowed))
            raise Forbidden(f"{names.capitalize()} access required")
        return user

    return checker


require_admin = require_role(Role.ADMIN)
require_coordinator = require_role(Role.COORDINATOR)
require_student = require_role(Role.STUDENT)
require_admin_or_coordinator = require_role(Role.ADMIN, Role.COORDINATOR)


def can_manage_club(user: Caller, club_id: str) -> bool:
    """Admins manage every club, a coordinator only the club they are assigned to"""
    if user.role == Role.ADMIN:
        return True
    if user.role == Role.COORDINATOR:
        return user.coordinatingClub is not None and user.coordinatingClub == club_id
    return False


def assigned_club(user: Caller) -> str:
    """The coordinator's club; users.coordinatingClub is the single source of truth"""
    if not user.coordinatingClub:
        raise BadRequest("No club assigned to this coordinator")
    return user.coordinatingClub
