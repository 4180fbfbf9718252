"""
Access control for the bookstore endpoints.

Tokens only carry ``user_id`` and ``email``. The role is looked up in the
users collection every time ``authorize`` runs, so a role change applies to
the very next request without a new login.
"""
from typing import Optional
from fastapi import Depends, Header, Request
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from shared.utils import (
    verify_token, AppException, InvalidArgumentException,
    UnauthorizedException, ForbiddenException
)


class Identity(BaseModel):
    user_id: str
    email: Optional[str] = None


async def get_database(request: Request):
    return request.app.mongodb


def str_to_oid(id: str, label: str = "ID") -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise InvalidArgumentException(f"Invalid {label}")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return param.strip() or None


async def authenticate(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    token = _bearer_token(authorization)
    if not token:
        raise UnauthorizedException("Access token required")

    payload = verify_token(token)
    identity = Identity(user_id=str(payload["user_id"]), email=payload.get("email"))
    request.state.user_id = identity.user_id
    return identity


async def optional_authenticate(request: Request, authorization: Optional[str] = Header(None)) -> Optional[Identity]:
    try:
        return await authenticate(request, authorization)
    except AppException:
        return None


async def resolve_role(db, identity: Identity) -> Optional[str]:
    try:
        oid = ObjectId(identity.user_id)
    except (InvalidId, TypeError):
        return None
    user = await db.users.find_one({"_id": oid}, {"role": 1})
    if not user:
        return None
    return user.get("role") or "user"


async def authorize(db, identity: Identity, required_role: str = "user") -> str:
    """Re-read the caller's role and check it against ``required_role``."""
    role = await resolve_role(db, identity)
    if role is None:
        raise ForbiddenException("User no longer exists")
    if required_role == "admin" and role != "admin":
        raise ForbiddenException("Admin access required")
    return role


async def require_admin(identity: Identity = Depends(authenticate), db=Depends(get_database)) -> Identity:
    await authorize(db, identity, "admin")
    return identity
