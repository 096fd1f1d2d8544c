from __future__ import annotations
import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from hubba.errors import Unauthenticated
from hubba.security import decode_token

security = HTTPBearer(auto_error=False)

async def get_current_actor(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    """Actor id (`sub`) of the bearer token. Roles are resolved server-side per operation."""
    if credentials is None:
        raise Unauthenticated("You must be logged in.")
    try:
        data = decode_token(credentials.credentials)
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid token")
    if data.get("type", "access") != "access":
        raise Unauthenticated("Wrong token type")
    sub = data.get("sub")
    if not sub or not isinstance(sub, str):
        raise Unauthenticated("Invalid token subject")
    return sub
