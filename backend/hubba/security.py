from __future__ import annotations
import os
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt

# Tokens are minted by the identity provider; we share its HS256 secret.
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_ISSUER = os.getenv("JWT_ISSUER", "") or None
ACCESS_TTL_MIN = int(os.getenv("ACCESS_TTL_MIN", "60"))

def make_access_token(sub: str, ttl_min: int = ACCESS_TTL_MIN) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    if JWT_ISSUER:
        payload["iss"] = JWT_ISSUER
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)

def decode_token(token: str) -> dict[str, Any]:
    options = {"require": ["sub", "exp"]}
    if JWT_ISSUER:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG], issuer=JWT_ISSUER, options=options)
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG], options=options)
