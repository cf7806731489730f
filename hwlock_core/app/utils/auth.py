# -*- coding: utf-8 -*-
"""
Admin authentication for the HWLock control server.

There is exactly one admin account, configured through HWLOCK_ADMIN_USERNAME
and HWLOCK_ADMIN_PASSWORD_HASH (bcrypt). A successful login issues a JWT
carried in an httponly cookie; every admin router depends on
get_current_admin().

Generate the password hash with:

    python -m app.utils.auth 'new-password'     (from hwlock_core/)
"""

import jwt
from datetime import datetime, timedelta
from typing import Optional
from passlib.context import CryptContext
from fastapi import HTTPException, status, Request
from config import (
    JWT_SECRET,
    JWT_ALGORITHM,
    ADMIN_COOKIE_NAME,
    ADMIN_USERNAME,
    ADMIN_SESSION_MINUTES,
)

TOKEN_SCOPE = "hwlock-admin"

# bcrypt only looks at the first 72 bytes
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password[:72])


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password[:72], hashed_password)
    except ValueError:
        # malformed hash in the environment
        return False


# -------------------------------------------------------------
# Session tokens
# -------------------------------------------------------------
def create_admin_token(username: str, expires_in_minutes: int = ADMIN_SESSION_MINUTES) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": username,
        "scope": TOKEN_SCOPE,
        "iat": now,
        "exp": now + timedelta(minutes=expires_in_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expired. Please login again.")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid authentication token.")

    if payload.get("scope") != TOKEN_SCOPE:
        raise _unauthorized("Invalid authentication token.")
    return payload


def get_current_admin(request: Request) -> str:
    """Cookie -> admin username; 401 on anything else."""
    token = request.cookies.get(ADMIN_COOKIE_NAME)
    if not token:
        raise _unauthorized("Not authenticated")

    username = decode_token(token).get("sub")
    # a renamed admin account invalidates old sessions
    if not username or username != ADMIN_USERNAME:
        raise _unauthorized("Invalid token")
    return username


if __name__ == "__main__":
    import sys

    if len(sys.argv) != 2:
        print("usage: python -m app.utils.auth PASSWORD")
        sys.exit(2)
    print(hash_password(sys.argv[1]))
