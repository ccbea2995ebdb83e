import time
from dataclasses import dataclass
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from . import config

ADMIN_ROLES = ("admin", "super-admin")
SUPER_ADMIN = "super-admin"

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72

bearer = HTTPBearer(auto_error=False)


# ----------------------------
# Passwords
# ----------------------------
def check_password_length(password: str) -> None:
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise HTTPException(400, detail="Password is too long")


async def hash_password(password: str) -> str:
    check_password_length(password)
    hashed = await run_in_threadpool(
        bcrypt.hashpw, password.encode(), bcrypt.gensalt()
    )
    return hashed.decode()


async def verify_password(password: str, hashed: str) -> bool:
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        return False
    try:
        return await run_in_threadpool(
            bcrypt.checkpw, password.encode(), hashed.encode()
        )
    except ValueError:
        # stored value is not a bcrypt hash
        return False


# ----------------------------
# Tokens
# ----------------------------
def issue_token(claims: dict, ttl_seconds: Optional[int] = None) -> str:
    ttl = config.JWT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    payload = dict(claims)
    payload["exp"] = int(time.time()) + int(ttl)
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(
            token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(401, detail="Invalid token")


# ----------------------------
# Dependencies
# ----------------------------
@dataclass(frozen=True)
class AdminPrincipal:
    admin_id: int
    role: str

    @property
    def is_super(self) -> bool:
        return self.role == SUPER_ADMIN


def _claims(creds: Optional[HTTPAuthorizationCredentials]) -> dict:
    if creds is None or creds.scheme.lower() != "bearer":
        raise HTTPException(401, detail="Missing or invalid token")
    return decode_token(creds.credentials)


async def current_customer(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> int:
    claims = _claims(creds)
    customer_id = claims.get("customer_id")
    if not isinstance(customer_id, int):
        raise HTTPException(403, detail="Customer token required")
    return customer_id


async def current_admin(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> AdminPrincipal:
    claims = _claims(creds)
    admin_id = claims.get("admin_id")
    role = claims.get("role")
    if not isinstance(admin_id, int) or role not in ADMIN_ROLES:
        raise HTTPException(
            403,
            detail="Unauthorized. Only selected admins can perform this "
                   "action."
        )
    return AdminPrincipal(admin_id=admin_id, role=role)


async def current_super_admin(
    admin: AdminPrincipal = Depends(current_admin),
) -> AdminPrincipal:
    if not admin.is_super:
        raise HTTPException(
            403,
            detail="Unauthorized. Only super-admins can perform this action."
        )
    return admin
