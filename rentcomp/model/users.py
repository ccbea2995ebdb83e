from __future__ import annotations
import logging

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import ADMIN_ROLES, hash_password, issue_token, verify_password
from ..helpers import is_valid_email, now_ts, require_str
from ..infra.sql import Gated
from .activity import write_log

logger = logging.getLogger(__name__)

BAD_CREDENTIALS = "Invalid email or password"


async def register_customer(
    db: AsyncSession, gated: Gated, payload: dict
) -> dict:
    name = require_str(payload, "name")
    username = require_str(payload, "username")
    email = require_str(payload, "email")
    password = require_str(payload, "password")
    if not is_valid_email(email):
        raise HTTPException(400, detail="Invalid email")

    hashed = await hash_password(password)
    ts = now_ts()
    try:
        async with gated():
            async with db.begin():
                customer_id = (await db.execute(
                    text("""
                        INSERT INTO customer (name, username, email, password,
                                              wallet, created_at, updated_at)
                        VALUES (:name, :username, :email, :password,
                                0, :ts, :ts)
                        RETURNING id
                    """),
                    {"name": name, "username": username, "email": email,
                     "password": hashed, "ts": ts},
                )).scalar_one()
                await write_log(
                    db,
                    f"Customer {name} (ID: {customer_id}) registered "
                    "successfully",
                    customer_id=customer_id,
                )
    except IntegrityError:
        raise HTTPException(400, detail="Email already registered")

    logger.info("customer %s registered", customer_id)
    return {
        "message": f"User {name} registered successfully",
        "email": email,
    }


async def register_admin(
    db: AsyncSession, gated: Gated, payload: dict
) -> dict:
    username = require_str(payload, "username")
    password = require_str(payload, "password")
    role = require_str(payload, "role")
    if role not in ADMIN_ROLES:
        raise HTTPException(
            400, detail="role must be one of: " + ", ".join(ADMIN_ROLES)
        )

    hashed = await hash_password(password)
    ts = now_ts()
    try:
        async with gated():
            async with db.begin():
                admin_id = (await db.execute(
                    text("""
                        INSERT INTO admin (username, password, role,
                                           created_at, updated_at)
                        VALUES (:username, :password, :role, :ts, :ts)
                        RETURNING id
                    """),
                    {"username": username, "password": hashed, "role": role,
                     "ts": ts},
                )).scalar_one()
                await write_log(
                    db,
                    f"Admin {username} (ID: {admin_id}) registered "
                    "successfully",
                )
    except IntegrityError:
        raise HTTPException(400, detail="Username already registered")

    logger.info("admin %s registered with role %s", admin_id, role)
    return {
        "message": f"Admin {username} registered successfully",
        "role": role,
    }


async def login_customer(
    db: AsyncSession, gated: Gated, payload: dict
) -> dict:
    email = require_str(payload, "email")
    password = require_str(payload, "password")

    async with gated():
        async with db.begin():
            row = (await db.execute(
                text("SELECT id, password FROM customer WHERE email = :email"),
                {"email": email},
            )).mappings().first()
    if row is None or not await verify_password(password, row["password"]):
        raise HTTPException(400, detail=BAD_CREDENTIALS)

    customer_id = int(row["id"])
    token = issue_token({"customer_id": customer_id})
    async with gated():
        async with db.begin():
            await db.execute(
                text("""
                    UPDATE customer SET jwt_token = :token, updated_at = :ts
                    WHERE id = :id
                """),
                {"token": token, "ts": now_ts(), "id": customer_id},
            )
            await write_log(
                db, f"Customer {customer_id} logged in successfully",
                customer_id=customer_id, login_time=now_ts(),
            )
    return {"token": token}


async def login_admin(
    db: AsyncSession, gated: Gated, payload: dict
) -> dict:
    username = require_str(payload, "username")
    password = require_str(payload, "password")

    async with gated():
        async with db.begin():
            row = (await db.execute(
                text("""
                    SELECT id, password, role FROM admin
                    WHERE username = :username
                """),
                {"username": username},
            )).mappings().first()
    if row is None or not await verify_password(password, row["password"]):
        raise HTTPException(400, detail=BAD_CREDENTIALS)

    admin_id = int(row["id"])
    token = issue_token({"admin_id": admin_id, "role": row["role"]})
    async with gated():
        async with db.begin():
            await db.execute(
                text("""
                    UPDATE admin SET jwt_token = :token, updated_at = :ts
                    WHERE id = :id
                """),
                {"token": token, "ts": now_ts(), "id": admin_id},
            )
            await write_log(db, f"Admin {admin_id} logged in successfully")
    return {"token": token}
