"""
Identity provider: password accounts, JWT sessions and the request dependencies
that attach an ``Identity`` to a request.

Access and refresh tokens are HS256 JWTs signed with ``JWT_SECRET``. Each token
carries a ``jti`` so logout and refresh rotation can revoke it.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings, get_settings
from database import create_document, get_db, object_id, now_utc
from errors import InvalidArgument, NotFound, Unauthenticated
from schemas import Identity, User

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
ACCESS = "access"
REFRESH = "refresh"

password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: dict, settings: Settings, token_type: str = ACCESS) -> Dict[str, Any]:
    issued = datetime.now(timezone.utc)
    if token_type == REFRESH:
        expires = issued + timedelta(days=settings.refresh_token_expire_days)
    else:
        expires = issued + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": issued,
        "exp": expires,
    }
    return {"token": jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG), "expires_at": int(expires.timestamp())}


def issue_session(user: dict, settings: Settings) -> Dict[str, Any]:
    access = create_token(user, settings, ACCESS)
    refresh = create_token(user, settings, REFRESH)
    return {
        "access_token": access["token"],
        "refresh_token": refresh["token"],
        "expires_at": access["expires_at"],
    }


def decode_token(token: str, settings: Settings, expected_type: str = ACCESS) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid or expired token")
    if payload.get("type") != expected_type or not payload.get("sub") or not payload.get("jti"):
        raise Unauthenticated("Invalid or expired token")
    return payload


def is_revoked(db: Database, jti: str) -> bool:
    return db["revoked_token"].find_one({"jti": jti}) is not None


def revoke(db: Database, payload: dict) -> None:
    expires = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    db["revoked_token"].update_one(
        {"jti": payload["jti"]},
        {"$setOnInsert": {"jti": payload["jti"], "user_id": payload["sub"], "expires_at": expires, "revoked_at": now_utc()}},
        upsert=True,
    )


def to_identity(user: Optional[dict]) -> Identity:
    if not user or not user.get("is_active", True):
        raise Unauthenticated("Invalid or expired token")
    try:
        return Identity(id=str(user["_id"]), email=user["email"], role=user.get("role") or "user")
    except (KeyError, ValidationError):
        raise Unauthenticated("Invalid or expired token")


def verify_token(db: Database, settings: Settings, token: str) -> Identity:
    payload = decode_token(token, settings, ACCESS)
    if is_revoked(db, payload["jti"]):
        raise Unauthenticated("Token has been revoked")
    oid = object_id(payload["sub"])
    if oid is None:
        raise Unauthenticated("Invalid or expired token")
    return to_identity(db["user"].find_one({"_id": oid}))


# Accounts

def signup(db: Database, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> dict:
    if not email or not password:
        raise InvalidArgument("Email and password are required")
    if db["user"].find_one({"email": email}):
        raise InvalidArgument("Email already registered")
    user = User(name=name, email=email, hashed_password=hash_password(password))
    try:
        user_id = create_document(db, "user", user.model_dump())
    except DuplicateKeyError:
        raise InvalidArgument("Email already registered")
    logger.info("Created user %s", user_id)
    return {"user": {"id": user_id, "email": email}}


def login(db: Database, settings: Settings, email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise InvalidArgument("Email and password are required")
    user = db["user"].find_one({"email": email})
    if not user or not user.get("is_active", True) or not verify_password(password, user.get("hashed_password", "")):
        raise Unauthenticated("Invalid credentials")
    return {
        "user": {"id": str(user["_id"]), "email": user["email"], "user_metadata": {"name": user.get("name")}},
        "session": issue_session(user, settings),
    }


def refresh_session(db: Database, settings: Settings, refresh_token: Optional[str]) -> dict:
    if not refresh_token:
        raise InvalidArgument("Refresh token is required")
    try:
        payload = decode_token(refresh_token, settings, REFRESH)
    except Unauthenticated:
        raise Unauthenticated("Invalid refresh token")
    if is_revoked(db, payload["jti"]):
        raise Unauthenticated("Invalid refresh token")
    oid = object_id(payload["sub"])
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user or not user.get("is_active", True):
        raise Unauthenticated("Invalid refresh token")
    revoke(db, payload)
    return issue_session(user, settings)


def logout(db: Database, settings: Settings, token: Optional[str]) -> None:
    if not token:
        return
    try:
        payload = decode_token(token, settings, ACCESS)
    except Unauthenticated:
        # Nothing to revoke for a token that no longer verifies.
        return
    revoke(db, payload)


def get_profile(db: Database, identity: Identity) -> dict:
    user = db["user"].find_one({"_id": object_id(identity.id)})
    if not user:
        raise NotFound("User not found")
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "user_metadata": {"name": user.get("name"), "role": user.get("role", "user")},
        "created_at": user.get("created_at"),
    }


# Request dependencies

async def require_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthenticated("Missing or invalid authorization header")
    return verify_token(db, settings, credentials.credentials)


async def optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[Identity]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        return verify_token(db, settings, credentials.credentials)
    except Unauthenticated:
        return None
    except PyMongoError:
        logger.exception("Identity lookup failed, continuing anonymously")
        return None
