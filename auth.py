"""
Authentication gate

Tokens are signed JWTs carrying the user id. A token only authenticates while
it is still listed in the owner's `tokens` array, so logout can revoke it
before it expires.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db
from logger import log_warning
from schemas import ADMIN

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

UNAUTHORIZED = "驗證錯誤"
FORBIDDEN = "沒有權限"


@dataclass
class CurrentUser:
    user: dict
    token: str

    @property
    def id(self) -> ObjectId:
        return self.user["_id"]

    @property
    def is_admin(self) -> bool:
        return self.user.get("role") == ADMIN


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def issue_token(user_id) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "_id": str(user_id),
        "jti": uuid4().hex,
        "iat": now,
        "exp": now + timedelta(days=config.TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.SECRET, algorithm=config.TOKEN_ALGORITHM)


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return ""
    return header[len("Bearer "):].strip()


def authenticate(request: Request, db: Database, leeway: timedelta = timedelta(0)) -> CurrentUser:
    """Resolve the bearer token to its user.

    Every failure (no token, unknown user, revoked token, bad signature,
    expired) is reported as the same 401.
    """
    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)

    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        user_id = ObjectId(str(claims["_id"]))
    except (jwt.PyJWTError, InvalidId, KeyError):
        log_warning("Rejected malformed token")
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)

    user = db["users"].find_one({"_id": user_id, "tokens": token})
    if user is None:
        log_warning(f"Rejected token not registered for user {user_id}")
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)

    try:
        jwt.decode(token, config.SECRET, algorithms=[config.TOKEN_ALGORITHM], leeway=leeway)
    except jwt.PyJWTError as e:
        log_warning(f"Rejected token for user {user_id}: {e}")
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)

    return CurrentUser(user=user, token=token)


def get_current_user(request: Request, db: Database = Depends(get_db)) -> CurrentUser:
    return authenticate(request, db)


def get_extendable_user(request: Request, db: Database = Depends(get_db)) -> CurrentUser:
    # Only used by /users/extend: an expired token may still be exchanged
    # within the grace window, the signature is always checked
    return authenticate(request, db, leeway=timedelta(days=config.EXTEND_GRACE_DAYS))


def require_admin(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current.is_admin:
        raise HTTPException(status_code=403, detail=FORBIDDEN)
    return current
