import time
import uuid
from dataclasses import dataclass

import jwt
from fastapi import Depends, Header, HTTPException, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import User, Farmer, Buyer
from .utils import as_uuid


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def make_token(user_id: str, role: str) -> str:
    now = int(time.time())
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + int(settings.jwt_expires_delta.total_seconds()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def get_current_user(authorization: str | None = Header(default=None, alias="Authorization"), db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
    uid = as_uuid(payload.get("sub"))
    u = db.get(User, uid) if uid else None
    if u is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown_user")
    return u


@dataclass(frozen=True)
class SessionContext:
    """Who is calling, resolved once per request."""

    user_id: uuid.UUID
    role: str
    farmer_id: uuid.UUID | None = None
    buyer_id: uuid.UUID | None = None

    @property
    def is_farmer(self) -> bool:
        return self.role == "farmer" and self.farmer_id is not None

    @property
    def is_buyer(self) -> bool:
        return self.role == "buyer" and self.buyer_id is not None


def get_session_context(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> SessionContext:
    farmer_id = db.query(Farmer.id).filter(Farmer.user_id == user.id).scalar()
    buyer_id = db.query(Buyer.id).filter(Buyer.user_id == user.id).scalar()
    return SessionContext(user_id=user.id, role=user.role, farmer_id=farmer_id, buyer_id=buyer_id)


def require_farmer(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
    if not ctx.is_farmer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="farmer_role_required")
    return ctx


def require_buyer(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
    if not ctx.is_buyer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="buyer_role_required")
    return ctx
