"""Authentication routes and the bearer-token dependency.

Only the identity matters to the chat core: login yields an opaque token that
``get_current_user_id`` resolves back to a numeric user id.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

import bcrypt
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from . import schemas
from .config import TOKEN_EXPIRY_MINUTES
from .database import get_db
from .logging_config import configure_logging
from .models import User

router = APIRouter(prefix="/auth", tags=["auth"])
logger = configure_logging()


@dataclass
class IssuedToken:
    user_id: int
    expires: datetime


class TokenStore:
    """In-memory bearer tokens; cleared on restart like the presence registry."""

    def __init__(self, ttl_minutes: int = TOKEN_EXPIRY_MINUTES):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._tokens: Dict[str, IssuedToken] = {}

    def issue(self, user_id: int) -> str:
        now = datetime.utcnow()
        self._prune(now)
        token = secrets.token_urlsafe(32)
        self._tokens[token] = IssuedToken(user_id=user_id, expires=now + self.ttl)
        return token

    def _prune(self, now: datetime) -> None:
        for token in [t for t, issued in self._tokens.items() if issued.expires < now]:
            del self._tokens[token]

    def user_for(self, token: str) -> Optional[int]:
        """Return the user a live token belongs to, or None."""
        issued = self._tokens.get(token)
        if issued is None or issued.expires < datetime.utcnow():
            return None
        return issued.user_id

    def resolve(self, token: str) -> int:
        issued = self._tokens.get(token)
        if issued is None:
            logger.warning("UNAUTHORIZED_ACCESS reason=unknown_token")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        if issued.expires < datetime.utcnow():
            logger.warning("UNAUTHORIZED_ACCESS reason=expired_token user_id=%s", issued.user_id)
            self._tokens.pop(token, None)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
        return issued.user_id

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    def __contains__(self, token: str) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


tokens = TokenStore()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def issue_token(user_id: int) -> str:
    return tokens.issue(user_id)


@router.post("/register", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def register(payload: schemas.RegisterRequest, db: Session = Depends(get_db)):
    username = payload.username.strip()
    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=400, detail="Username already exists")

    user = User(username=username, password_hash=hash_password(payload.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("REGISTER_SUCCESS username=%s user_id=%s", user.username, user.id)
    return user


@router.post("/login", response_model=schemas.LoginResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user: Optional[User] = db.query(User).filter(User.username == payload.username).first()
    if user is None or not bcrypt.checkpw(payload.password.encode(), user.password_hash.encode()):
        reason = "not_found" if user is None else "bad_password"
        logger.info("LOGIN_FAIL username=%s reason=%s", payload.username, reason)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = issue_token(user.id)
    logger.info("LOGIN_SUCCESS username=%s user_id=%s", user.username, user.id)
    return schemas.LoginResponse(token=token, user=schemas.UserOut.model_validate(user))


def _bearer(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        logger.warning("UNAUTHORIZED_ACCESS reason=missing_token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return authorization.split(" ", 1)[1]


def get_current_user_id(authorization: str | None = Header(default=None)) -> int:
    """FastAPI dependency returning authenticated user's id."""
    return tokens.resolve(_bearer(authorization))


@router.post("/logout")
def logout(authorization: str | None = Header(default=None)):
    token = _bearer(authorization)
    user_id = tokens.resolve(token)
    tokens.revoke(token)
    logger.info("LOGOUT user_id=%s", user_id)
    return {"message": "Logged out"}
