"""
Authentication API - bcrypt passwords, JWT bearer tokens, request identity

Every stock mutation is attributed to the authenticated user (ledger
``actor_id``); the shop a request acts on comes from the X-Shop-Id header.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from uuid import UUID

import bcrypt
from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core import get_db, settings
from app.core.errors import ValidationError
from app.models import AppUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ============== Schemas ==============

class UserInfo(BaseModel):
    id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserInfo


# ============== Passwords & Tokens ==============

def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(user: AppUser, expires_delta: Optional[timedelta] = None) -> Tuple[str, int]:
    """Signed token for ``user``; returns (token, lifetime in seconds)"""
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM), int(lifetime.total_seconds())


def decode_access_token(token: str) -> Optional[UUID]:
    """User id carried by a valid, unexpired token; None otherwise"""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return UUID(claims["sub"])
    except (JWTError, KeyError, ValueError):
        return None


def authenticate_user(db: Session, username: str, password: str) -> Optional[AppUser]:
    user = db.query(AppUser).filter(AppUser.username == username).first()
    if user is None or not user.hashed_password:
        return None
    return user if verify_password(password, user.hashed_password) else None


# ============== Dependencies ==============

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> Optional[AppUser]:
    user_id = decode_access_token(token) if token else None
    if user_id is None:
        return None
    return db.get(AppUser, user_id)


async def get_current_active_user(
    current_user: Optional[AppUser] = Depends(get_current_user)
) -> AppUser:
    """The acting user; 401 without a valid token, 403 when deactivated"""
    if current_user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")
    return current_user


async def get_shop_scope(x_shop_id: Optional[str] = Header(None)) -> Optional[UUID]:
    """Shop the request acts on, from the X-Shop-Id header; None when absent"""
    if not x_shop_id:
        return None
    try:
        return UUID(x_shop_id)
    except ValueError:
        raise ValidationError("X-Shop-Id must be a valid UUID", value=x_shop_id)


# ============== API Endpoints ==============

@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """Exchange username and password for a bearer token"""
    user = authenticate_user(db, form_data.username, form_data.password)
    if user is None:
        logger.info(f"Failed login for {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")

    token, expires_in = create_access_token(user)
    return Token(access_token=token, expires_in=expires_in, user=UserInfo.model_validate(user))


@router.get("/me", response_model=UserInfo)
async def get_me(current_user: AppUser = Depends(get_current_active_user)):
    return current_user
