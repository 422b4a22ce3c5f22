"""Authentication API: HMAC-signed bearer tokens, no external JWT dependency."""

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Form, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from clinicalforge.config import get_settings
from clinicalforge.db import get_db
from clinicalforge.models import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter()

PASSWORD_SALT = "clinicalforge_salt"


# === Schemas ===

class Token(BaseModel):
    access_token: str
    token_type: str


class UserCreate(BaseModel):
    username: str
    password: str
    display_name: str
    role: UserRole = UserRole.CONTRIBUTOR
    email: Optional[str] = None
    institution: Optional[str] = None
    specialty: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uid: str
    username: str
    role: UserRole
    display_name: str
    email: Optional[str]
    institution: Optional[str]
    specialty: Optional[str]


# === Token helpers ===

def hash_password(password: str) -> str:
    return hashlib.sha256(f"{PASSWORD_SALT}{password}".encode()).hexdigest()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return hmac.compare_digest(hash_password(plain_password), hashed_password)


def _sign(payload_b64: str) -> str:
    key = get_settings().secret_key.encode()
    return hmac.new(key, payload_b64.encode(), hashlib.sha256).hexdigest()


def create_token(user_id: int, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=get_settings().token_expire_hours)
    payload = {"sub": user_id, "role": role, "exp": expire.isoformat()}
    payload_b64 = base64.b64encode(json.dumps(payload).encode()).decode()
    return f"{payload_b64}.{_sign(payload_b64)}"


def decode_token(token: str) -> Optional[dict]:
    """Payload of a valid, unexpired token, else ``None``."""
    parts = token.split(".")
    if len(parts) != 2:
        return None
    payload_b64, signature = parts
    if not hmac.compare_digest(signature, _sign(payload_b64)):
        return None
    try:
        payload = json.loads(base64.b64decode(payload_b64).decode())
        expires = datetime.fromisoformat(payload["exp"])
    except (ValueError, KeyError, TypeError):
        return None
    if datetime.now(timezone.utc) > expires:
        return None
    return payload


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def _user_from_header(authorization: Optional[str], db: Session) -> Optional[User]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    payload = decode_token(authorization[7:])
    if not payload or payload.get("sub") is None:
        return None
    return db.query(User).filter(User.id == payload["sub"]).first()


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    user = _user_from_header(authorization, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please sign in to access this feature.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Signed-in user if a valid token was sent; anonymous callers get ``None``."""
    return _user_from_header(authorization, db)


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required")
    return current_user


def _may_grant_admin(caller: Optional[User], username: str) -> bool:
    if caller is not None and caller.role == UserRole.ADMIN:
        return True
    return username in get_settings().admin_usernames


# === Endpoints ===

@router.post("/register", response_model=UserResponse)
async def register(
    user_data: UserCreate,
    db: Session = Depends(get_db),
    caller: Optional[User] = Depends(get_optional_user),
):
    """Create an account. Admin accounts need an admin caller or a configured username."""
    if get_user_by_username(db, user_data.username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")
    if user_data.role == UserRole.ADMIN and not _may_grant_admin(caller, user_data.username):
        logger.warning("Refused admin registration for %s", user_data.username)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only an administrator can create administrator accounts",
        )

    user = User(
        username=user_data.username,
        password_hash=hash_password(user_data.password),
        role=user_data.role,
        display_name=user_data.display_name,
        email=user_data.email,
        institution=user_data.institution,
        specialty=user_data.specialty,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s user %s", user.role.value, user.uid)
    return user


@router.post("/login", response_model=Token)
async def login(
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = get_user_by_username(db, username)
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )
    return {"access_token": create_token(user.id, user.role.value), "token_type": "bearer"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    return current_user
