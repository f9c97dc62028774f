# labyrinth/routers/auth.py
import logging
import secrets
from datetime import timedelta, datetime, timezone
from typing import Annotated, Optional
from fastapi import APIRouter, Cookie, Depends, HTTPException, status, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import jwt, JWTError

from ..config import Settings, get_settings
from ..database import get_db
from ..mailer import Mailer, MailerError, get_mailer, reset_password_email
from ..models import Users


from passlib.context import CryptContext

logger = logging.getLogger(__name__)

authRoutes = APIRouter(prefix="/auth", tags=["auth"])
passwordRoutes = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_TOKEN_TTL = timedelta(hours=1)
FORGOT_PASSWORD_MESSAGE = "If an account exists, you will receive a password reset email"

optional_bearer = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)
db_link = Annotated[Session, Depends(get_db)]
settings_link = Annotated[Settings, Depends(get_settings)]


bcrypt_context = CryptContext(schemes=['bcrypt'], deprecated='auto', bcrypt__rounds=12)


def utcnow() -> datetime:
    # naive UTC, the way SQLite hands datetimes back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        # OAuth-only accounts have no password to check
        return False
    return bcrypt_context.verify(plain, hashed)

class UserRequest(BaseModel):
    name: str
    email: EmailStr
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    password: str = Field(..., min_length=6, max_length=72)

class UserOut(BaseModel):
    id: int
    name: Optional[str]
    email: EmailStr
    username: Optional[str]
    role: str
    is_active: bool
    class Config:
        from_attributes = True  # Pydantic v2

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    id: int
    name: Optional[str]
    email: EmailStr
    username: Optional[str]
    role: str

class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None

class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None

@authRoutes.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserRequest, db: db_link):
    email = payload.email.strip().lower()
    username = payload.username.strip() if payload.username else None

    existing = db.query(Users).filter(Users.email == email).first()
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")
    if username and db.query(Users).filter(Users.username == username).first():
        raise HTTPException(status_code=409, detail="Username already taken")

    user = Users(
        name=payload.name,
        email=email,
        username=username,
        hashed_password=bcrypt_context.hash(payload.password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_access_token(settings: Settings, email: str, user_id: int, expires_delta: Optional[timedelta] = None):
    to_encode = {"sub": email, "uid": user_id}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    # DEV: localhost can use secure=False and samesite="lax"
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        max_age=settings.access_token_expire_minutes * 60,
        samesite="lax",       # use "none" + secure=True when on HTTPS cross-site
        secure=False,         # set True in production (HTTPS)
    )


def _user_from_token(token: str, db: Session, settings: Settings) -> Users:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    email = payload.get("sub")
    user_id = payload.get("uid")
    if not email or not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized: missing claims",
        )
    user = db.get(Users, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def _request_token(bearer: Optional[str], cookie: Optional[str]) -> Optional[str]:
    # API clients send a bearer header; browsers carry the session cookie
    return bearer or cookie


def get_current_user(
    token: Annotated[Optional[str], Depends(optional_bearer)],
    db: db_link,
    settings: settings_link,
    access_token: Annotated[Optional[str], Cookie()] = None,
) -> Users:
    token = _request_token(token, access_token)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _user_from_token(token, db, settings)


def get_optional_user(
    token: Annotated[Optional[str], Depends(optional_bearer)],
    db: db_link,
    settings: settings_link,
    access_token: Annotated[Optional[str], Cookie()] = None,
) -> Optional[Users]:
    """Like get_current_user, but anonymous requests get None instead of a 401."""
    token = _request_token(token, access_token)
    if not token:
        return None
    try:
        return _user_from_token(token, db, settings)
    except HTTPException:
        # a stale session is treated as no session
        logger.info("Ignoring invalid session token on an anonymous-capable route")
        return None


current_login_user = Annotated[Users, Depends(get_current_user)]
optional_login_user = Annotated[Optional[Users], Depends(get_optional_user)]


def _authenticate(db: Session, email: str, password: str) -> Users:
    user = db.query(Users).filter(Users.email == email.lower().strip()).first()
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@authRoutes.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: db_link, settings: settings_link, response: Response):
    user = _authenticate(db, payload.email, payload.password)
    token = create_access_token(settings, email=user.email, user_id=user.id)
    set_session_cookie(response, token, settings)

    return TokenResponse(
            access_token=token,
            id=user.id,
            name=user.name,
            email=user.email,
            username=user.username,
            role=user.role,
        )


@authRoutes.post("/token")
def token(form: Annotated[OAuth2PasswordRequestForm, Depends()], db: db_link, settings: settings_link):
    user = _authenticate(db, form.username, form.password)
    return {"access_token": create_access_token(settings, email=user.email, user_id=user.id), "token_type": "bearer"}


@authRoutes.get("/me", response_model=UserOut)
def read_me(current_user: current_login_user):
    return current_user


@passwordRoutes.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: db_link, settings: settings_link,
                    mailer: Annotated[Mailer, Depends(get_mailer)]):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")

    email = payload.email.strip().lower()
    try:
        user = db.query(Users).filter(Users.email == email).first()
        if user:
            user.reset_token = secrets.token_hex(32)
            user.reset_token_expiry = utcnow() + RESET_TOKEN_TTL
            db.commit()

            reset_url = f"{settings.app_base_url}/auth/reset-password?token={user.reset_token}"
            mailer.send(email, "Reset your password", reset_password_email(reset_url))
    except (SQLAlchemyError, MailerError) as e:
        db.rollback()
        logger.error("Password reset error: %s", e)
        raise HTTPException(status_code=500, detail="Error sending password reset email")

    # same answer whether or not the account exists
    return {"message": FORGOT_PASSWORD_MESSAGE}


@passwordRoutes.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: db_link):
    if not payload.token or not payload.password:
        raise HTTPException(status_code=400, detail="Missing required fields")

    try:
        user = (
            db.query(Users)
            .filter(Users.reset_token == payload.token, Users.reset_token_expiry > utcnow())
            .first()
        )
        if not user:
            raise HTTPException(status_code=400, detail="Invalid or expired reset token")

        user.hashed_password = bcrypt_context.hash(payload.password)
        user.reset_token = None
        user.reset_token_expiry = None
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Password reset error: %s", e)
        raise HTTPException(status_code=500, detail="Error resetting password")

    return {"message": "Password reset successfully"}
