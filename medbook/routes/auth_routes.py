import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_current_user, get_db, get_viewer
from medbook.auth.passwords import hash_password, verify_password
from medbook.auth.policy import Viewer, allowed_routes
from medbook.auth.session import SessionContext
from medbook.core.config import AuthPersistence
from medbook.models.user import ROLE_PATIENT, User
from medbook.routes.common import database_unavailable

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


class RegisterRequest(BaseModel):
    email: str
    password: str
    confirm_password: str
    full_name: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Full name is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')
        return value

    @model_validator(mode='after')
    def validate_passwords_match(self) -> 'RegisterRequest':
        if self.password != self.confirm_password:
            raise ValueError('Passwords do not match.')
        return self


class LoginRequest(BaseModel):
    email: str
    password: str
    persistence: AuthPersistence | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class ProfileResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: str
    is_banned: bool
    doctor_type: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    persistence: AuthPersistence
    expires_at: datetime
    should_persist: bool
    auto_refresh: bool
    profile: ProfileResponse


class ViewerResponse(BaseModel):
    role: str
    is_authenticated: bool
    allowed_routes: list[str]


def session_response(context: SessionContext, user: User) -> SessionResponse:
    return SessionResponse(
        access_token=context.access_token,
        persistence=context.persistence,
        expires_at=context.expires_at,
        should_persist=context.should_persist,
        auto_refresh=context.auto_refresh,
        profile=ProfileResponse.model_validate(user),
    )


@router.post('/register', response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    try:
        existing = db.query(User).filter(User.email == data.email).first()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='An account with this email already exists.',
            )

        user = User(
            email=data.email,
            hashed_password=hash_password(data.password),
            full_name=data.full_name,
            role=ROLE_PATIENT,
            is_banned=False,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='An account with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Registered patient account %s', user.id)
    return user


@router.post('/login', response_model=SessionResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    if user is None or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid email or password.')
    if user.is_banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='This account has been banned.')

    context = SessionContext.open(user.id, user.role, data.persistence)
    return session_response(context, user)


@router.post('/logout')
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy.
    logger.info('User %s signed out', current_user.id)
    return {'message': 'Signed out.'}


@router.get('/me', response_model=ProfileResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get('/viewer', response_model=ViewerResponse)
def viewer(current_viewer: Viewer = Depends(get_viewer)):
    return ViewerResponse(
        role=current_viewer.role,
        is_authenticated=current_viewer.is_authenticated,
        allowed_routes=allowed_routes(current_viewer),
    )
