import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.auth.passwords import hash_password
from medbook.models.user import ROLE_DOCTOR, User
from medbook.routes.auth_routes import ProfileResponse, normalize_email
from medbook.routes.common import database_unavailable

router = APIRouter(tags=['admin'])

logger = logging.getLogger(__name__)

MIN_DOCTOR_PASSWORD_LENGTH = 8
DOCTOR_SPECIALTIES = ('Cardiologist', 'Dermatologist', 'Pediatrician', 'Neurologist', 'Dentist')


class BanRequest(BaseModel):
    is_banned: bool


class CreateDoctorRequest(BaseModel):
    full_name: str
    email: str
    password: str
    doctor_type: str

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Full name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_DOCTOR_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_DOCTOR_PASSWORD_LENGTH} characters long.')
        return value

    @field_validator('doctor_type')
    @classmethod
    def validate_doctor_type(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in DOCTOR_SPECIALTIES:
            raise ValueError('Invalid specialty.')
        return normalized


@router.get('/users', response_model=list[ProfileResponse])
def list_users(
    current_user: User = Depends(require_page('/admin/users')),
    db: Session = Depends(get_db),
):
    try:
        return db.query(User).order_by(User.full_name.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.patch('/users/{user_id}/ban', response_model=ProfileResponse)
def set_user_ban(
    user_id: int,
    data: BanRequest,
    current_user: User = Depends(require_page('/admin/users')),
    db: Session = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Admins cannot ban themselves.',
        )

    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

        user.is_banned = data.is_banned
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Admin %s set is_banned=%s for user %s', current_user.id, data.is_banned, user_id)
    return user


@router.post('/doctors', response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: CreateDoctorRequest,
    current_user: User = Depends(require_page('/admin/create-doctor')),
    db: Session = Depends(get_db),
):
    try:
        if db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='An account with this email already exists.',
            )

        doctor = User(
            email=data.email,
            hashed_password=hash_password(data.password),
            full_name=data.full_name,
            role=ROLE_DOCTOR,
            doctor_type=data.doctor_type,
            is_banned=False,
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='An account with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Admin %s created doctor account %s', current_user.id, doctor.id)
    return doctor
