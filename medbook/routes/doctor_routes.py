from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db
from medbook.models.review import Review
from medbook.models.user import ROLE_DOCTOR, User
from medbook.routes.common import database_unavailable, get_doctor_or_404

router = APIRouter(tags=['doctors'])


class DoctorResponse(BaseModel):
    id: int
    full_name: str
    doctor_type: str | None = None
    average_rating: float | None = None
    review_count: int = 0


def _rating_summary(db: Session, doctor_ids: list[int]) -> dict[int, tuple[float, int]]:
    if not doctor_ids:
        return {}
    rows = db.query(Review.doctor_id, func.avg(Review.rating), func.count(Review.id)).filter(
        Review.doctor_id.in_(doctor_ids),
    ).group_by(Review.doctor_id).all()
    return {doctor_id: (round(float(average), 2), count) for doctor_id, average, count in rows}


def _doctor_response(doctor: User, ratings: dict[int, tuple[float, int]]) -> DoctorResponse:
    average, count = ratings.get(doctor.id, (None, 0))
    return DoctorResponse(
        id=doctor.id,
        full_name=doctor.full_name,
        doctor_type=doctor.doctor_type,
        average_rating=average,
        review_count=count,
    )


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    specialty: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(User).filter(User.role == ROLE_DOCTOR, User.is_banned.is_(False))
        if specialty and specialty.strip():
            query = query.filter(func.lower(User.doctor_type) == specialty.strip().lower())
        doctors = query.order_by(User.full_name.asc()).all()
        ratings = _rating_summary(db, [doctor.id for doctor in doctors])
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return [_doctor_response(doctor, ratings) for doctor in doctors]


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    try:
        doctor = get_doctor_or_404(db, doctor_id)
        ratings = _rating_summary(db, [doctor.id])
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return _doctor_response(doctor, ratings)
