import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.models.consultation import STATUS_CANCELLED, Consultation
from medbook.models.review import Review
from medbook.models.user import User
from medbook.routes.common import database_unavailable

router = APIRouter(tags=['reviews'])

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000


def _validate_rating(value: int) -> int:
    if value < 1 or value > 5:
        raise ValueError('Rating must be between 1 and 5.')
    return value


def _validate_comment(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_COMMENT_LENGTH:
        raise ValueError(f'Comment must be {MAX_COMMENT_LENGTH} characters or fewer.')
    return normalized


class CreateReviewRequest(BaseModel):
    consultation_id: int
    rating: int
    comment: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        return _validate_rating(value)

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return _validate_comment(value)


class UpdateReviewRequest(BaseModel):
    rating: int
    comment: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        return _validate_rating(value)

    @field_validator('comment')
    @classmethod
    def validate_comment(cls, value: str | None) -> str | None:
        return _validate_comment(value)


class ReviewResponse(BaseModel):
    id: int
    consultation_id: int
    patient_id: int
    doctor_id: int
    rating: int
    comment: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.post('', response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(
    data: CreateReviewRequest,
    current_user: User = Depends(require_page('/reviews')),
    db: Session = Depends(get_db),
):
    try:
        consultation = db.query(Consultation).filter(Consultation.id == data.consultation_id).first()
        if consultation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Consultation not found.')
        if consultation.patient_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the patient of this consultation can review it.',
            )
        if consultation.status == STATUS_CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Cancelled consultations cannot be reviewed.',
            )
        if datetime.combine(consultation.consultation_date, consultation.end_time) > datetime.now():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Consultations can be reviewed once they have ended.',
            )
        if db.query(Review).filter(Review.consultation_id == consultation.id).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This consultation has already been reviewed.',
            )

        review = Review(
            consultation_id=consultation.id,
            patient_id=current_user.id,
            doctor_id=consultation.doctor_id,
            rating=data.rating,
            comment=data.comment,
        )
        db.add(review)
        db.commit()
        db.refresh(review)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This consultation has already been reviewed.',
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s reviewed consultation %s', current_user.id, review.consultation_id)
    return review


@router.put('/{review_id}', response_model=ReviewResponse)
def update_review(
    review_id: int,
    data: UpdateReviewRequest,
    current_user: User = Depends(require_page('/reviews')),
    db: Session = Depends(get_db),
):
    try:
        review = db.query(Review).filter(Review.id == review_id).first()
        if review is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Review not found.')
        if review.patient_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the author of this review can edit it.',
            )

        review.rating = data.rating
        review.comment = data.comment
        db.commit()
        db.refresh(review)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return review


@router.get('/mine', response_model=list[ReviewResponse])
def list_my_reviews(
    current_user: User = Depends(require_page('/reviews')),
    db: Session = Depends(get_db),
):
    try:
        return db.query(Review).filter(
            Review.patient_id == current_user.id,
        ).order_by(Review.created_at.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
