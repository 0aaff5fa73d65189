import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.models.absence import DoctorAbsence
from medbook.models.consultation import STATUS_CANCELLED, Consultation
from medbook.models.user import User
from medbook.routes.common import cancel_consultation_row, database_unavailable
from medbook.services.events import notify_schedule_changed

router = APIRouter(tags=['absences'])

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


class CreateAbsenceRequest(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = None
    confirm_cancellations: bool = False

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateAbsenceRequest':
        if self.start_date > self.end_date:
            raise ValueError('Start date must not be after end date.')
        return self


class AbsenceResponse(BaseModel):
    id: int
    doctor_id: int
    start_date: date
    end_date: date
    reason: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class CancellationStep(BaseModel):
    consultation_id: int
    cancelled: bool
    error: str | None = None


class AbsenceCreatedResponse(BaseModel):
    absence: AbsenceResponse
    cancellations: list[CancellationStep]
    all_cancelled: bool


def find_overlapping_consultations(db: Session, doctor_id: int, start_date: date, end_date: date) -> list[Consultation]:
    return db.query(Consultation).filter(
        Consultation.doctor_id == doctor_id,
        Consultation.consultation_date >= start_date,
        Consultation.consultation_date <= end_date,
        Consultation.status != STATUS_CANCELLED,
    ).order_by(Consultation.consultation_date.asc(), Consultation.start_time.asc()).all()


def cancel_for_absence(db: Session, consultation: Consultation) -> CancellationStep:
    """One independent cascade step; earlier steps stay applied if this fails."""
    consultation_id = consultation.id
    try:
        cancel_consultation_row(consultation)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning('Could not cancel consultation %s for absence: %s', consultation_id, exc)
        return CancellationStep(consultation_id=consultation_id, cancelled=False, error='Database error.')

    return CancellationStep(consultation_id=consultation_id, cancelled=True)


@router.post('', response_model=AbsenceCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_absence(
    data: CreateAbsenceRequest,
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    try:
        overlapping = find_overlapping_consultations(db, current_user.id, data.start_date, data.end_date)

        if overlapping and not data.confirm_cancellations:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    'message': 'This absence overlaps booked consultations. Confirm to cancel them.',
                    'consultation_ids': [consultation.id for consultation in overlapping],
                },
            )

        absence = DoctorAbsence(
            doctor_id=current_user.id,
            start_date=data.start_date,
            end_date=data.end_date,
            reason=data.reason,
        )
        db.add(absence)
        db.commit()
        db.refresh(absence)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    steps = [cancel_for_absence(db, consultation) for consultation in overlapping]
    failed = [step.consultation_id for step in steps if not step.cancelled]
    if failed:
        logger.warning('Absence %s left consultations %s uncancelled', absence.id, failed)

    logger.info('Doctor %s added absence %s (%s consultation(s) cancelled)', current_user.id, absence.id, len(steps) - len(failed))
    notify_schedule_changed(current_user, 'Absence added.')
    return AbsenceCreatedResponse(
        absence=AbsenceResponse.model_validate(absence),
        cancellations=steps,
        all_cancelled=not failed,
    )


@router.get('/mine', response_model=list[AbsenceResponse])
def list_my_absences(
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    try:
        return db.query(DoctorAbsence).filter(
            DoctorAbsence.doctor_id == current_user.id,
        ).order_by(DoctorAbsence.start_date.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/{absence_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_absence(
    absence_id: int,
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    try:
        absence = db.query(DoctorAbsence).filter(
            DoctorAbsence.id == absence_id,
            DoctorAbsence.doctor_id == current_user.id,
        ).first()

        if not absence:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Absence not found.',
            )

        db.delete(absence)
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Doctor %s removed absence %s', current_user.id, absence_id)
    notify_schedule_changed(current_user, 'Absence removed.')
