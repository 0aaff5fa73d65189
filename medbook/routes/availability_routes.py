import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.core import config
from medbook.models.absence import DoctorAbsence
from medbook.models.availability import DoctorAvailability
from medbook.models.user import User
from medbook.routes.common import database_unavailable, get_doctor_or_404
from medbook.services.events import notify_schedule_changed
from medbook.services.scheduling import (
    Absence,
    AvailabilityRule,
    RuleSpanError,
    TimeInterval,
    has_overlap,
    parse_time,
)

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)


class TimeSlotPayload(BaseModel):
    start: time
    end: time

    @field_validator('start', 'end', mode='before')
    @classmethod
    def parse_time_of_day(cls, value):
        if isinstance(value, str):
            return parse_time(value)
        return value

    @model_validator(mode='after')
    def validate_order(self) -> 'TimeSlotPayload':
        if self.start >= self.end:
            raise ValueError('Each time slot must start before it ends.')
        return self

    def to_interval(self) -> TimeInterval:
        return TimeInterval(start=self.start, end=self.end)


class CreateAvailabilityRequest(BaseModel):
    is_recurring: bool
    start_date: date | None = None
    end_date: date | None = None
    days_of_week: list[int] | None = None
    specific_date: date | None = None
    time_slots: list[TimeSlotPayload]

    @field_validator('days_of_week')
    @classmethod
    def validate_days_of_week(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('Days of week must be between 0 (Sunday) and 6 (Saturday).')
        return sorted(set(value))

    @model_validator(mode='after')
    def validate_mode(self) -> 'CreateAvailabilityRequest':
        if self.is_recurring:
            if self.start_date is None or self.end_date is None:
                raise ValueError('Recurring availability needs a start and an end date.')
            if self.start_date > self.end_date:
                raise ValueError('Start date must not be after end date.')
            if not self.days_of_week:
                raise ValueError('Pick at least one day of the week.')
            if self.specific_date is not None:
                raise ValueError('Recurring availability cannot have a specific date.')
        else:
            if self.specific_date is None:
                raise ValueError('One-off availability needs a specific date.')
            if self.start_date or self.end_date or self.days_of_week:
                raise ValueError('One-off availability cannot have a date range or days of week.')

        if not self.time_slots:
            raise ValueError('Add at least one time slot.')
        intervals = sorted(self.time_slots, key=lambda slot: slot.start)
        for previous, following in zip(intervals, intervals[1:]):
            if previous.to_interval().overlaps(following.to_interval()):
                raise ValueError('Time slots of one availability must not overlap each other.')
        return self

    def to_rule(self) -> AvailabilityRule:
        return AvailabilityRule(
            is_recurring=self.is_recurring,
            time_slots=tuple(slot.to_interval() for slot in self.time_slots),
            start_date=self.start_date,
            end_date=self.end_date,
            days_of_week=frozenset(self.days_of_week or []),
            specific_date=self.specific_date,
        )


class AvailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    is_recurring: bool
    start_date: date | None = None
    end_date: date | None = None
    days_of_week: list[int] | None = None
    specific_date: date | None = None
    time_slots: list[dict]
    created_at: datetime

    class Config:
        from_attributes = True


@router.post('', response_model=AvailabilityResponse, status_code=status.HTTP_201_CREATED)
def create_availability(
    data: CreateAvailabilityRequest,
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    candidate = data.to_rule()

    try:
        existing_rules = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
        ).all()
        absences = db.query(DoctorAbsence).filter(DoctorAbsence.doctor_id == current_user.id).all()

        try:
            overlapping = has_overlap(
                candidate,
                [AvailabilityRule.from_row(rule) for rule in existing_rules],
                [Absence.from_row(absence) for absence in absences],
                config.MAX_RULE_SPAN_DAYS,
            )
        except RuleSpanError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        if overlapping:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This availability overlaps an existing availability or an absence.',
            )

        availability = DoctorAvailability(
            doctor_id=current_user.id,
            is_recurring=candidate.is_recurring,
            start_date=candidate.start_date,
            end_date=candidate.end_date,
            days_of_week=sorted(candidate.days_of_week) if candidate.is_recurring else None,
            specific_date=candidate.specific_date,
            time_slots=[interval.to_dict() for interval in candidate.time_slots],
        )
        db.add(availability)
        db.commit()
        db.refresh(availability)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Doctor %s added availability %s', current_user.id, availability.id)
    notify_schedule_changed(current_user, 'Availability added.')
    return availability


@router.get('/mine', response_model=list[AvailabilityResponse])
def list_my_availability(
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    try:
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
        ).order_by(DoctorAvailability.created_at.asc(), DoctorAvailability.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/doctors/{doctor_id}', response_model=list[AvailabilityResponse])
def list_doctor_availability(doctor_id: int, db: Session = Depends(get_db)):
    try:
        get_doctor_or_404(db, doctor_id)
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
        ).order_by(DoctorAvailability.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(
    availability_id: int,
    current_user: User = Depends(require_page('/manage-schedule')),
    db: Session = Depends(get_db),
):
    try:
        availability = db.query(DoctorAvailability).filter(
            DoctorAvailability.id == availability_id,
            DoctorAvailability.doctor_id == current_user.id,
        ).first()

        if not availability:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        db.delete(availability)
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Doctor %s removed availability %s', current_user.id, availability_id)
    notify_schedule_changed(current_user, 'Availability removed.')
