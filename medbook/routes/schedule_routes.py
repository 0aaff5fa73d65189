from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.models.consultation import STATUS_CANCELLED, Consultation
from medbook.models.user import User
from medbook.routes.common import database_unavailable, get_doctor_or_404, load_schedule_snapshot
from medbook.services.scheduling import (
    ScheduleSnapshot,
    SelectionError,
    booking_window,
    day_slot_points,
    effective_status,
    toggle_selection,
    week_days,
    week_start,
)

router = APIRouter(tags=['schedules'])


class SlotStateResponse(BaseModel):
    slot_time: time
    is_available: bool
    is_past: bool
    consultation_ids: list[int] = []


class ScheduledConsultationResponse(BaseModel):
    id: int
    start_time: time
    end_time: time
    consultation_type: str
    status: str
    patient_name: str | None = None
    patient_notes: str | None = None
    has_documents: bool


class DayScheduleResponse(BaseModel):
    day: date
    is_today: bool
    is_absent: bool
    consultation_count: int
    slots: list[SlotStateResponse]
    consultations: list[ScheduledConsultationResponse] = []


class WeekScheduleResponse(BaseModel):
    doctor_id: int
    week_start: date
    days: list[DayScheduleResponse]


class SelectionRequest(BaseModel):
    selected: list[datetime] = []
    candidate: datetime
    doctor_id: int | None = None


class BookingWindowResponse(BaseModel):
    day: date
    start_time: time
    end_time: time


class SelectionResponse(BaseModel):
    selected: list[datetime]
    window: BookingWindowResponse | None = None


def validate_hour_window(start_hour: int, end_hour: int) -> None:
    if start_hour >= end_hour:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='start_hour must be before end_hour.',
        )


def build_week_grid(
    snapshot: ScheduleSnapshot,
    first_day: date,
    start_hour: int,
    end_hour: int,
    now: datetime,
    consultations: list[Consultation] | None = None,
) -> list[DayScheduleResponse]:
    """Evaluate every displayed cell against the snapshot; nothing is cached."""
    points = day_slot_points(start_hour, end_hour)
    days: list[DayScheduleResponse] = []

    for day in week_days(first_day):
        day_consultations = [
            consultation for consultation in consultations or []
            if consultation.consultation_date == day and consultation.status != STATUS_CANCELLED
        ]
        slots = [
            SlotStateResponse(
                slot_time=point,
                is_available=snapshot.is_slot_available(day, point),
                is_past=datetime.combine(day, point) < now,
                consultation_ids=[
                    consultation.id for consultation in day_consultations
                    if consultation.start_time <= point < consultation.end_time
                ],
            )
            for point in points
        ]
        days.append(
            DayScheduleResponse(
                day=day,
                is_today=day == now.date(),
                is_absent=snapshot.is_date_blocked(day),
                consultation_count=sum(
                    1 for booked in snapshot.consultations if booked.consultation_date == day
                ),
                slots=slots,
                consultations=[
                    ScheduledConsultationResponse(
                        id=consultation.id,
                        start_time=consultation.start_time,
                        end_time=consultation.end_time,
                        consultation_type=consultation.consultation_type,
                        status=effective_status(
                            consultation.status,
                            consultation.consultation_date,
                            consultation.end_time,
                            now,
                        ),
                        patient_name=consultation.patient.full_name if consultation.patient else None,
                        patient_notes=consultation.patient_notes,
                        has_documents=bool(consultation.documents),
                    )
                    for consultation in day_consultations
                ],
            )
        )

    return days


@router.get('/doctors/{doctor_id}/week', response_model=WeekScheduleResponse)
def get_doctor_week(
    doctor_id: int,
    week_of: date | None = Query(default=None),
    start_hour: int = Query(default=6, ge=0, le=23),
    end_hour: int = Query(default=20, ge=1, le=24),
    current_user: User = Depends(require_page('/schedules')),
    db: Session = Depends(get_db),
):
    validate_hour_window(start_hour, end_hour)
    first_day = week_start(week_of or date.today())

    try:
        get_doctor_or_404(db, doctor_id)
        snapshot = load_schedule_snapshot(db, doctor_id, first_day, first_day + timedelta(days=6))
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return WeekScheduleResponse(
        doctor_id=doctor_id,
        week_start=first_day,
        days=build_week_grid(snapshot, first_day, start_hour, end_hour, datetime.now()),
    )


@router.get('/mine/week', response_model=WeekScheduleResponse)
def get_my_week(
    week_of: date | None = Query(default=None),
    start_hour: int = Query(default=6, ge=0, le=23),
    end_hour: int = Query(default=20, ge=1, le=24),
    current_user: User = Depends(require_page('/my-schedule')),
    db: Session = Depends(get_db),
):
    validate_hour_window(start_hour, end_hour)
    first_day = week_start(week_of or date.today())
    last_day = first_day + timedelta(days=6)

    try:
        snapshot = load_schedule_snapshot(db, current_user.id, first_day, last_day)
        consultations = db.query(Consultation).filter(
            Consultation.doctor_id == current_user.id,
            Consultation.consultation_date >= first_day,
            Consultation.consultation_date <= last_day,
            Consultation.status != STATUS_CANCELLED,
        ).order_by(Consultation.consultation_date.asc(), Consultation.start_time.asc()).all()
        days = build_week_grid(snapshot, first_day, start_hour, end_hour, datetime.now(), consultations)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return WeekScheduleResponse(doctor_id=current_user.id, week_start=first_day, days=days)


@router.post('/selection', response_model=SelectionResponse)
def toggle_slot_selection(
    data: SelectionRequest,
    current_user: User = Depends(require_page('/schedules')),
    db: Session = Depends(get_db),
):
    candidate = data.candidate.replace(tzinfo=None)
    selected = [point.replace(tzinfo=None) for point in data.selected]
    adding = candidate not in selected

    if adding and data.doctor_id is not None:
        if candidate < datetime.now():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This slot is in the past.')
        try:
            get_doctor_or_404(db, data.doctor_id)
            snapshot = load_schedule_snapshot(db, data.doctor_id, candidate.date(), candidate.date())
        except SQLAlchemyError as exc:
            raise database_unavailable(db) from exc
        if not snapshot.is_slot_available(candidate.date(), candidate.time()):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='This slot is not available.')

    try:
        updated = toggle_selection(selected, candidate)
    except SelectionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    window = None
    if updated:
        try:
            window_date, window_start, window_end = booking_window(updated)
            window = BookingWindowResponse(day=window_date, start_time=window_start, end_time=window_end)
        except SelectionError:
            # Removing a middle slot may leave a gap; there is no window until it is closed.
            window = None

    return SelectionResponse(selected=updated, window=window)
