import logging
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from medbook.models.absence import DoctorAbsence
from medbook.models.availability import DoctorAvailability
from medbook.models.consultation import STATUS_CANCELLED, Consultation
from medbook.models.user import ROLE_DOCTOR, User
from medbook.services.scheduling import Absence, AvailabilityRule, BookedConsultation, ScheduleSnapshot

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable(db: Session | None = None) -> HTTPException:
    logger.exception('Database operation failed.')
    if db is not None:
        db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def get_doctor_or_404(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(
        User.id == doctor_id,
        User.role == ROLE_DOCTOR,
        User.is_banned.is_(False),
    ).first()
    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.')
    return doctor


def cancel_consultation_row(consultation: Consultation) -> None:
    """Mark a consultation cancelled and free the slots it held; caller commits."""
    consultation.status = STATUS_CANCELLED
    consultation.in_cart = False
    consultation.slots.clear()


def load_schedule_snapshot(db: Session, doctor_id: int, range_start: date, range_end: date) -> ScheduleSnapshot:
    """Load everything the slot predicates need for one doctor and date range."""
    rules = db.query(DoctorAvailability).filter(DoctorAvailability.doctor_id == doctor_id).all()
    absences = db.query(DoctorAbsence).filter(
        DoctorAbsence.doctor_id == doctor_id,
        DoctorAbsence.start_date <= range_end,
        DoctorAbsence.end_date >= range_start,
    ).all()
    consultations = db.query(Consultation).filter(
        Consultation.doctor_id == doctor_id,
        Consultation.consultation_date >= range_start,
        Consultation.consultation_date <= range_end,
        Consultation.status != STATUS_CANCELLED,
    ).all()

    return ScheduleSnapshot(
        rules=[AvailabilityRule.from_row(rule) for rule in rules],
        absences=[Absence.from_row(absence) for absence in absences],
        consultations=[BookedConsultation.from_row(consultation) for consultation in consultations],
    )
