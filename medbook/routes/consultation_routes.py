import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_db, require_page
from medbook.models.consultation import (
    CONSULTATION_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    Consultation,
    ConsultationSlot,
)
from medbook.models.user import User
from medbook.routes.common import (
    cancel_consultation_row,
    database_unavailable,
    get_doctor_or_404,
    load_schedule_snapshot,
)
from medbook.services.documents import DocumentRejected, store_document
from medbook.services.events import notify_schedule_changed
from medbook.services.scheduling import SelectionError, booking_window, effective_status, slot_points

router = APIRouter(tags=['consultations'])

logger = logging.getLogger(__name__)

MAX_PATIENT_NOTES_LENGTH = 600
STATUS_FILTERS = (STATUS_SCHEDULED, STATUS_CANCELLED, STATUS_COMPLETED)


class CreateConsultationRequest(BaseModel):
    doctor_id: int
    slots: list[datetime]
    consultation_type: str
    patient_notes: str | None = None

    @field_validator('slots')
    @classmethod
    def validate_slots(cls, value: list[datetime]) -> list[datetime]:
        if not value:
            raise ValueError('Select at least one slot.')
        return [point.replace(tzinfo=None) for point in value]

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in CONSULTATION_TYPES:
            raise ValueError('Invalid consultation type.')
        return normalized

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_PATIENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_PATIENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class DocumentMetadata(BaseModel):
    name: str
    path: str
    type: str | None = None
    size: int


class ConsultationResponse(BaseModel):
    id: int
    doctor_id: int
    doctor_name: str | None = None
    patient_id: int | None = None
    consultation_date: date
    start_time: time
    end_time: time
    consultation_type: str
    status: str
    in_cart: bool
    is_paid: bool
    patient_notes: str | None = None
    documents: list[DocumentMetadata] = []
    created_at: datetime


class DocumentStep(BaseModel):
    name: str
    stored: bool
    error: str | None = None


class DocumentUploadResponse(BaseModel):
    consultation: ConsultationResponse
    steps: list[DocumentStep]
    complete: bool


def consultation_response(consultation: Consultation, now: datetime | None = None) -> ConsultationResponse:
    return ConsultationResponse(
        id=consultation.id,
        doctor_id=consultation.doctor_id,
        doctor_name=consultation.doctor.full_name if consultation.doctor else None,
        patient_id=consultation.patient_id,
        consultation_date=consultation.consultation_date,
        start_time=consultation.start_time,
        end_time=consultation.end_time,
        consultation_type=consultation.consultation_type,
        status=effective_status(
            consultation.status,
            consultation.consultation_date,
            consultation.end_time,
            now,
        ),
        in_cart=consultation.in_cart,
        is_paid=consultation.is_paid,
        patient_notes=consultation.patient_notes,
        documents=consultation.documents or [],
        created_at=consultation.created_at,
    )


def get_patient_consultation_or_404(db: Session, consultation_id: int, patient: User) -> Consultation:
    consultation = db.query(Consultation).filter(Consultation.id == consultation_id).first()
    if consultation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Consultation not found.')
    if consultation.patient_id != patient.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the patient who booked this consultation can change it.',
        )
    return consultation


def normalize_status_filter(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in STATUS_FILTERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid status filter.')
    return normalized


@router.post('', response_model=ConsultationResponse, status_code=status.HTTP_201_CREATED)
def create_consultation(
    data: CreateConsultationRequest,
    current_user: User = Depends(require_page('/schedules')),
    db: Session = Depends(get_db),
):
    try:
        consultation_date, start_time, end_time = booking_window(data.slots)
    except SelectionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if datetime.combine(consultation_date, start_time) <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Consultations must be scheduled in the future.',
        )

    points = slot_points(consultation_date, start_time, end_time)

    try:
        doctor = get_doctor_or_404(db, data.doctor_id)
        snapshot = load_schedule_snapshot(db, doctor.id, consultation_date, consultation_date)
        if snapshot.is_date_blocked(consultation_date):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='The doctor is absent on this day.',
            )
        for point in points:
            if not snapshot.is_slot_available(consultation_date, point):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail='This time is not available.',
                )

        consultation = Consultation(
            doctor_id=doctor.id,
            patient_id=current_user.id,
            consultation_date=consultation_date,
            start_time=start_time,
            end_time=end_time,
            consultation_type=data.consultation_type,
            status=STATUS_SCHEDULED,
            in_cart=True,
            is_paid=False,
            patient_notes=data.patient_notes,
            documents=[],
        )
        consultation.slots = [
            ConsultationSlot(doctor_id=doctor.id, slot_date=consultation_date, slot_time=point)
            for point in points
        ]
        db.add(consultation)
        db.commit()
        db.refresh(consultation)
    except IntegrityError as exc:
        # Another booking claimed one of these slots first.
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time is already booked.',
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s booked consultation %s with doctor %s', current_user.id, consultation.id, doctor.id)
    notify_schedule_changed(doctor, 'Consultation booked.')
    return consultation_response(consultation)


@router.get('/cart', response_model=list[ConsultationResponse])
def list_cart(
    current_user: User = Depends(require_page('/cart')),
    db: Session = Depends(get_db),
):
    try:
        consultations = db.query(Consultation).filter(
            Consultation.patient_id == current_user.id,
            Consultation.in_cart.is_(True),
            Consultation.status != STATUS_CANCELLED,
        ).order_by(Consultation.consultation_date.asc(), Consultation.start_time.asc()).all()
        return [consultation_response(consultation) for consultation in consultations]
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/cart/{consultation_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_from_cart(
    consultation_id: int,
    current_user: User = Depends(require_page('/cart')),
    db: Session = Depends(get_db),
):
    try:
        consultation = get_patient_consultation_or_404(db, consultation_id, current_user)
        if not consultation.in_cart or consultation.is_paid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Only unpaid consultations in the cart can be removed.',
            )

        doctor = consultation.doctor
        db.delete(consultation)
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s removed consultation %s from the cart', current_user.id, consultation_id)
    notify_schedule_changed(doctor, 'Consultation removed from cart.')


def mark_paid(consultation: Consultation) -> None:
    consultation.is_paid = True
    consultation.in_cart = False
    consultation.status = STATUS_SCHEDULED


@router.post('/cart/checkout', response_model=list[ConsultationResponse])
def checkout_cart(
    current_user: User = Depends(require_page('/cart')),
    db: Session = Depends(get_db),
):
    try:
        consultations = db.query(Consultation).filter(
            Consultation.patient_id == current_user.id,
            Consultation.in_cart.is_(True),
            Consultation.status != STATUS_CANCELLED,
        ).order_by(Consultation.consultation_date.asc(), Consultation.start_time.asc()).all()

        if not consultations:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Your cart is empty.')

        for consultation in consultations:
            mark_paid(consultation)
        db.commit()
        for consultation in consultations:
            db.refresh(consultation)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s paid for %s consultation(s)', current_user.id, len(consultations))
    return [consultation_response(consultation) for consultation in consultations]


@router.post('/{consultation_id}/pay', response_model=ConsultationResponse)
def pay_consultation(
    consultation_id: int,
    current_user: User = Depends(require_page('/cart')),
    db: Session = Depends(get_db),
):
    try:
        consultation = get_patient_consultation_or_404(db, consultation_id, current_user)
        if consultation.status == STATUS_CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Cancelled consultations cannot be paid.',
            )
        if consultation.is_paid:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This consultation is already paid.',
            )

        mark_paid(consultation)
        db.commit()
        db.refresh(consultation)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s paid for consultation %s', current_user.id, consultation_id)
    return consultation_response(consultation)


@router.get('/mine', response_model=list[ConsultationResponse])
def list_my_consultations(
    status_filter: str | None = Query(default=None, alias='status'),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    include_cart: bool = Query(default=False),
    current_user: User = Depends(require_page('/appointments')),
    db: Session = Depends(get_db),
):
    wanted_status = normalize_status_filter(status_filter)

    try:
        query = db.query(Consultation).filter(Consultation.patient_id == current_user.id)
        if not include_cart:
            query = query.filter(Consultation.in_cart.is_(False))
        if date_from:
            query = query.filter(Consultation.consultation_date >= date_from)
        if date_to:
            query = query.filter(Consultation.consultation_date <= date_to)
        consultations = query.order_by(
            Consultation.consultation_date.desc(),
            Consultation.start_time.desc(),
        ).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    now = datetime.now()
    responses = [consultation_response(consultation, now) for consultation in consultations]
    if wanted_status:
        responses = [response for response in responses if response.status == wanted_status]
    return responses


@router.post('/{consultation_id}/cancel', response_model=ConsultationResponse)
def cancel_consultation(
    consultation_id: int,
    current_user: User = Depends(require_page('/appointments')),
    db: Session = Depends(get_db),
):
    try:
        consultation = get_patient_consultation_or_404(db, consultation_id, current_user)
        if consultation.status == STATUS_CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This consultation is already cancelled.',
            )
        if datetime.combine(consultation.consultation_date, consultation.start_time) <= datetime.now():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Consultations that have already started cannot be cancelled.',
            )

        cancel_consultation_row(consultation)
        db.commit()
        db.refresh(consultation)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Patient %s cancelled consultation %s', current_user.id, consultation_id)
    notify_schedule_changed(consultation.doctor, 'Consultation cancelled.')
    return consultation_response(consultation)


@router.get('/doctor', response_model=list[ConsultationResponse])
def list_doctor_consultations(
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    current_user: User = Depends(require_page('/my-schedule')),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Consultation).filter(Consultation.doctor_id == current_user.id)
        if not include_cancelled:
            query = query.filter(Consultation.status != STATUS_CANCELLED)
        if date_from:
            query = query.filter(Consultation.consultation_date >= date_from)
        if date_to:
            query = query.filter(Consultation.consultation_date <= date_to)
        consultations = query.order_by(
            Consultation.consultation_date.asc(),
            Consultation.start_time.asc(),
        ).all()
        return [consultation_response(consultation) for consultation in consultations]
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/{consultation_id}/documents', response_model=DocumentUploadResponse)
def upload_documents(
    consultation_id: int,
    files: list[UploadFile] = File(...),
    current_user: User = Depends(require_page('/appointments')),
    db: Session = Depends(get_db),
):
    try:
        consultation = get_patient_consultation_or_404(db, consultation_id, current_user)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    if consultation.status == STATUS_CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Documents cannot be attached to a cancelled consultation.',
        )

    steps: list[DocumentStep] = []
    for upload in files:
        name = upload.filename or 'document'
        content = upload.file.read()
        try:
            metadata = store_document(consultation.id, name, upload.content_type, content)
        except (DocumentRejected, OSError) as exc:
            logger.warning('Document %s for consultation %s was not stored: %s', name, consultation.id, exc)
            steps.append(DocumentStep(name=name, stored=False, error=str(exc)))
            continue

        try:
            consultation.documents = [*(consultation.documents or []), metadata]
            db.commit()
            db.refresh(consultation)
        except SQLAlchemyError:
            db.rollback()
            logger.warning('Metadata for document %s on consultation %s was not saved', name, consultation.id)
            steps.append(DocumentStep(name=name, stored=False, error='Database error.'))
            continue

        steps.append(DocumentStep(name=name, stored=True))

    return DocumentUploadResponse(
        consultation=consultation_response(consultation),
        steps=steps,
        complete=all(step.stored for step in steps),
    )
