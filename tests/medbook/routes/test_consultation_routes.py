import io
from datetime import date, datetime, time, timedelta

import pytest
from fastapi import HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import Headers

from medbook.core import config
from medbook.models.absence import DoctorAbsence
from medbook.models.consultation import Consultation, ConsultationSlot
from medbook.models.user import User
from medbook.routes.common import load_schedule_snapshot
from medbook.routes.consultation_routes import (
    ConsultationResponse,
    CreateConsultationRequest,
    cancel_consultation,
    checkout_cart,
    create_consultation,
    list_cart,
    list_doctor_consultations,
    list_my_consultations,
    pay_consultation,
    remove_from_cart,
    upload_documents,
)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def _book(db, patient, doctor, day: date, *points: tuple[int, int]) -> ConsultationResponse:
    request = CreateConsultationRequest(
        doctor_id=doctor.id,
        slots=[_at(day, hour, minute) for hour, minute in points],
        consultation_type='first_visit',
    )
    return create_consultation(request, current_user=patient, db=db)


def _upload(name: str, content_type: str, content: bytes) -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename=name, headers=Headers({'content-type': content_type}))


def test_booking_two_slots_creates_one_hour_cart_consultation(db, doctor, patient, next_monday, monday_availability) -> None:
    response = _book(db, patient, doctor, next_monday, (9, 0), (9, 30))

    assert response.consultation_date == next_monday
    assert response.start_time == time(9, 0)
    assert response.end_time == time(10, 0)
    assert response.status == 'SCHEDULED'
    assert response.consultation_type == 'FIRST_VISIT'
    assert response.in_cart is True
    assert response.is_paid is False
    assert response.doctor_name == 'Gregory House'

    snapshot = load_schedule_snapshot(db, doctor.id, next_monday, next_monday)
    assert snapshot.is_occupied(next_monday, time(9, 0))
    assert snapshot.is_occupied(next_monday, time(9, 30))
    assert not snapshot.is_occupied(next_monday, time(10, 0))
    assert db.query(ConsultationSlot).count() == 2


def test_booking_an_occupied_slot_is_rejected(db, doctor, patient, other_patient, next_monday, monday_availability) -> None:
    _book(db, patient, doctor, next_monday, (9, 0), (9, 30))

    with pytest.raises(HTTPException) as exception_info:
        _book(db, other_patient, doctor, next_monday, (9, 30), (10, 0))

    assert exception_info.value.status_code == 409
    assert db.query(Consultation).count() == 1


def test_concurrent_claim_on_a_slot_is_stopped_by_storage(db, doctor, patient, other_patient, next_monday, monday_availability) -> None:
    # A stale row still holds 10:00 while the snapshot no longer sees it.
    stale = Consultation(
        doctor_id=doctor.id,
        patient_id=other_patient.id,
        consultation_date=next_monday,
        start_time=time(10, 0),
        end_time=time(10, 30),
        consultation_type='CHECKUP',
        status='CANCELLED',
    )
    stale.slots = [ConsultationSlot(doctor_id=doctor.id, slot_date=next_monday, slot_time=time(10, 0))]
    db.add(stale)
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, next_monday, (10, 0))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'
    assert db.query(Consultation).count() == 1


def test_booking_outside_availability_is_rejected(db, doctor, patient, next_monday, monday_availability) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, next_monday, (11, 30), (12, 0))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is not available.'


def test_booking_on_absence_day_is_rejected(db, doctor, patient, next_monday, monday_availability) -> None:
    db.add(DoctorAbsence(doctor_id=doctor.id, start_date=next_monday, end_date=next_monday))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, next_monday, (9, 0))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'The doctor is absent on this day.'


def test_booking_non_contiguous_slots_is_rejected(db, doctor, patient, next_monday, monday_availability) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, next_monday, (9, 0), (10, 0))

    assert exception_info.value.status_code == 400


def test_booking_in_the_past_is_rejected(db, doctor, patient) -> None:
    yesterday = date.today() - timedelta(days=1)

    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, yesterday, (9, 0))

    assert exception_info.value.status_code == 400


@pytest.mark.parametrize(
    'overrides',
    [
        {'slots': []},
        {'consultation_type': 'SURGERY'},
        {'patient_notes': 'x' * 601},
    ],
)
def test_create_consultation_request_validation(overrides: dict) -> None:
    fields = {
        'doctor_id': 1,
        'slots': [datetime(2030, 1, 7, 9, 0)],
        'consultation_type': 'CHECKUP',
    }
    fields.update(overrides)

    with pytest.raises(ValidationError):
        CreateConsultationRequest(**fields)


def test_remove_from_cart_frees_slots(db, doctor, patient, next_monday, monday_availability) -> None:
    booked = _book(db, patient, doctor, next_monday, (9, 0))

    remove_from_cart(booked.id, current_user=patient, db=db)

    assert db.query(Consultation).count() == 0
    assert db.query(ConsultationSlot).count() == 0
    assert list_cart(current_user=patient, db=db) == []


def test_remove_from_cart_is_owner_only(db, doctor, patient, other_patient, next_monday, monday_availability) -> None:
    booked = _book(db, patient, doctor, next_monday, (9, 0))

    with pytest.raises(HTTPException) as exception_info:
        remove_from_cart(booked.id, current_user=other_patient, db=db)

    assert exception_info.value.status_code == 403


def test_checkout_pays_everything_in_cart(db, doctor, patient, next_monday, monday_availability) -> None:
    _book(db, patient, doctor, next_monday, (8, 0))
    _book(db, patient, doctor, next_monday, (9, 0), (9, 30))

    paid = checkout_cart(current_user=patient, db=db)

    assert [consultation.start_time for consultation in paid] == [time(8, 0), time(9, 0)]
    assert all(consultation.is_paid and not consultation.in_cart for consultation in paid)
    assert list_cart(current_user=patient, db=db) == []

    with pytest.raises(HTTPException) as exception_info:
        checkout_cart(current_user=patient, db=db)
    assert exception_info.value.status_code == 400


def test_paid_consultation_cannot_leave_cart_or_be_paid_twice(db, doctor, patient, next_monday, monday_availability) -> None:
    booked = _book(db, patient, doctor, next_monday, (9, 0))
    pay_consultation(booked.id, current_user=patient, db=db)

    with pytest.raises(HTTPException) as removal:
        remove_from_cart(booked.id, current_user=patient, db=db)
    with pytest.raises(HTTPException) as payment:
        pay_consultation(booked.id, current_user=patient, db=db)

    assert removal.value.status_code == 400
    assert payment.value.status_code == 409


def test_cancel_consultation_frees_slots(db, doctor, patient, next_monday, monday_availability) -> None:
    booked = _book(db, patient, doctor, next_monday, (9, 0), (9, 30))
    pay_consultation(booked.id, current_user=patient, db=db)

    cancelled = cancel_consultation(booked.id, current_user=patient, db=db)

    assert cancelled.status == 'CANCELLED'
    assert db.query(ConsultationSlot).count() == 0
    snapshot = load_schedule_snapshot(db, doctor.id, next_monday, next_monday)
    assert snapshot.is_slot_available(next_monday, time(9, 0))

    with pytest.raises(HTTPException) as exception_info:
        cancel_consultation(booked.id, current_user=patient, db=db)
    assert exception_info.value.status_code == 409


def test_list_my_consultations_reports_completed_visits(db, doctor, patient) -> None:
    past_day = date.today() - timedelta(days=3)
    db.add(Consultation(
        doctor_id=doctor.id,
        patient_id=patient.id,
        consultation_date=past_day,
        start_time=time(9, 0),
        end_time=time(9, 30),
        consultation_type='CHECKUP',
        status='SCHEDULED',
        in_cart=False,
        is_paid=True,
    ))
    db.commit()

    completed = list_my_consultations(
        status_filter='completed', date_from=None, date_to=None, include_cart=False,
        current_user=patient, db=db,
    )
    scheduled = list_my_consultations(
        status_filter='SCHEDULED', date_from=None, date_to=None, include_cart=False,
        current_user=patient, db=db,
    )

    assert [consultation.status for consultation in completed] == ['COMPLETED']
    assert scheduled == []
    # Only the derived status changes; the stored row is untouched.
    assert db.query(Consultation).one().status == 'SCHEDULED'


def test_list_my_consultations_rejects_unknown_status(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_my_consultations(
            status_filter='LOST', date_from=None, date_to=None, include_cart=False,
            current_user=patient, db=db,
        )

    assert exception_info.value.status_code == 400


def test_list_doctor_consultations_hides_cancelled(db, doctor, patient, next_monday, monday_availability) -> None:
    kept = _book(db, patient, doctor, next_monday, (8, 0))
    dropped = _book(db, patient, doctor, next_monday, (9, 0))
    cancel_consultation(dropped.id, current_user=patient, db=db)

    visible = list_doctor_consultations(date_from=None, date_to=None, include_cancelled=False, current_user=doctor, db=db)
    everything = list_doctor_consultations(date_from=None, date_to=None, include_cancelled=True, current_user=doctor, db=db)

    assert [consultation.id for consultation in visible] == [kept.id]
    assert len(everything) == 2


def test_upload_documents_records_each_file(db, doctor, patient, next_monday, monday_availability, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config, 'DOCUMENTS_DIR', str(tmp_path))
    booked = _book(db, patient, doctor, next_monday, (9, 0))

    response = upload_documents(
        booked.id,
        files=[
            _upload('referral.pdf', 'application/pdf', b'%PDF-1.4'),
            _upload('virus.exe', 'application/x-msdownload', b'MZ'),
        ],
        current_user=patient,
        db=db,
    )

    assert not response.complete
    assert [(step.name, step.stored) for step in response.steps] == [('referral.pdf', True), ('virus.exe', False)]
    assert [document.name for document in response.consultation.documents] == ['referral.pdf']
    assert (tmp_path / response.consultation.documents[0].path).read_bytes() == b'%PDF-1.4'


def test_upload_documents_is_owner_only(db, doctor, patient, other_patient, next_monday, monday_availability) -> None:
    booked = _book(db, patient, doctor, next_monday, (9, 0))

    with pytest.raises(HTTPException) as exception_info:
        upload_documents(
            booked.id,
            files=[_upload('referral.pdf', 'application/pdf', b'%PDF-1.4')],
            current_user=other_patient,
            db=db,
        )

    assert exception_info.value.status_code == 403


def test_failed_metadata_save_keeps_earlier_documents(db, doctor, patient, next_monday, monday_availability, tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(config, 'DOCUMENTS_DIR', str(tmp_path))
    booked = _book(db, patient, doctor, next_monday, (9, 0))

    real_commit = db.commit
    commits = []

    def commit_failing_second_time():
        commits.append(1)
        if len(commits) == 2:
            raise SQLAlchemyError('disk full')
        real_commit()

    monkeypatch.setattr(db, 'commit', commit_failing_second_time)

    response = upload_documents(
        booked.id,
        files=[
            _upload('referral.pdf', 'application/pdf', b'%PDF-1.4'),
            _upload('scan.png', 'image/png', b'\x89PNG'),
        ],
        current_user=patient,
        db=db,
    )

    assert not response.complete
    assert [(step.name, step.stored) for step in response.steps] == [('referral.pdf', True), ('scan.png', False)]
    assert response.steps[1].error == 'Database error.'
    assert [document.name for document in response.consultation.documents] == ['referral.pdf']
    stored = db.query(Consultation).filter(Consultation.id == booked.id).one()
    assert [document['name'] for document in stored.documents] == ['referral.pdf']


def test_booking_with_banned_doctor_is_not_found(db, doctor, patient, next_monday, monday_availability) -> None:
    db.query(User).filter(User.id == doctor.id).update({'is_banned': True})
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        _book(db, patient, doctor, next_monday, (9, 0))

    assert exception_info.value.status_code == 404
    assert db.query(Consultation).count() == 0
