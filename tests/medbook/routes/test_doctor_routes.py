import pytest
from fastapi import HTTPException

from medbook.models.user import User
from medbook.routes.doctor_routes import get_doctor, list_doctors


def test_list_doctors_orders_by_name_and_filters_specialty(db, doctor) -> None:
    db.add(User(
        email='cameron@clinic.test',
        hashed_password='not-a-real-hash',
        full_name='Allison Cameron',
        role='DOCTOR',
        doctor_type='Cardiologist',
    ))
    db.commit()

    everyone = list_doctors(specialty=None, db=db)
    neurologists = list_doctors(specialty='  NEUROLOGIST ', db=db)

    assert [item.full_name for item in everyone] == ['Allison Cameron', 'Gregory House']
    assert [item.full_name for item in neurologists] == ['Gregory House']
    assert everyone[0].review_count == 0
    assert everyone[0].average_rating is None


def test_list_doctors_skips_other_roles(db, doctor, patient, admin) -> None:
    assert [item.id for item in list_doctors(specialty=None, db=db)] == [doctor.id]


def test_get_doctor_rejects_non_doctor(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_doctor(patient.id, db=db)

    assert exception_info.value.status_code == 404
