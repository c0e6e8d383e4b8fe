import datetime

import pytest
from django.core.cache import cache

from scheduling.models import PatientProfile, User
from scheduling.services import slots
from scheduling.session import Actor


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttles and dashboard stats live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def doctor(db):
    return User.objects.create_user(username='doc1', password='P@ssw0rd1', role='doctor',
                                    first_name='Gregory', last_name='House')


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin')


@pytest.fixture
def patient(db):
    u = User.objects.create_user(username='pat1', password='P@ssw0rd1', role='patient',
                                 first_name='Alice', last_name='Smith')
    PatientProfile.objects.create(user=u, sex='F')
    return u


@pytest.fixture
def other_patient(db):
    u = User.objects.create_user(username='pat2', password='P@ssw0rd1', role='patient',
                                 first_name='Bob', last_name='Jones')
    PatientProfile.objects.create(user=u, sex='M')
    return u


@pytest.fixture
def staff(doctor):
    return Actor.from_user(doctor)


@pytest.fixture
def patient_actor(patient):
    return Actor.from_user(patient)


@pytest.fixture
def day():
    return datetime.date(2030, 3, 14)


@pytest.fixture
def make_slot(staff, day):
    def _make(start_hour=9, end_hour=10, capacity=1, location='Room A', date=None):
        return slots.create_slot(staff, date=date or day, start_hour=start_hour, end_hour=end_hour,
                                 location=location, capacity=capacity)
    return _make
