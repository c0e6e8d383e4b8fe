import pytest
from django.core.management import call_command
from django.urls import reverse
from rest_framework.test import APIClient

from scheduling.models import AuditEvent, PatientProfile, User

pytestmark = pytest.mark.django_db


def login(client, username, password):
    r = client.post(reverse('login_view'), {'username': username, 'password': password}, format='json')
    assert r.status_code in (200, 400, 401)
    return r


def test_no_role_escalation_in_login():
    client = APIClient()
    u = User.objects.create_user(username='u1', password='P@ssw0rd1', role='patient')
    r = client.post(reverse('login_view'), {'username': 'u1', 'password': 'P@ssw0rd1', 'role': 'admin'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['user']['role'] == 'patient'
    u.refresh_from_db()
    assert u.role == 'patient'


def test_failed_login_is_audited():
    client = APIClient()
    User.objects.create_user(username='u2', password='P@ssw0rd1', role='patient')
    r = login(client, 'u2', 'wrong')
    assert r.status_code == 400
    assert r.data['success'] is False
    assert r.data['error']['code'] == 'invalid_credentials'
    event = AuditEvent.objects.get(action='login')
    assert event.user_id is None
    assert event.detail['result'] == 'fail'


def test_login_returns_jwt_and_legacy_token():
    client = APIClient()
    User.objects.create_user(username='u_jwt', password='P@ssw0rd1', role='doctor')
    r = login(client, 'u_jwt', 'P@ssw0rd1')
    assert r.status_code == 200
    data = r.data['data']
    assert data['token'] and data['jwtAccess'] and data['jwtRefresh']

    # legacy token
    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    me = client.get(reverse('me'))
    assert me.status_code == 200 and me.data['data']['role'] == 'doctor'

    # JWT bearer
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['jwtAccess']}")
    me = client.get(reverse('me'))
    assert me.status_code == 200 and me.data['data']['username'] == 'u_jwt'


def test_jwt_refresh_and_logout_blacklists():
    client = APIClient()
    User.objects.create_user(username='u_out', password='P@ssw0rd1', role='patient')
    data = login(client, 'u_out', 'P@ssw0rd1').data['data']

    r = client.post(reverse('jwt_refresh'), {'refresh': data['jwtRefresh']}, format='json')
    assert r.status_code == 200 and r.data['data']['jwtAccess']
    refresh = r.data['data'].get('jwtRefresh', data['jwtRefresh'])

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['data']['jwtAccess']}")
    r = client.post(reverse('jwt_logout'), {'refresh': refresh}, format='json')
    assert r.status_code == 200 and r.data['data']['blacklisted'] == 1

    r = APIClient().post(reverse('jwt_refresh'), {'refresh': refresh}, format='json')
    assert r.status_code == 401
    assert r.data['success'] is False


def test_patient_cannot_use_staff_endpoints():
    client = APIClient()
    User.objects.create_user(username='p1', password='P@ssw0rd1', role='patient')
    token = login(client, 'p1', 'P@ssw0rd1').data['data']['token']
    client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
    assert client.get('/api/dashboard/stats').status_code == 403
    assert client.post('/api/slots/reschedule-bookings', {'fromSlotId': 1, 'toSlotId': 2}, format='json').status_code == 403
    assert client.delete('/api/slots/1').status_code == 403


def test_login_is_rate_limited():
    client = APIClient()
    User.objects.create_user(username='u_rl', password='P@ssw0rd1', role='patient')
    statuses = [login(client, 'u_rl', 'bad').status_code for _ in range(10)]
    assert statuses == [400] * 10
    r = client.post(reverse('login_view'), {'username': 'u_rl', 'password': 'bad'}, format='json')
    assert r.status_code == 429


def test_ensure_test_users_is_idempotent():
    call_command('ensure_test_users')
    call_command('ensure_test_users')
    assert set(User.objects.values_list('username', 'role')) == {
        ('admin1', 'admin'), ('doctor1', 'doctor'), ('patient1', 'patient'),
    }
    assert PatientProfile.objects.filter(user__username='patient1').count() == 1
    assert User.objects.get(username='doctor1').check_password('123456')
