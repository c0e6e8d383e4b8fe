"""
URL mappings for the clinic scheduling API.

Paths carry no trailing slash, matching the front-end client
(``APPEND_SLASH`` is disabled in the settings).
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view
from .views import bookings, dashboard, health, slots

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),

    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout'),
    path('api/auth/me', me_view, name='me'),

    path('api/slots', slots.slot_collection, name='slot_collection'),
    path('api/slots/reschedule-bookings', slots.slot_reschedule_bookings, name='slot_reschedule_bookings'),
    path('api/slots/<int:slot_id>', slots.slot_detail, name='slot_detail'),

    path('api/bookings', bookings.booking_collection, name='booking_collection'),
    path('api/bookings/<int:booking_id>', bookings.booking_detail, name='booking_detail'),
    path('api/bookings/<int:booking_id>/transition', bookings.booking_transition, name='booking_transition'),
    path('api/bookings/<int:booking_id>/reschedule', bookings.booking_reschedule, name='booking_reschedule'),

    path('api/dashboard/stats', dashboard.dashboard_stats, name='dashboard_stats'),
    path('api/dashboard/today', dashboard.dashboard_today, name='dashboard_today'),
]
