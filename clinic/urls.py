"""
URL configuration for the clinic scheduling backend.

The Django admin, the scheduling API routes and the OpenAPI
documentation (``/swagger/`` and ``/redoc/``) are mounted here.
"""
from django.contrib import admin
from django.urls import path, include

from rest_framework import permissions
from drf_yasg.views import get_schema_view
from drf_yasg import openapi

api_info = openapi.Info(
    title="Clinic Scheduling API",
    default_version='v1',
    description="Appointment slots, booking requests and their approval/attendance lifecycle.",
)

schema_view = get_schema_view(
    api_info,
    public=True,
    permission_classes=(permissions.AllowAny,),
)

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include('scheduling.routers')),
    path('swagger/', schema_view.with_ui('swagger', cache_timeout=0), name='schema-swagger-ui'),
    path('redoc/', schema_view.with_ui('redoc', cache_timeout=0), name='schema-redoc'),
]
