"""
Database models for the clinic scheduling backend.

Slots are finite-capacity appointment windows; bookings are patient
requests against a slot that move through an approval and attendance
lifecycle.  ``Slot.booked_count`` is maintained exclusively by
:mod:`scheduling.services.slots` (``reserve``/``release``), which update
the column with conditional ``UPDATE`` statements; ``Slot.save`` never
writes it for an existing row.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import F, Q
from django_prometheus.models import ExportModelOperationsMixin


class User(AbstractUser):
    """Custom user model carrying the clinic role.

    ``doctor`` and ``admin`` are clinic staff; ``patient`` users book
    slots and own a :class:`PatientProfile`.
    """
    ROLE_PATIENT = 'patient'
    ROLE_DOCTOR = 'doctor'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_ADMIN, 'Administrator'),
    ]
    STAFF_ROLES = frozenset({ROLE_DOCTOR, ROLE_ADMIN})

    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PATIENT, db_index=True)

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class PatientProfile(models.Model):
    """Demographic data for a patient user.

    The scheduling core treats this as opaque foreign data; bookings
    reference the patient ``User`` directly.
    """
    SEX_CHOICES = [
        ('M', 'Male'),
        ('F', 'Female'),
        ('O', 'Other'),
    ]
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='patient_profile')
    sex = models.CharField(max_length=1, choices=SEX_CHOICES, blank=True)
    dob = models.DateField(null=True, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    address = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.user.display_name} (patient #{self.user_id})"


class Slot(ExportModelOperationsMixin('slot'), models.Model):
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='slots'
    )
    date = models.DateField(db_index=True)
    start_hour = models.PositiveSmallIntegerField()
    end_hour = models.PositiveSmallIntegerField()
    location = models.CharField(max_length=255)
    capacity = models.PositiveIntegerField()
    booked_count = models.PositiveIntegerField(default=0, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['date', 'location'], name='slot_date_location_idx'),
            models.Index(fields=['doctor', 'date'], name='slot_doctor_date_idx'),
        ]
        constraints = [
            models.CheckConstraint(name='slot_hours_ordered', condition=Q(start_hour__lt=F('end_hour'))),
            models.CheckConstraint(name='slot_end_hour_in_day', condition=Q(end_hour__lte=23)),
            models.CheckConstraint(name='slot_capacity_positive', condition=Q(capacity__gte=1)),
            models.CheckConstraint(name='slot_booked_within_capacity', condition=Q(booked_count__lte=F('capacity'))),
        ]
        ordering = ['date', 'start_hour', 'id']

    def __str__(self) -> str:
        return f"{self.location} {self.date:%Y-%m-%d} {self.start_hour:02d}-{self.end_hour:02d} ({self.booked_count}/{self.capacity})"

    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity

    @property
    def remaining(self) -> int:
        return max(self.capacity - self.booked_count, 0)

    def save(self, *args, **kwargs):
        if not self._state.adding and kwargs.get('update_fields') is None:
            kwargs['update_fields'] = [
                f.name for f in self._meta.concrete_fields
                if not f.primary_key and f.name != 'booked_count'
            ]
        elif kwargs.get('update_fields') is not None:
            kwargs['update_fields'] = [f for f in kwargs['update_fields'] if f != 'booked_count']
        super().save(*args, **kwargs)


class Booking(ExportModelOperationsMixin('booking'), models.Model):
    STATUS_PENDING = 'Pending'
    STATUS_ACCEPTED = 'Accepted'
    STATUS_REJECTED = 'Rejected'
    STATUS_CHECKED_IN = 'CheckedIn'
    STATUS_COMPLETED = 'Completed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_CHECKED_IN, 'Checked in'),
        (STATUS_COMPLETED, 'Completed'),
    ]
    # Statuses holding one unit of the slot's capacity
    CAPACITY_STATUSES = frozenset({STATUS_ACCEPTED, STATUS_CHECKED_IN, STATUS_COMPLETED})
    # Statuses that still occupy the patient's place on a slot
    ACTIVE_STATUSES = frozenset({STATUS_PENDING, STATUS_ACCEPTED})

    slot = models.ForeignKey(Slot, on_delete=models.CASCADE, related_name='bookings')
    patient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='bookings')
    reason = models.CharField(max_length=500, blank=True, default='')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    requested_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['slot', 'patient'], name='booking_slot_patient_idx'),
            models.Index(fields=['status', 'requested_at'], name='booking_status_requested_idx'),
        ]
        ordering = ['-requested_at', '-id']

    def __str__(self) -> str:
        return f"Booking #{self.pk} slot={self.slot_id} patient={self.patient_id} ({self.status})"

    @property
    def holds_capacity(self) -> bool:
        return self.status in self.CAPACITY_STATUSES


class BookingTransition(models.Model):
    """Records a status change of a booking, including the initial request."""
    booking = models.ForeignKey(Booking, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=10, null=True, blank=True)
    event = models.CharField(max_length=16)
    to_status = models.CharField(max_length=10)
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='booking_transitions'
    )
    reason = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['timestamp', 'id']

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.from_status} -{self.event}-> {self.to_status}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.BigIntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.action}:{self.object_type}#{self.object_id}"
