"""
Django admin registrations for the scheduling models.

``Slot.booked_count`` is shown read-only: it only changes when bookings
are accepted, cancelled or deleted through the booking services.  Slot
edits and every delete issued from the admin go through the same
services, so the counter stays in step with the bookings that hold it.
"""
from django import forms
from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .exceptions import ConflictError, SchedulingError
from .models import AuditEvent, Booking, BookingTransition, PatientProfile, Slot, User
from .services import bookings as booking_service
from .services import slots as slot_service
from .services.storage import atomic
from .session import Actor


def admin_actor(request) -> Actor:
    # admin site access already requires is_staff
    user = request.user
    role = user.role if user.role in User.STAFF_ROLES else User.ROLE_ADMIN
    return Actor(user_id=user.id, role=role)


def _delete_bookings_of(actor: Actor, users) -> None:
    for booking_id in Booking.objects.filter(patient__in=users).values_list('id', flat=True):
        booking_service.delete_booking(actor, booking_id)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'role', 'first_name', 'last_name', 'is_staff', 'is_superuser')
    list_filter = ('role', 'is_staff')
    fieldsets = BaseUserAdmin.fieldsets + (('Clinic', {'fields': ('role',)}),)

    # a patient's bookings cascade with the account; give their capacity back first
    def delete_model(self, request, obj):
        with atomic():
            _delete_bookings_of(admin_actor(request), [obj])
            super().delete_model(request, obj)

    def delete_queryset(self, request, queryset):
        with atomic():
            _delete_bookings_of(admin_actor(request), queryset)
            super().delete_queryset(request, queryset)


@admin.register(PatientProfile)
class PatientProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'sex', 'dob', 'phone')
    search_fields = ('user__username', 'user__first_name', 'user__last_name', 'phone')


class BookingInline(admin.TabularInline):
    model = Booking
    extra = 0
    fields = ('patient', 'status', 'reason', 'requested_at')
    readonly_fields = ('patient', 'status', 'reason', 'requested_at')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class SlotAdminForm(forms.ModelForm):
    class Meta:
        model = Slot
        fields = ('doctor', 'date', 'start_hour', 'end_hour', 'location', 'capacity')

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if 'doctor' in self.fields:
            self.fields['doctor'].queryset = User.objects.filter(role__in=User.STAFF_ROLES)

    def clean(self):
        cleaned = super().clean()
        slot = self.instance
        capacity = cleaned.get('capacity')
        if slot.pk and capacity is not None and capacity < slot.booked_count:
            self.add_error('capacity', f'Cannot be lower than the {slot.booked_count} confirmed bookings.')
        window = {k: cleaned.get(k) for k in ('date', 'start_hour', 'end_hour', 'location')}
        if None not in window.values() and window['start_hour'] < window['end_hour']:
            try:
                slot_service.ensure_no_overlap(exclude_id=slot.pk, **window)
            except ConflictError as exc:
                raise forms.ValidationError(exc.message)
        return cleaned


@admin.register(Slot)
class SlotAdmin(admin.ModelAdmin):
    form = SlotAdminForm
    list_display = ('id', 'date', 'start_hour', 'end_hour', 'location', 'doctor', 'capacity', 'booked_count')
    list_filter = ('date', 'location')
    search_fields = ('location', 'doctor__username', 'doctor__first_name', 'doctor__last_name')
    readonly_fields = ('booked_count', 'created_at', 'updated_at')
    inlines = [BookingInline]

    def save_model(self, request, obj, form, change):
        actor = admin_actor(request)
        if not change:
            slot = slot_service.create_slot(
                actor, date=obj.date, start_hour=obj.start_hour, end_hour=obj.end_hour,
                location=obj.location, capacity=obj.capacity, doctor_id=obj.doctor_id,
            )
            obj.pk = slot.pk
            obj.booked_count = slot.booked_count
            obj._state.adding = False
            return
        patch = {f: form.cleaned_data[f] for f in slot_service.PATCHABLE_FIELDS if f in form.changed_data}
        with atomic():
            if patch:
                slot_service.update_slot(actor, obj.pk, patch)
            if 'doctor' in form.changed_data:
                Slot.objects.filter(pk=obj.pk).update(doctor=obj.doctor)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.booked_count > 0:
            return False
        return super().has_delete_permission(request, obj)

    def delete_model(self, request, obj):
        slot_service.delete_slot(admin_actor(request), obj.pk)

    def delete_queryset(self, request, queryset):
        actor = admin_actor(request)
        for slot_id in queryset.values_list('id', flat=True):
            try:
                slot_service.delete_slot(actor, slot_id)
            except SchedulingError as exc:
                self.message_user(request, f'Slot {slot_id} kept: {exc.message}', level=messages.WARNING)


class BookingTransitionInline(admin.TabularInline):
    model = BookingTransition
    extra = 0
    readonly_fields = ('from_status', 'event', 'to_status', 'operator', 'reason', 'timestamp')
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('id', 'slot', 'patient', 'status', 'requested_at')
    list_filter = ('status',)
    search_fields = ('patient__username', 'patient__first_name', 'patient__last_name')
    # status changes must go through the booking services
    readonly_fields = ('slot', 'patient', 'status', 'requested_at', 'updated_at')
    inlines = [BookingTransitionInline]

    def has_add_permission(self, request):
        return False

    def delete_model(self, request, obj):
        booking_service.delete_booking(admin_actor(request), obj.pk)

    def delete_queryset(self, request, queryset):
        actor = admin_actor(request)
        for booking_id in queryset.values_list('id', flat=True):
            booking_service.delete_booking(actor, booking_id)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'object_type', 'object_id', 'user')
    list_filter = ('action', 'object_type')
    search_fields = ('action', 'object_type')
