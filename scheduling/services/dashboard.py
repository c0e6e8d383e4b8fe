from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.db.models import F
from django.utils import timezone

from scheduling.models import Booking, Slot, User
from scheduling.services.bookings import serialize_booking
from scheduling.services.notify import dashboard_cache_key


def stats(today=None) -> dict:
    """Headline counters for the staff dashboard, cached until the schedule changes."""
    today = today or timezone.localdate()
    cache_key = dashboard_cache_key(today)
    cached: Optional[dict] = cache.get(cache_key)
    if cached is not None:
        return cached
    todays_slots = Slot.objects.filter(date=today)
    data = {
        'date': today.isoformat(),
        'patients': User.objects.filter(role=User.ROLE_PATIENT).count(),
        'pendingBookings': Booking.objects.filter(status=Booking.STATUS_PENDING).count(),
        'todayBookings': Booking.objects.filter(slot__date=today).count(),
        'todaySlots': todays_slots.count(),
        'fullSlotsToday': todays_slots.filter(booked_count__gte=F('capacity')).count(),
    }
    cache.set(cache_key, data, getattr(settings, 'SCHEDULING_DASHBOARD_CACHE_SECONDS', 60))
    return data


def today_bookings(limit: int = 5, today=None) -> list[dict]:
    today = today or timezone.localdate()
    qs = (
        Booking.objects.select_related('slot', 'slot__doctor', 'patient')
        .filter(slot__date=today)
        .order_by('slot__start_hour', 'requested_at', 'id')[:limit]
    )
    return [serialize_booking(b) for b in qs]
