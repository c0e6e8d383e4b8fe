"""
Schedule change notifications.

After a mutating operation commits, dashboards subscribed to the
``schedule`` channel group receive a ``schedule.changed`` event and the
cached dashboard statistics are dropped.
"""
from __future__ import annotations

import logging
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.cache import cache
from django.utils import timezone

from scheduling.services.storage import on_commit

logger = logging.getLogger(__name__)

GROUP = 'schedule'
DASHBOARD_CACHE_KEY = 'scheduling:dashboard:stats'


def dashboard_cache_key(day=None) -> str:
    day = day or timezone.localdate()
    return f'{DASHBOARD_CACHE_KEY}:{day.isoformat()}'


def schedule_changed(kind: str, *, slot_id: Optional[int] = None, booking_id: Optional[int] = None) -> None:
    """Queue a change event to be published once the current transaction commits."""
    event = {
        'type': 'schedule.changed',
        'kind': kind,
        'slotId': slot_id,
        'bookingId': booking_id,
    }
    on_commit(lambda: publish(event))


def publish(event: dict) -> None:
    cache.delete(dashboard_cache_key())
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    event = {**event, 'ts': timezone.now().isoformat()}
    try:
        async_to_sync(channel_layer.group_send)(GROUP, event)
    except Exception:
        # the mutation is already committed at this point
        logger.exception('failed to publish %s', event.get('kind'))
