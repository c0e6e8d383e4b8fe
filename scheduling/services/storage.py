"""
Transaction helpers shared by the scheduling services.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable

from django.db import DatabaseError, transaction

from scheduling.exceptions import StorageError

logger = logging.getLogger(__name__)


@contextmanager
def atomic():
    """``transaction.atomic()`` that reports database failures as :class:`StorageError`.

    The exception is translated after the atomic block has rolled back,
    so callers never observe a partial mutation.
    """
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.warning('database error, transaction rolled back: %s', exc)
        raise StorageError(f'storage failure: {exc}') from exc


def on_commit(func: Callable[[], None]) -> None:
    transaction.on_commit(func)
