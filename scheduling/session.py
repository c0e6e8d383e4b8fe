"""
Explicit caller identity for the scheduling core.

Every service operation receives an :class:`Actor` instead of reading the
request user from ambient state.  Views build one from the authenticated
request with :meth:`Actor.from_request`.
"""
from __future__ import annotations

from dataclasses import dataclass

from .exceptions import PermissionDeniedError
from .models import User


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @classmethod
    def from_user(cls, user: User) -> 'Actor':
        if not (user and getattr(user, 'is_authenticated', False)):
            raise PermissionDeniedError('authentication required')
        return cls(user_id=user.id, role=getattr(user, 'role', '') or '')

    @classmethod
    def from_request(cls, request) -> 'Actor':
        return cls.from_user(getattr(request, 'user', None))

    @property
    def is_staff(self) -> bool:
        return self.role in User.STAFF_ROLES

    @property
    def is_patient(self) -> bool:
        return self.role == User.ROLE_PATIENT

    def require_staff(self, action: str) -> None:
        if not self.is_staff:
            raise PermissionDeniedError(f'only clinic staff may {action}')
