"""
Token authentication for the scheduling API.

Kept in its own module so DRF can import it from settings without
pulling in any views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication using the ``Token`` header keyword.

    JWT bearer tokens are accepted alongside through simplejwt's
    ``JWTAuthentication``; see ``REST_FRAMEWORK`` in the settings.
    """

    keyword = 'Token'
