"""
Signed, time-limited capability tokens for invitee reschedule/cancel links.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Dict

import jwt
import pendulum

from ..domain.exceptions import AuthError, ValidationError

logger = logging.getLogger(__name__)

ACTIONS = ("reschedule", "cancel")


class CapabilityTokens:
    """
    Issues and verifies JWTs that grant one action on one booking.

    Payload: ``sub`` (booking id), ``act`` (action), ``iat``, ``exp`` and a
    random ``jti``. The services never see the token, only the boolean
    returned by ``is_authorized``.
    """

    def __init__(self, secret: str, ttl_minutes: int = 7 * 24 * 60, algorithm: str = "HS256"):
        if not secret:
            raise ValidationError("A signing secret is required for capability tokens")
        self._secret = secret
        self.ttl_minutes = ttl_minutes
        self.algorithm = algorithm

    def issue(self, booking_id: str, action: str, now: pendulum.DateTime | None = None) -> str:
        if action not in ACTIONS:
            raise ValidationError(f"Unknown action '{action}'. Must be one of: {', '.join(ACTIONS)}")

        issued_at = now or pendulum.now("UTC")
        payload = {
            "sub": booking_id,
            "act": action,
            "iat": int(issued_at.timestamp()),
            "exp": int(issued_at.add(minutes=self.ttl_minutes).timestamp()),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode a token and return its payload.

        Raises:
            AuthError: If the token is missing, expired, tampered with or malformed
        """
        if not token:
            raise AuthError("No token provided")
        try:
            return jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise AuthError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthError("Invalid token") from exc

    def is_authorized(self, token: str, booking_id: str, action: str) -> bool:
        try:
            payload = self.verify(token)
        except AuthError as exc:
            logger.info("Rejected %s token for booking %s: %s", action, booking_id, exc)
            return False
        return payload.get("sub") == booking_id and payload.get("act") == action
