"""
CSRF Token Module

Stateless CSRF tokens, independent of the session token.

TOKEN FORMAT:
- A random nonce, timestamp-signed with itsdangerous using the CSRF key
  (settings.secrets.csrf, distinct from the session secret)
- The signed bytes are hex encoded for the X-CSRF-TOKEN header

VERIFICATION:
- Recompute-and-compare through itsdangerous (constant-time MAC check)
- Expired, forged and malformed tokens are all simply "not valid"
"""

import logging
import secrets
import time
from datetime import timedelta
from typing import Callable

from itsdangerous import BadSignature, TimestampSigner

from .config import CSRF_TOKEN_TTL

logger = logging.getLogger(__name__)

_SALT = "csvbuttler.csrf"


class _ClockedSigner(TimestampSigner):
    """TimestampSigner reading time from an injectable clock."""

    def __init__(self, secret_key: str, clock: Callable[[], float], **kwargs):
        super().__init__(secret_key, **kwargs)
        self._clock = clock

    def get_timestamp(self) -> int:
        return int(self._clock())


def decode_token(value: str) -> bytes:
    """
    Decode a hex-encoded CSRF header value.

    Raises:
        ValueError: If the value is not valid hex
    """
    return bytes.fromhex(value.strip())


class CsrfTokenService:
    """
    Generates and verifies CSRF tokens against a single server-side key.

    Args:
        key: CSRF signing key
        ttl: Validity window (default 1 hour)
        clock: Returns unix time in seconds (injectable for tests)
    """

    def __init__(
        self,
        key: str,
        ttl: timedelta = CSRF_TOKEN_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._signer = _ClockedSigner(key, clock, salt=_SALT)
        self._max_age = int(ttl.total_seconds())

    def generate(self) -> str:
        """Return a fresh hex-encoded token."""
        nonce = secrets.token_hex(16)
        return self._signer.sign(nonce).hex()

    def verify_bytes(self, raw: bytes) -> bool:
        """Verify an already decoded token."""
        try:
            self._signer.unsign(raw, max_age=self._max_age)
        except BadSignature as exc:
            logger.info(f"CSRF token rejected: {type(exc).__name__}")
            return False
        return True

    def verify(self, token: str) -> bool:
        """Verify a hex-encoded token as sent by the client."""
        try:
            raw = decode_token(token)
        except ValueError:
            return False
        return self.verify_bytes(raw)
