"""
Session Token Module

Issues and verifies the signed session claims stored in the identity cookie.

TOKEN FORMAT:
- JWT signed with HS256 using the session secret (settings.secrets.jwt)
- Claims: sub (email), company, exp (issuance + 24 hours, fixed)

KEY RESOLUTION:
- Issue and verify share one key provider, so the two paths can never
  read the secret from different places
- No server-side revocation: expiry is the only invalidation
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import jwt

from .config import JWT_ALGORITHM, SESSION_TOKEN_TTL, Settings
from .errors import InternalError, SigningError, Unauthorized

logger = logging.getLogger(__name__)

KeyProvider = Callable[[], Optional[str]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionClaims:
    """Verified payload of a session token."""
    sub: str
    company: str
    exp: int


class TokenService:
    """
    Signs and verifies session tokens.

    Args:
        key_provider: Returns the signing secret, or None if unavailable
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(self, key_provider: KeyProvider, clock: Clock = _utcnow):
        self._key_provider = key_provider
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(lambda: settings.secrets.jwt)

    def _key(self) -> str:
        key = self._key_provider()
        if not key:
            raise InternalError("Session signing secret is not configured")
        return key

    def issue(self, subject: str, company: str) -> str:
        """
        Create a signed token for the given identity, valid for 24 hours.

        Raises:
            SigningError: If the claims cannot be encoded
        """
        expires = self._clock() + SESSION_TOKEN_TTL
        claims = {
            "sub": subject,
            "company": company,
            "exp": int(expires.timestamp()),
        }

        try:
            return jwt.encode(claims, self._key(), algorithm=JWT_ALGORITHM)
        except InternalError as exc:
            raise SigningError(str(exc)) from exc
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise SigningError(f"Failed to sign session token: {exc}") from exc

    def verify(self, token: str) -> SessionClaims:
        """
        Check signature and expiry and return the claims.

        Raises:
            Unauthorized: Bad signature, malformed token or expired token
            InternalError: If the signing secret cannot be resolved
        """
        key = self._key()

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session token expired")
            raise Unauthorized() from None
        except jwt.InvalidTokenError as exc:
            logger.warning(f"Invalid session token: {exc}")
            raise Unauthorized() from None

        try:
            return SessionClaims(
                sub=str(payload["sub"]),
                company=str(payload["company"]),
                exp=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Malformed session claims: {exc}")
            raise Unauthorized() from None
