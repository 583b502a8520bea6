"""
Session Middleware Module

CRITICAL SECURITY COMPONENT:
Reconstructs the authenticated user for protected handlers. Every protected
request must carry BOTH:
1. A valid CSRF token in the X-CSRF-TOKEN header
2. A valid session token in the signed identity cookie

A valid session without a valid CSRF token is rejected.

ARCHITECTURE:
- IdentityPolicy      : signs/reads/clears the identity cookie (secrets.app)
- extract_session     : per-request state machine -> Authorized | Rejected
- get_current_user    : FastAPI dependency raising Unauthorized on rejection
- DefaultHeadersMiddleware : adds fixed headers below a path prefix
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

from fastapi import Request, Response
from itsdangerous import BadSignature, TimestampSigner
from starlette.middleware.base import BaseHTTPMiddleware

from .config import CSRF_HEADER, IDENTITY_COOKIE, IDENTITY_COOKIE_MAX_AGE, ServerSettings
from .csrf import CsrfTokenService, decode_token
from .errors import ButtlerError, InternalError, Unauthorized
from .models import AuthenticatedUser
from .tokens import TokenService

logger = logging.getLogger(__name__)


# =============================================================================
# IDENTITY COOKIE
# =============================================================================

class IdentityPolicy:
    """
    Cookie-based identity storage.

    The cookie value is the session token, additionally signed with the
    application secret so a tampered cookie is rejected before JWT decoding.
    """

    def __init__(self, secret: str, server: ServerSettings, name: str = IDENTITY_COOKIE):
        self._signer = TimestampSigner(secret, salt="csvbuttler.identity")
        self._server = server
        self._name = name
        self._max_age = int(IDENTITY_COOKIE_MAX_AGE.total_seconds())

    @property
    def name(self) -> str:
        return self._name

    def sign(self, identity: str) -> str:
        """Return the cookie value for an identity."""
        return self._signer.sign(identity).decode("utf-8")

    def remember(self, response: Response, identity: str) -> None:
        """Attach the signed identity cookie to a response."""
        response.set_cookie(
            key=self._name,
            value=self.sign(identity),
            max_age=self._max_age,
            path="/",
            domain=self._server.domain or None,
            secure=self._server.https,
            httponly=True,
            samesite="lax",
        )

    def forget(self, response: Response) -> None:
        """Clear the identity cookie."""
        response.delete_cookie(
            key=self._name,
            path="/",
            domain=self._server.domain or None,
            secure=self._server.https,
            httponly=True,
            samesite="lax",
        )

    def identity(self, request: Request) -> Optional[str]:
        """Return the stored identity, or None if absent, tampered or too old."""
        value = request.cookies.get(self._name)
        if not value:
            return None

        try:
            return self._signer.unsign(value, max_age=self._max_age).decode("utf-8")
        except BadSignature:
            logger.warning("Identity cookie signature rejected")
            return None


# =============================================================================
# SESSION EXTRACTION
# =============================================================================

@dataclass(frozen=True)
class Authorized:
    user: AuthenticatedUser


@dataclass(frozen=True)
class Rejected:
    error: ButtlerError


SessionResult = Union[Authorized, Rejected]


def extract_session(
    request: Request,
    csrf_service: CsrfTokenService,
    token_service: TokenService,
    identity_policy: IdentityPolicy,
) -> SessionResult:
    """
    Run the CSRF and session checks for one request, in order.

    FLOW:
    1. CSRF header missing             -> Rejected
    2. CSRF header not hex             -> Rejected
    3. CSRF token fails verification   -> Rejected
    4. Identity cookie missing/invalid -> Rejected
    5. Session token fails to verify   -> Rejected
    6. Otherwise                       -> Authorized(user)

    Client-facing messages stay generic; the precise reason is logged.
    """
    header = request.headers.get(CSRF_HEADER)
    if not header:
        logger.info("Rejected request: missing CSRF header")
        return Rejected(Unauthorized())

    try:
        raw_token = decode_token(header)
    except ValueError:
        logger.warning("Rejected request: CSRF header is not valid hex")
        return Rejected(Unauthorized())

    if not csrf_service.verify_bytes(raw_token):
        logger.info("Rejected request: CSRF token failed verification")
        return Rejected(Unauthorized())

    token = identity_policy.identity(request)
    if token is None:
        logger.info("Rejected request: no identity cookie")
        return Rejected(Unauthorized())

    try:
        claims = token_service.verify(token)
    except (Unauthorized, InternalError) as exc:
        return Rejected(exc)

    return Authorized(AuthenticatedUser(email=claims.sub, company=claims.company))


def get_current_user(request: Request) -> AuthenticatedUser:
    """
    Dependency for protected route handlers.

    Usage:
        @router.get("/auth")
        async def me(user: AuthenticatedUser = Depends(get_current_user)):
            ...

    Raises:
        Unauthorized: If the CSRF or session check fails
        InternalError: If the services are missing or the secret is unavailable
    """
    app_state = request.app.state

    try:
        csrf_service = app_state.csrf_service
        token_service = app_state.token_service
        identity_policy = app_state.identity_policy
    except AttributeError as exc:
        # Only happens if create_app() was bypassed
        raise InternalError("Auth services not configured") from exc

    result = extract_session(request, csrf_service, token_service, identity_policy)

    if isinstance(result, Rejected):
        raise result.error

    return result.user


# =============================================================================
# DEFAULT HEADERS
# =============================================================================

class DefaultHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds fixed headers to every response below a path prefix,
    unless the handler already set them.
    """

    def __init__(self, app, prefix: str, headers: Dict[str, str]):
        super().__init__(app)
        self.prefix = prefix
        self.headers = headers

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if request.url.path.startswith(self.prefix):
            for name, value in self.headers.items():
                response.headers.setdefault(name, value)

        return response
