"""
API Routes Module for csvbuttler

ENDPOINTS:
- GET    /products/{id} - Record as JSON, 404 with empty body if unknown
- POST   /auth          - Login stub: identity cookie + X-CSRF-TOKEN header
- GET    /auth          - Current user (requires CSRF header + identity cookie)
- DELETE /auth          - Clear the identity cookie
- GET    /health        - Health check
- GET    /              - Banner

All shared services live on app.state (see main.create_app); handlers only
borrow them for the duration of a request.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import CSRF_HEADER, DEMO_COMPANY, VERSION
from .data_loader import SharedState
from .errors import InternalError, Unauthorized
from .middleware import get_current_user
from .models import AuthenticatedUser, HealthResponse, LoginRequest, Record

logger = logging.getLogger(__name__)

router = APIRouter()


def _service(request: Request, name: str) -> Any:
    """Fetch a shared service from app.state or fail with an InternalError."""
    service = getattr(request.app.state, name, None)

    if service is None:
        # This should never happen if create_app() built the application
        raise InternalError(f"{name} not found on app state")

    return service


def get_shared_state(request: Request) -> SharedState:
    return _service(request, "shared_state")


def login(credentials: LoginRequest) -> AuthenticatedUser:
    """
    Demonstration login: any non-empty credentials are accepted.

    Raises:
        Unauthorized: If email or password is empty
    """
    email = credentials.email.strip()

    if not email or not credentials.password:
        raise Unauthorized("Invalid credentials")

    return AuthenticatedUser(email=email, company=DEMO_COMPANY)


# =============================================================================
# PRODUCTS
# =============================================================================

@router.get(
    "/products/{record_id}",
    response_model=Record,
    summary="Get a record",
    responses={404: {"description": "No record with this id (empty body)"}},
)
async def get_product(
    record_id: str,
    state: SharedState = Depends(get_shared_state),
) -> Response:
    """
    Look up a single record by its numeric id.

    Non-numeric ids cannot match any record and are answered with 404.
    """
    if not record_id.isascii() or not record_id.isdigit():
        return Response(status_code=404)

    record = state.lookup(int(record_id))

    if record is None:
        return Response(status_code=404)

    return JSONResponse(content=record.model_dump())


# =============================================================================
# AUTH
# =============================================================================

@router.post(
    "/auth",
    response_model=AuthenticatedUser,
    summary="Log in",
    responses={
        401: {"description": "Invalid credentials"},
        500: {"description": "Token could not be issued"},
    },
)
async def post_auth(body: LoginRequest, request: Request) -> JSONResponse:
    """
    Issue a session for the given credentials.

    RESPONSE:
    - JSON user body {email, company}
    - Set-Cookie: signed identity cookie holding the session token
    - X-CSRF-TOKEN: token to send back on protected requests
    """
    user = login(body)

    token = _service(request, "token_service").issue(user.email, user.company)

    response = JSONResponse(content=user.model_dump())
    _service(request, "identity_policy").remember(response, token)
    response.headers[CSRF_HEADER] = _service(request, "csrf_service").generate()

    logger.info(f"Session issued for {user.email}")
    return response


@router.get(
    "/auth",
    response_model=AuthenticatedUser,
    summary="Current user",
    responses={401: {"description": "Missing/invalid CSRF token or session"}},
)
async def get_auth(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Return the authenticated user. Requires the X-CSRF-TOKEN header."""
    return user


@router.delete("/auth", summary="Log out")
async def delete_auth(request: Request) -> Response:
    """Clear the identity cookie. Always succeeds."""
    response = Response(status_code=200)
    _service(request, "identity_policy").forget(response)
    return response


# =============================================================================
# HEALTH / ROOT
# =============================================================================

@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(state: SharedState = Depends(get_shared_state)) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        records_loaded=len(state),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def root() -> str:
    return f"csvbuttler {VERSION}"
