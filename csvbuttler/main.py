"""
csvbuttler - Main Application Entry Point

Serves records from a CSV file (local or remote) as JSON, with an optional
cookie + CSRF protected session layer.

STARTUP SEQUENCE:
1. Parse CLI flags and merge all settings layers
2. Fetch and index the CSV source (once, blocking; any failure exits 1)
3. Build the FastAPI app around the shared state and auth services
4. Serve with uvicorn

ERROR TRANSLATION:
- Unauthorized  -> 401, JSON string message
- InternalError -> 500, JSON string message (cause only in the log)

RESPONSES:
- gzip-compressed when the client accepts it and the body is large enough
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .config import (
    CORS_MAX_AGE,
    CSRF_HEADER,
    GZIP_MINIMUM_SIZE,
    PRODUCTS_CACHE_CONTROL,
    VERSION,
    load_settings,
)
from .csrf import CsrfTokenService
from .data_loader import SharedState
from .errors import ButtlerError, InternalError, Unauthorized
from .middleware import DefaultHeadersMiddleware, IdentityPolicy
from .routes import router
from .tokens import TokenService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error, please try later"


# =============================================================================
# APPLICATION LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    The index is already built when the app starts; this only reports it.
    """
    logger.info("=" * 60)
    logger.info(f"CSVBUTTLER {VERSION} READY - {len(app.state.shared_state)} records")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down csvbuttler...")


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    return JSONResponse(status_code=401, content=exc.detail)


async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
    logger.error(f"Internal error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=INTERNAL_ERROR_MESSAGE)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(state: SharedState) -> FastAPI:
    """
    Build the FastAPI application around an already built SharedState.

    Args:
        state: Shared settings + record index, built once by the caller

    Returns:
        Configured FastAPI application
    """
    settings = state.settings

    app = FastAPI(
        title="csvbuttler",
        description="Serves data from CSV files as JSON.",
        version=VERSION,
        lifespan=lifespan,
    )

    # Shared, read-only services borrowed by every request
    app.state.shared_state = state
    app.state.token_service = TokenService.from_settings(settings)
    app.state.csrf_service = CsrfTokenService(settings.secrets.csrf)
    app.state.identity_policy = IdentityPolicy(settings.secrets.app, settings.server)

    app.add_exception_handler(Unauthorized, unauthorized_handler)
    app.add_exception_handler(InternalError, internal_error_handler)

    app.add_middleware(
        DefaultHeadersMiddleware,
        prefix="/products",
        headers={"Cache-Control": PRODUCTS_CACHE_CONTROL},
    )

    # Compress responses for clients sending Accept-Encoding: gzip
    app.add_middleware(GZipMiddleware, minimum_size=GZIP_MINIMUM_SIZE)

    # CORS only when an origin is configured; records are read-only
    if settings.server.alloworigin:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.server.alloworigin],
            allow_credentials=True,
            allow_methods=["GET"],
            allow_headers=["*"],
            expose_headers=[CSRF_HEADER],
            max_age=CORS_MAX_AGE,
        )

    app.include_router(router)

    return app


# =============================================================================
# COMMAND LINE
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="csvbuttler",
        description="serves data from csv files",
    )
    parser.add_argument("-i", "--interface", help="interface to bind")
    parser.add_argument("-p", "--port", type=int, help="port to listen on")
    parser.add_argument("-f", "--file", help="csv file (local path or URL)")
    parser.add_argument("-d", "--delimiter", help="csv field delimiter")
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI flags into a nested settings override dict."""
    overrides: Dict[str, Dict[str, Any]] = {}

    if args.interface is not None:
        overrides.setdefault("server", {})["interface"] = args.interface
    if args.port is not None:
        overrides.setdefault("server", {})["port"] = args.port
    if args.file is not None:
        overrides.setdefault("csv", {})["uri"] = args.file
    if args.delimiter is not None:
        overrides.setdefault("csv", {})["delimiter"] = args.delimiter

    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    """
    Load settings and data, then serve until interrupted.

    Returns:
        Process exit code (1 on any startup error)
    """
    args = parse_args(argv)

    try:
        settings = load_settings(cli_overrides(args))
        state = SharedState.build(settings)
    except ButtlerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    app = create_app(state)

    logger.info(f"Listening on {settings.server.interface}:{settings.server.port}")
    uvicorn.run(
        app,
        host=settings.server.interface,
        port=settings.server.port,
        log_level="info",
    )
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
