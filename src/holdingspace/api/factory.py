"""FastAPI application factory with role-based route mounting.

Roles:
- public: /health and the Stripe webhook (the only internet-facing surface).
- worker: everything in public plus /internal/* diagnostics.
"""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from holdingspace.observability.correlation import (
    CORRELATION_ID_HEADER,
    reset_correlation_id,
    resolve_correlation_id,
    set_correlation_id,
)

from .routers import public, worker
from .routes import webhooks_stripe

AppRole = Literal["public", "worker"]


def _get_role() -> str:
    return os.environ.get("APP_ROLE", "public")


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create the app for `role` (APP_ROLE env var when None, default public)."""
    role = role or _get_role()

    app = FastAPI(
        title="Holding Space Payments",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Stripe must reach the webhook whichever role serves it
    app.include_router(public.router)
    app.include_router(webhooks_stripe.router)

    if role == "worker":
        app.include_router(worker.router, tags=["internal"])

    return app
