# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory for the contact relay.

The application exposes a single endpoint, ``POST /api/send``. Each request
goes through the same steps and stops at the first that fails:

1. ``OPTIONS`` on any path answers the CORS preflight with 204.
2. Any other method or path returns 404.
3. An ``Origin`` that is not configured returns 403.
4. A client over its rate limit returns 429.
5. A body that is not JSON returns 400.
6. A body that is not a valid submission returns 400.
7. The submission is mailed and 200 ``{"success": true}`` is returned, or
   500 if SMTP delivery fails.

Every response, errors included, carries the CORS headers computed from the
request ``Origin``. Collaborators are stored on ``app.state`` rather than in
module globals, so several independent apps can coexist in one process.

Example:
    Creating and running the application::

        from contact_relay.api import create_app

        app = create_app(store, Mailer(), RateLimiter())
        uvicorn.run(app, host="0.0.0.0", port=3000)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config_loader import ConfigStore
from .cors import CorsPolicy
from .errors import (
    MailTransportError,
    MalformedJson,
    RateLimited,
    RelayError,
    UnknownOrigin,
    ValidationFailure,
)
from .logger import get_logger
from .mailer import Mailer
from .models import validate_contact_form
from .prometheus import RelayMetrics
from .rate_limit import RateLimiter, client_key

logger = get_logger("api")

SEND_PATH = "/api/send"


def _reject_constant(name: str):
    # NaN and Infinity are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


class SendResponse(BaseModel):
    """Body of a successful ``POST /api/send``."""
    success: bool


class ErrorResponse(BaseModel):
    error: str


def create_app(
    store: ConfigStore,
    mailer: Mailer,
    rate_limiter: RateLimiter,
    *,
    metrics: RelayMetrics | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    store:
        Origins known to the relay.
    mailer:
        Object with an async ``send(data, origin_config)`` method.
    rate_limiter:
        Per-client limiter consulted for every ``POST /api/send``.
    metrics:
        Optional metrics collector; a private one is created when omitted.
    lifespan:
        Optional lifespan context manager for startup/shutdown work.

    Returns
    -------
    FastAPI
        A configured application ready to be served by uvicorn.
    """
    api = FastAPI(
        title="Contact Relay",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )
    api.state.store = store
    api.state.mailer = mailer
    api.state.rate_limiter = rate_limiter
    api.state.metrics = metrics or RelayMetrics()
    api.state.cors = CorsPolicy(store)

    @api.middleware("http")
    async def cors_middleware(request: Request, call_next):
        """Answer preflights and attach CORS headers to every response."""
        cors = request.app.state.cors.headers(request.headers.get("origin"))
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error",
                extra={"client": client_key(request), "origin": request.headers.get("origin"), "path": request.url.path},
            )
            return JSONResponse({"error": MailTransportError.detail}, status_code=500, headers=cors)
        response.headers.update(cors)
        return response

    @api.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # unknown paths and wrong methods on /api/send both read as "not found"
        if exc.status_code in (404, 405):
            logger.warning(
                "Not found",
                extra={"client": client_key(request), "path": request.url.path, "method": request.method},
            )
            return JSONResponse({"error": "Not found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @api.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(ErrorResponse(error=exc.detail).model_dump(), status_code=exc.status_code)

    @api.post(SEND_PATH, response_model=SendResponse)
    async def send(request: Request):
        """Validate a contact-form submission and relay it by email."""
        state = request.app.state
        metrics: RelayMetrics = state.metrics
        origin = request.headers.get("origin")
        client = client_key(request)
        meta = {"client": client, "origin": origin, "path": request.url.path}

        origin_cfg = state.store.resolve(origin)
        if origin_cfg is None:
            logger.warning("Forbidden origin", extra=meta)
            metrics.inc_rejected("forbidden")
            raise UnknownOrigin()

        allowed = state.rate_limiter.check(client)
        metrics.set_rate_limit_keys(len(state.rate_limiter))
        if not allowed:
            logger.warning("Rate limited", extra=meta)
            metrics.inc_rate_limited(origin)
            raise RateLimited()

        raw = await request.body()
        try:
            payload = json.loads(raw, parse_constant=_reject_constant)
        except ValueError:
            logger.warning("Invalid JSON", extra=meta)
            metrics.inc_rejected("invalid_json")
            raise MalformedJson() from None

        data, reason = validate_contact_form(payload)
        if data is None:
            logger.warning("Invalid body", extra={**meta, "reason": reason})
            metrics.inc_rejected("invalid_body")
            raise ValidationFailure()

        try:
            await state.mailer.send(data, origin_cfg)
        except MailTransportError as exc:
            logger.error("Failed to send email", extra={**meta, "error": str(exc)})
            metrics.inc_error(origin)
            raise

        logger.info("Email sent", extra=meta)
        metrics.inc_sent(origin)
        return SendResponse(success=True)

    return api
