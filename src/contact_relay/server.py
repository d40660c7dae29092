# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI entry point for uvicorn.

Builds the application from environment settings: loads the origins file,
wires the rate limiter, mailer and metrics, and starts a housekeeping task
that sweeps expired rate-limit entries and stale pooled SMTP connections.

Usage:
    CONFIG_FILE=/etc/contact-relay/origins.json \\
        uvicorn contact_relay.server:create_server_app --factory --port 3000

    or ``contact-relay serve`` (see :mod:`contact_relay.cli`).

Configuration errors raise
:class:`~contact_relay.errors.StartupConfigError` before the app exists, so
the process exits instead of serving.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import Settings, load_config_store, load_settings
from .logger import configure_logging, get_logger
from .mailer import Mailer
from .prometheus import RelayMetrics
from .rate_limit import RateLimiter
from .smtp_pool import SMTPPool

_logger = get_logger("server")


async def _housekeeping_loop(
    rate_limiter: RateLimiter,
    metrics: RelayMetrics,
    pool: SMTPPool | None,
    interval: float,
) -> None:
    """Periodically drop expired rate-limit entries and dead SMTP connections."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = rate_limiter.sweep()
            metrics.set_rate_limit_keys(len(rate_limiter))
            if removed:
                _logger.debug("Removed %d expired rate-limit entries", removed)
            if pool is not None:
                await pool.cleanup()
        except Exception:
            _logger.exception("Housekeeping cycle failed")


def build_lifespan(
    settings: Settings,
    rate_limiter: RateLimiter,
    metrics: RelayMetrics,
    pool: SMTPPool | None = None,
):
    """Return the lifespan handler that owns the housekeeping task."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        task = None
        if settings.sweep_interval > 0:
            task = asyncio.create_task(
                _housekeeping_loop(rate_limiter, metrics, pool, settings.sweep_interval)
            )
        _logger.info(
            "Server started",
            extra={"port": settings.port, "origins": len(app.state.store)},
        )
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            if pool is not None:
                await pool.close()
            _logger.info("Server stopped")

    return lifespan


def build_app(settings: Settings, mailer: Mailer | None = None) -> FastAPI:
    """Assemble the application described by ``settings``.

    Args:
        settings: Process settings.
        mailer: Mailer override; by default one is built from
            ``settings.smtp_pool_ttl``.

    Raises:
        StartupConfigError: If the origins file cannot be loaded.
    """
    store = load_config_store(settings.config_file)
    rate_limiter = RateLimiter(
        limit=settings.rate_limit,
        window=settings.rate_window_seconds,
        max_entries=settings.rate_max_entries,
    )
    metrics = RelayMetrics()
    pool = None
    if mailer is None:
        pool = SMTPPool(ttl=settings.smtp_pool_ttl) if settings.smtp_pool_ttl > 0 else None
        mailer = Mailer(pool=pool)
    if settings.metrics_port:
        metrics.serve(settings.metrics_port, addr=settings.host)
        _logger.info("Metrics exporter listening", extra={"port": settings.metrics_port})

    return create_app(
        store,
        mailer,
        rate_limiter,
        metrics=metrics,
        lifespan=build_lifespan(settings, rate_limiter, metrics, pool),
    )


def create_server_app() -> FastAPI:
    """uvicorn factory: read the environment, configure logging, build the app."""
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_format)
    return build_app(settings)
