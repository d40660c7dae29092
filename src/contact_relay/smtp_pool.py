# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP transports for the relay: one-shot connections and an optional pool.

By default every delivery opens its own connection with
:func:`connect_transport` and closes it afterwards, so origins with
different SMTP servers never share state.

:class:`SMTPPool` is the opt-in alternative for busier deployments. It keeps
one connection per SMTP account, keyed by ``(host, port, user)``, and
handles its lifecycle:

- TTL-based expiration
- Health checking via SMTP NOOP before reuse
- Reconnection when a connection is stale or broken
- A per-account lock, so a pooled connection carries one send at a time

Example:
    Using the pool::

        pool = SMTPPool(ttl=300)
        async with pool.connection(origin_cfg.smtp) as smtp:
            await smtp.send_message(message)

        # Periodically
        await pool.cleanup()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiosmtplib

from .logger import get_logger
from .models import SmtpConfig

logger = get_logger("smtp_pool")

PoolKey = tuple[str, int, str]


async def connect_transport(cfg: SmtpConfig) -> aiosmtplib.SMTP:
    """Open an authenticated SMTP connection for ``cfg``.

    ``cfg.secure`` selects implicit TLS. Otherwise the connection starts in
    plain text and STARTTLS is negotiated when the server advertises it.
    No timeout is set beyond aiosmtplib's default.

    Raises:
        aiosmtplib.SMTPException: If the server rejects the connection or
            the credentials.
        OSError: On DNS or socket failures.
    """
    smtp = aiosmtplib.SMTP(
        hostname=cfg.host,
        port=cfg.port,
        use_tls=cfg.secure,
        start_tls=False if cfg.secure else None,
    )
    await smtp.connect()
    try:
        await smtp.login(cfg.user, cfg.password)
    except Exception:
        await close_transport(smtp)
        raise
    return smtp


async def close_transport(smtp: aiosmtplib.SMTP) -> None:
    """Send QUIT, ignoring errors from a connection that is already gone."""
    try:
        await smtp.quit()
    except Exception as exc:
        logger.debug("Ignoring error while closing SMTP connection: %s", exc)


@dataclass
class _PoolEntry:
    smtp: aiosmtplib.SMTP | None = None
    last_used: float = 0.0
    password: str | None = None
    secure: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SMTPPool:
    """Asyncio SMTP connection cache keyed by SMTP account.

    Attributes:
        ttl: Maximum idle age in seconds before a connection is replaced.
        pool: Mapping of ``(host, port, user)`` to pool entries.
    """

    def __init__(self, ttl: int = 300):
        self.ttl = ttl
        self.pool: dict[PoolKey, _PoolEntry] = {}

    @staticmethod
    def key_for(cfg: SmtpConfig) -> PoolKey:
        return (cfg.host, cfg.port, cfg.user)

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Check a connection with NOOP; any failure counts as dead."""
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
        except Exception:
            return False
        return code == 250

    async def _reusable(self, entry: _PoolEntry, cfg: SmtpConfig) -> bool:
        if entry.smtp is None:
            return False
        if entry.password != cfg.password or entry.secure != cfg.secure:
            return False
        if (time.monotonic() - entry.last_used) >= self.ttl:
            return False
        return await self._is_alive(entry.smtp)

    @asynccontextmanager
    async def connection(self, cfg: SmtpConfig) -> AsyncIterator[aiosmtplib.SMTP]:
        """Lend the pooled connection for ``cfg``, opening one if needed.

        The connection is held exclusively for the duration of the block.
        If the block raises, the connection is closed and dropped so the next
        caller starts fresh.
        """
        entry = self.pool.setdefault(self.key_for(cfg), _PoolEntry())
        async with entry.lock:
            if not await self._reusable(entry, cfg):
                if entry.smtp is not None:
                    await close_transport(entry.smtp)
                    entry.smtp = None
                entry.smtp = await connect_transport(cfg)
                entry.password = cfg.password
                entry.secure = cfg.secure
            try:
                yield entry.smtp
            except BaseException:
                smtp, entry.smtp = entry.smtp, None
                await close_transport(smtp)
                raise
            entry.last_used = time.monotonic()

    async def cleanup(self) -> int:
        """Close connections that exceeded the TTL or fail the health check.

        Entries currently lent out are skipped.

        Returns:
            Number of connections closed.
        """
        closed = 0
        now = time.monotonic()
        for key, entry in list(self.pool.items()):
            if entry.lock.locked():
                continue
            async with entry.lock:
                if entry.smtp is None:
                    self.pool.pop(key, None)
                    continue
                if (now - entry.last_used) < self.ttl and await self._is_alive(entry.smtp):
                    continue
                smtp, entry.smtp = entry.smtp, None
                self.pool.pop(key, None)
            await close_transport(smtp)
            closed += 1
        return closed

    async def close(self) -> None:
        """Close every pooled connection."""
        for key, entry in list(self.pool.items()):
            async with entry.lock:
                smtp, entry.smtp = entry.smtp, None
                self.pool.pop(key, None)
            if smtp is not None:
                await close_transport(smtp)
