# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Build and deliver contact-form emails.

The message is always sent from the origin's authenticated SMTP user, with
the visitor's name as display name and the visitor's address as Reply-To, so
relayed mail passes SPF/DKIM checks for the sending domain.

Each message carries a plain-text part and an HTML part. Every visitor value
interpolated into the HTML part is escaped on its own before concatenation,
and only the HTML part turns newlines into ``<br>``.
"""

from __future__ import annotations

import asyncio
from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib

from .errors import MailTransportError
from .logger import get_logger
from .models import ContactFormData, OriginConfig
from .smtp_pool import SMTPPool, close_transport, connect_transport

logger = get_logger("mailer")

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
)


def escape_html(value: str) -> str:
    """Escape ``&``, ``<``, ``>`` and ``"`` for inclusion in HTML text."""
    for char, entity in _HTML_ESCAPES:
        value = value.replace(char, entity)
    return value


def _single_line(value: str) -> str:
    # header values may not contain CR or LF
    return " ".join(value.splitlines()).strip()


def build_subject(cfg: OriginConfig) -> str:
    return f"[{cfg.name}] Contact form submission"


def build_text_body(data: ContactFormData) -> str:
    lines = [f"From: {data.name} <{data.email}>"]
    if data.phone:
        lines.append(f"Phone: {data.phone}")
    return "\n".join(lines) + "\n\n" + data.message


def build_html_body(data: ContactFormData) -> str:
    message_html = escape_html(data.message).replace("\r\n", "\n").replace("\n", "<br>")
    parts = [f"<p><strong>From:</strong> {escape_html(data.name)} &lt;{escape_html(data.email)}&gt;</p>"]
    if data.phone:
        parts.append(f"<p><strong>Phone:</strong> {escape_html(data.phone)}</p>")
    parts.append("<hr>")
    parts.append(f"<p>{message_html}</p>")
    return "\n".join(parts)


def build_message(data: ContactFormData, cfg: OriginConfig) -> EmailMessage:
    """Compose the email relayed for one submission.

    Args:
        data: The validated submission.
        cfg: Configuration of the origin the submission came from.

    Returns:
        A ``multipart/alternative`` message with text and HTML parts.

    Raises:
        ValueError: If a header cannot be encoded. Malformed addresses can
            also surface other errors from the stdlib header parser.
    """
    msg = EmailMessage()
    msg["From"] = formataddr((_single_line(data.name), cfg.smtp.user))
    msg["To"] = cfg.to_email
    msg["Reply-To"] = _single_line(data.email)
    msg["Subject"] = build_subject(cfg)
    msg.set_content(build_text_body(data))
    msg.add_alternative(build_html_body(data), subtype="html")
    return msg


class Mailer:
    """Deliver submissions through the SMTP account of their origin.

    Without a pool a new transport is opened and closed for every call.
    With an :class:`~contact_relay.smtp_pool.SMTPPool` the connection of the
    origin's SMTP account is reused; the contract of :meth:`send` is the same.
    """

    def __init__(self, pool: SMTPPool | None = None):
        self.pool = pool

    async def send(self, data: ContactFormData, cfg: OriginConfig) -> None:
        """Send ``data`` to ``cfg.to_email``.

        Raises:
            MailTransportError: If the message cannot be built or the SMTP
                exchange fails for any reason.
        """
        try:
            msg = build_message(data, cfg)
        except Exception as exc:
            # the header parser raises assorted errors on odd addresses
            raise MailTransportError(f"Cannot build message for {cfg.name}: {exc}") from exc

        try:
            if self.pool is not None:
                async with self.pool.connection(cfg.smtp) as smtp:
                    await smtp.send_message(msg)
            else:
                smtp = await connect_transport(cfg.smtp)
                try:
                    await smtp.send_message(msg)
                finally:
                    await close_transport(smtp)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise MailTransportError(
                f"SMTP delivery via {cfg.smtp.host}:{cfg.smtp.port} failed for {cfg.name}: {exc}"
            ) from exc

        logger.debug("Relayed message for %s to %s", cfg.name, cfg.to_email)
