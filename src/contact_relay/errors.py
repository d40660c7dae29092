# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy for the contact relay.

Each per-request error carries the HTTP status it maps to and a generic
``detail`` that is safe to return to the caller. Internal causes stay on the
exception (``__cause__``) and are only ever logged server-side.
"""

from __future__ import annotations


class StartupConfigError(RuntimeError):
    """Raised when the process cannot start with the provided configuration."""


class RelayError(Exception):
    """Base class for errors that terminate a request with an HTTP status."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class UnknownOrigin(RelayError):
    status_code = 403
    detail = "Forbidden"


class RateLimited(RelayError):
    status_code = 429
    detail = "Too many requests"


class MalformedJson(RelayError):
    status_code = 400
    detail = "Invalid JSON"


class ValidationFailure(RelayError):
    status_code = 400
    detail = "Invalid body. Required: email, name, message"


class MailTransportError(RelayError):
    """SMTP delivery failed (auth, connection, DNS, protocol).

    ``detail`` is the public message; ``reason`` is the server-side
    description including the origin and the underlying error text.
    """

    status_code = 500
    detail = "Failed to send email"

    def __init__(self, reason: str):
        super().__init__()
        self.reason = reason

    def __str__(self) -> str:
        return self.reason
