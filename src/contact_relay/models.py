# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the contact relay.

Models:
    - SmtpConfig: SMTP account used to deliver mail for one origin
    - OriginConfig: Recipient and SMTP settings bound to one calling origin
    - ContactFormData: A validated contact-form submission

The config models mirror the JSON origins file, so the camelCase and reserved
keys of that file (``toEmail``, ``pass``) are accepted as aliases.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

DEFAULT_SMTP_PORT = 587


class SmtpConfig(BaseModel):
    """SMTP account settings.

    Attributes:
        host: SMTP server hostname.
        port: SMTP server port (default 587).
        secure: Use implicit TLS from the first byte (typically port 465).
            When false, STARTTLS is negotiated if the server offers it.
        user: Login name; also used as the From address of relayed mail.
        password: Login password (``pass`` in the origins file).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: Annotated[StrictStr, Field(min_length=1)]
    port: Annotated[StrictInt, Field(default=DEFAULT_SMTP_PORT, ge=1, le=65535)]
    secure: Annotated[StrictBool, Field(default=False)]
    user: Annotated[StrictStr, Field(min_length=1)]
    password: Annotated[StrictStr, Field(min_length=1, alias="pass", repr=False)]

    @field_validator("port", "secure", mode="before")
    @classmethod
    def null_means_default(cls, v: Any, info) -> Any:
        """Treat an explicit ``null`` like an omitted key."""
        if v is None:
            return cls.model_fields[info.field_name].default
        return v


class OriginConfig(BaseModel):
    """Delivery settings for one calling origin.

    Attributes:
        name: Display name of the site, embedded in the mail subject.
        to_email: Recipient of every submission from this origin.
        smtp: SMTP account used for delivery.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: StrictStr
    to_email: Annotated[StrictStr, Field(min_length=1, alias="toEmail")]
    smtp: SmtpConfig


class ContactFormData(BaseModel):
    """A contact-form submission that passed validation.

    Validation is deliberately shallow: strings are not coerced, ``email``
    only has to contain ``@``, ``name`` and ``message`` must be non-empty and
    ``phone`` may be absent (or null) but never an empty string.
    Unknown keys are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    email: StrictStr
    name: Annotated[StrictStr, Field(min_length=1)]
    message: Annotated[StrictStr, Field(min_length=1)]
    phone: Annotated[StrictStr, Field(min_length=1)] | None = None

    @field_validator("email")
    @classmethod
    def email_has_at_sign(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("must contain '@'")
        return v


def describe_validation_error(exc: ValidationError) -> str:
    """Summarise a ValidationError as ``field: reason`` pairs.

    Input values are left out so the summary can be logged without echoing
    visitor data or credentials.
    """
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err["loc"]) or "body"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def validate_contact_form(value: Any) -> tuple[ContactFormData | None, str | None]:
    """Narrow an arbitrary parsed JSON value to :class:`ContactFormData`.

    Args:
        value: Result of ``json.loads`` on the request body.

    Returns:
        ``(data, None)`` when the value is a valid submission, otherwise
        ``(None, reason)`` where ``reason`` names the failing fields.
    """
    if not isinstance(value, dict):
        return None, f"body: expected a JSON object, got {type(value).__name__}"
    try:
        return ContactFormData.model_validate(value), None
    except ValidationError as exc:
        return None, describe_validation_error(exc)
