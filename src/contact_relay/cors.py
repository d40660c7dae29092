# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""CORS headers derived from the configured origins.

Only origins present in the :class:`~contact_relay.config_loader.ConfigStore`
are echoed back in ``Access-Control-Allow-Origin``; anything else gets an
empty value. There is no wildcard.
"""

from __future__ import annotations

from .config_loader import ConfigStore

ALLOW_METHODS = "POST, OPTIONS"
ALLOW_HEADERS = "Content-Type"


class CorsPolicy:
    def __init__(self, store: ConfigStore):
        self.store = store

    def headers(self, request_origin: str | None) -> dict[str, str]:
        """Return the CORS headers for a request carrying ``request_origin``."""
        allowed = request_origin if request_origin and self.store.is_known(request_origin) else ""
        return {
            "Access-Control-Allow-Origin": allowed,
            "Access-Control-Allow-Methods": ALLOW_METHODS,
            "Access-Control-Allow-Headers": ALLOW_HEADERS,
        }
