# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Contact-form relay for static websites.

Features:
    - Multiple calling origins, each with its own recipient and SMTP account
    - Strict CORS: only configured origins are echoed back
    - Per-client fixed-window rate limiting with bounded memory
    - Plain-text and HTML email generation with escaped visitor input
    - FastAPI HTTP surface served by uvicorn
    - Prometheus metrics on a separate port

Example::

    from contact_relay.api import create_app
    from contact_relay.config_loader import load_config_store
    from contact_relay.mailer import Mailer
    from contact_relay.rate_limit import RateLimiter

    store = load_config_store("/etc/contact-relay/origins.json")
    app = create_app(store, Mailer(), RateLimiter())
"""

__version__ = "1.0.0"
