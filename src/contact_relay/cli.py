# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for contact-relay.

Usage:
    contact-relay serve --config origins.json --port 3000
    contact-relay check-config origins.json
    contact-relay send-test https://example.com --config origins.json \\
        --email visitor@example.org --name "Jane" --message "Hello"

``serve`` reads the same environment variables as the ASGI factory (see
:func:`contact_relay.config_loader.load_settings`); command-line options win
over the environment.
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import sys

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from contact_relay import __version__
from contact_relay.config_loader import load_config_store, load_settings
from contact_relay.errors import MailTransportError, StartupConfigError
from contact_relay.logger import configure_logging
from contact_relay.mailer import Mailer
from contact_relay.models import validate_contact_form
from contact_relay.server import build_app

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


@click.group()
@click.version_option(__version__, prog_name="contact-relay")
def main() -> None:
    """Relay contact-form submissions from static websites to email."""


@main.command()
@click.option("--config", "config_file", type=click.Path(dir_okay=False), help="Origins JSON file (overrides CONFIG_FILE).")
@click.option("--host", default=None, help="Bind address (overrides HOST).")
@click.option("--port", type=int, default=None, help="Listen port (overrides PORT).")
def serve(config_file: str | None, host: str | None, port: int | None) -> None:
    """Run the HTTP relay."""
    env = dict(os.environ)
    if config_file:
        env["CONFIG_FILE"] = config_file
    try:
        settings = load_settings(env)
        if host is not None:
            settings = dataclasses.replace(settings, host=host)
        if port is not None:
            settings = dataclasses.replace(settings, port=port)
        configure_logging(settings.log_level, settings.log_format)
        app = build_app(settings)
    except StartupConfigError as exc:
        print_error(str(exc))
        sys.exit(1)

    uvicorn.run(app, host=settings.host, port=settings.port)


@main.command("check-config")
@click.argument("config_file", type=click.Path(dir_okay=False))
def check_config(config_file: str) -> None:
    """Validate an origins file and list its origins."""
    try:
        store = load_config_store(config_file)
    except StartupConfigError as exc:
        print_error(str(exc))
        sys.exit(1)

    table = Table(title=f"Origins in {config_file}")
    table.add_column("Origin", style="cyan")
    table.add_column("Name")
    table.add_column("Recipient")
    table.add_column("SMTP")
    table.add_column("TLS")
    for origin, cfg in store.origins.items():
        table.add_row(
            origin,
            cfg.name,
            cfg.to_email,
            f"{cfg.smtp.host}:{cfg.smtp.port}",
            "implicit" if cfg.smtp.secure else "starttls",
        )
    console.print(table)
    print_success(f"{len(store)} origin(s) configured")


@main.command("send-test")
@click.argument("origin")
@click.option("--config", "config_file", required=True, type=click.Path(dir_okay=False), help="Origins JSON file.")
@click.option("--email", required=True, help="Visitor email address.")
@click.option("--name", required=True, help="Visitor name.")
@click.option("--message", required=True, help="Message text.")
@click.option("--phone", default=None, help="Optional phone number.")
def send_test(origin: str, config_file: str, email: str, name: str, message: str, phone: str | None) -> None:
    """Send a submission for ORIGIN straight through the mailer."""
    try:
        store = load_config_store(config_file)
    except StartupConfigError as exc:
        print_error(str(exc))
        sys.exit(1)

    origin_cfg = store.resolve(origin)
    if origin_cfg is None:
        print_error(f"Origin {origin} is not configured")
        sys.exit(1)

    payload = {"email": email, "name": name, "message": message}
    if phone is not None:
        payload["phone"] = phone
    data, reason = validate_contact_form(payload)
    if data is None:
        print_error(f"Invalid submission: {reason}")
        sys.exit(1)

    try:
        run_async(Mailer().send(data, origin_cfg))
    except MailTransportError as exc:
        print_error(str(exc))
        sys.exit(1)
    print_success(f"Message sent to {origin_cfg.to_email}")


if __name__ == "__main__":
    main()
