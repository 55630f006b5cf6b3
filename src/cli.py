"""Click CLI for signing test webhooks and checking the audit trail."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from src.audit.logger import validate_audit_chain
from src.webhook.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, sign


@click.group()
def cli() -> None:
    """Webhook relay utilities."""


@cli.command("sign")
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@click.option("--secret", envvar="WEBHOOK_SECRET", required=True, help="Shared webhook secret.")
@click.option("--timestamp", default=None, type=int, help="Unix timestamp (default: now).")
def sign_command(body_file: str, secret: str, timestamp: int | None) -> None:
    """Print the signature headers for a webhook body, as JSON.

    The body is signed byte-for-byte; send exactly the same bytes.
    """
    if body_file == "-":
        raw_body = sys.stdin.buffer.read()
    else:
        raw_body = Path(body_file).read_bytes()
    signature, ts = sign(raw_body, secret, timestamp)
    click.echo(json.dumps({SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: ts}, indent=2))


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
def verify_audit(log_path: str) -> None:
    """Validate the hash chain of an audit log."""
    result = validate_audit_chain(Path(log_path))
    if result.valid:
        click.echo(f"Audit chain intact ({result.entries} entries)")
        return
    click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
    sys.exit(1)
