"""Correlation ID management for request tracing.

Stripe does not send a correlation header, so webhook requests normally get
a fresh id; internal callers (replay tooling, the worker role) may pass
their own in X-Correlation-ID to tie their logs to ours.
"""

import re
import uuid
from contextvars import ContextVar, Token

# Copied into worker threads started by asyncio.to_thread, so handler logs
# keep the request's id.
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Inbound ids end up verbatim in every log line.
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def resolve_correlation_id(header_value: str | None) -> str:
    """Use the caller's id if it is a plain token, else generate one."""
    if header_value and _VALID_CORRELATION_ID.match(header_value):
        return header_value
    return generate_correlation_id()


def get_correlation_id() -> str:
    """Get current correlation ID from context ("" outside a request)."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)
