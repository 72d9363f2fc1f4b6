"""
Request context variables for cross-cutting concerns.

Uses Python's contextvars to propagate request-scoped values
(like trace IDs) through the async call chain without explicit passing.
Tasks spawned with asyncio.create_task copy the current context, so a
background refresh logs under the id of the request that triggered it.
"""

import uuid
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="no-trace")


def get_request_id() -> str:
    """Get the current request's trace ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the trace ID for the current request, generating one if missing."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id
