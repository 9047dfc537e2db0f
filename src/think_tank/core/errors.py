"""Exception hierarchy shared across the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from think_tank.core.models import CostRecord


class ThinkTankError(Exception):
    """Base class for all engine errors."""


class RequestValidationError(ThinkTankError):
    """Inbound request is missing fields or carries invalid values.

    Raised before any provider call is attempted. Never worth retrying.
    """

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class ProviderError(ThinkTankError):
    """A provider call failed. Subclasses tell callers whether a retry makes sense."""

    def __init__(
        self,
        provider: str,
        model: str,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(f"{provider}:{model}: {message}")
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.body = body


class ProviderHTTPError(ProviderError):
    """Backend answered with a non-success HTTP status."""


class ProviderTimeoutError(ProviderError):
    """Backend did not answer within the configured timeout."""


class ProviderNetworkError(ProviderError):
    """Connection to the backend could not be established or was dropped."""


class StateError(ThinkTankError):
    """Operation is not allowed in the current state. No work is performed."""


class InvalidStateError(StateError):
    """Turn routing was invoked on a conversation that has ended."""


class UnsupportedProviderError(StateError):
    """No adapter is registered for the requested provider."""

    def __init__(self, provider: str):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class StreamCancelledError(ThinkTankError):
    """The stream consumer stopped listening before the provider finished.

    ``partial_record`` is set only when the provider had already reported usage.
    """

    def __init__(self, chunks_delivered: int, partial_record: Optional[CostRecord] = None):
        super().__init__(f"Stream cancelled after {chunks_delivered} chunks")
        self.chunks_delivered = chunks_delivered
        self.partial_record = partial_record
