"""Request-scoped observability context.

A ``RequestContext`` is created once per upload and passed explicitly to every
component, so log lines from concurrent uploads can be told apart.
"""

import logging
import uuid
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any


class RequestLoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that prefixes every message with the request id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        request_id = (self.extra or {}).get("request_id", "-")
        kwargs.setdefault("extra", {}).update(self.extra or {})
        return f"[{request_id}] {msg}", kwargs


@dataclass
class RequestContext:
    """Observability handle for a single processing request.

    Attributes:
        request_id: Unique identifier of the request
        logger_name: Name of the underlying logger
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    logger_name: str = "upd_loader"

    def __post_init__(self) -> None:
        self._log = RequestLoggerAdapter(
            logging.getLogger(self.logger_name), {"request_id": self.request_id}
        )

    @property
    def log(self) -> RequestLoggerAdapter:
        """Request-scoped logger."""
        return self._log

    def child(self, logger_name: str) -> "RequestContext":
        """Derive a context for another component, keeping the request id."""
        return RequestContext(request_id=self.request_id, logger_name=logger_name)
