# storefront/utils/events.py
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request

logger = logging.getLogger("storefront.requests")


@dataclass
class RequestEvent:
    """
    Wide log record for a single request.

    The middleware creates one per request and emits it once on the way out.
    Handlers receive it explicitly and record what they did with `set`.
    """
    method: str
    path: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    service: Optional[str] = None
    version: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    fields: Dict[str, Any] = field(default_factory=dict)
    started: float = field(default_factory=time.monotonic)

    def set(self, **values: Any) -> None:
        self.fields.update(values)

    def error(self, type_: str, message: str, **extra: Any) -> None:
        self.fields["error"] = {"type": type_, "message": message, **extra}

    def as_dict(self, status_code: Optional[int] = None) -> Dict[str, Any]:
        data = {
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "method": self.method,
            "path": self.path,
            "service": self.service,
            "version": self.version,
            "duration_ms": round((time.monotonic() - self.started) * 1000, 2),
        }
        if status_code is not None:
            data["status_code"] = status_code
            data["outcome"] = "success" if status_code < 400 else "error"
        data.update(self.fields)
        return data

    def emit(self, status_code: int) -> None:
        logger.info(json.dumps(self.as_dict(status_code), default=str))


def system_event(name: str) -> RequestEvent:
    # For work that does not start from an HTTP request (scheduled sweeps, scripts)
    return RequestEvent(method="TASK", path=name)


def get_event(request: Request) -> RequestEvent:
    event = getattr(request.state, "event", None)
    if event is None:
        event = RequestEvent(method=request.method, path=request.url.path)
        request.state.event = event
    return event
