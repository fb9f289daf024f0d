"""Service events raised to the single observer registered on an offloading service."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


class ServiceEvent(enum.Enum):
    UNKNOWN = "unknown"
    MODEL_REGISTERED = "model_registered"
    PIPELINE_REGISTERED = "pipeline_registered"
    REPLY = "reply"
    ERROR = "error"  # Dispatch of an inbound message failed


@dataclass
class EventInfo:
    """Opaque payload handed to the observer with each event."""
    service_key: Optional[str] = None
    data: Optional[bytes] = None
    path: Optional[str] = None
    version: Optional[int] = None
    error: Optional[BaseException] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        """Dictionary-style access: 'data', 'path', ... or any extra field."""
        if name in ('service_key', 'data', 'path', 'version', 'error'):
            value = getattr(self, name)
            return default if value is None else value
        return self.extra.get(name, default)


EventCallback = Callable[[ServiceEvent, EventInfo], None]
