"""
Service registry for offloading requests.

Maps a caller-chosen key to the descriptor declared with ``set_service`` so a
later ``request`` can look it up. Entries are kept as compact JSON text,
the same form they are declared in.
"""

import logging
import threading
from typing import Dict, List, Optional, Union

from .exceptions import InvalidParameterError
from .types import ServiceDescriptor

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """
    In-memory key -> service descriptor table.

    Re-registering a key overwrites the previous entry (last write wins).
    Safe to use from the caller's thread and the transport's delivery thread.
    """

    def __init__(self):
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def set(self, key: str, descriptor: Union[str, ServiceDescriptor]) -> ServiceDescriptor:
        """
        Insert or replace the descriptor stored under ``key``.

        Args:
            key: Registry key (non-empty)
            descriptor: Descriptor object or its JSON text

        Returns:
            The parsed descriptor

        Raises:
            InvalidParameterError: If key is empty or the descriptor is malformed
        """
        if not key:
            raise InvalidParameterError("The parameter, 'key' is empty. It should be a valid string.")

        if isinstance(descriptor, ServiceDescriptor):
            parsed = descriptor
        else:
            if not descriptor:
                raise InvalidParameterError(
                    "The parameter, 'value' is empty. It should be a valid string.",
                    context={'key': key},
                )
            parsed = ServiceDescriptor.from_json(descriptor)

        with self._lock:
            if key in self._entries:
                logger.debug(f"Overwriting service '{key}'")
            self._entries[key] = parsed.to_json()

        logger.debug(f"Registered service '{key}' ({parsed.service_type} -> {parsed.service_key})")
        return parsed

    def get(self, key: str) -> Optional[ServiceDescriptor]:
        with self._lock:
            text = self._entries.get(key)
        if text is None:
            return None
        return ServiceDescriptor.from_json(text)

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
