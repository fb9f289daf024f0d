"""
Local model and pipeline stores.

The offloading runtime registers what it installs through these interfaces.
``LocalModelStore`` and ``LocalPipelineStore`` are thread-safe in-memory
implementations; platform registries plug in by implementing the ABCs.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.exceptions import InvalidParameterError, ServiceNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ModelInfo:
    """One registered version of a model."""
    key: str
    version: int
    path: str
    description: Optional[str] = None
    activated: bool = False
    registered_at: float = field(default_factory=time.time)


class ModelStore(ABC):
    """Versioned model registry."""

    @abstractmethod
    def register(self, key: str, path: str, activate: bool = False, description: Optional[str] = None) -> int:
        """Register a model file under ``key`` and return its version."""
        pass

    @abstractmethod
    def get_activated(self, key: str) -> ModelInfo:
        """Return the activated version of ``key``."""
        pass

    @abstractmethod
    def list(self, key: str) -> List[ModelInfo]:
        """Return every registered version of ``key``, oldest first."""
        pass

    @abstractmethod
    def activate(self, key: str, version: int) -> None:
        """Make ``version`` the activated version of ``key``."""
        pass


class PipelineStore(ABC):
    """Key -> pipeline description registry."""

    @abstractmethod
    def set(self, key: str, description: str) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> str:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class LocalModelStore(ModelStore):
    """
    In-memory model store.

    Versions start at 1 per key. Registering with ``activate=True``
    deactivates every older version of the same key.
    """

    def __init__(self):
        self._models: Dict[str, List[ModelInfo]] = {}
        self._lock = threading.Lock()

    def register(self, key: str, path: str, activate: bool = False, description: Optional[str] = None) -> int:
        if not key:
            raise InvalidParameterError("The model key is empty.")
        if not path:
            raise InvalidParameterError("The model path is empty.", context={'key': key})

        with self._lock:
            versions = self._models.setdefault(key, [])
            version = len(versions) + 1
            if activate:
                for info in versions:
                    info.activated = False
            versions.append(ModelInfo(
                key=key,
                version=version,
                path=path,
                description=description,
                activated=activate,
            ))

        logger.info(f"Registered model '{key}' version {version} at {path} (activated={activate})")
        return version

    def get_activated(self, key: str) -> ModelInfo:
        with self._lock:
            for info in self._models.get(key, []):
                if info.activated:
                    return info
        raise ServiceNotFoundError(f"No activated model for '{key}'", context={'key': key})

    def list(self, key: str) -> List[ModelInfo]:
        with self._lock:
            return list(self._models.get(key, []))

    def activate(self, key: str, version: int) -> None:
        with self._lock:
            versions = self._models.get(key, [])
            if not any(info.version == version for info in versions):
                raise ServiceNotFoundError(
                    f"Model '{key}' has no version {version}",
                    context={'key': key, 'version': version},
                )
            for info in versions:
                info.activated = info.version == version
        logger.debug(f"Activated model '{key}' version {version}")


class LocalPipelineStore(PipelineStore):
    """In-memory pipeline description store."""

    def __init__(self):
        self._pipelines: Dict[str, str] = {}
        self._lock = threading.Lock()

    def set(self, key: str, description: str) -> None:
        if not key:
            raise InvalidParameterError("The pipeline key is empty.")
        if not description:
            raise InvalidParameterError("The pipeline description is empty.", context={'key': key})
        with self._lock:
            self._pipelines[key] = description
        logger.info(f"Registered pipeline '{key}'")

    def get(self, key: str) -> str:
        with self._lock:
            description = self._pipelines.get(key)
        if description is None:
            raise ServiceNotFoundError(f"No pipeline registered for '{key}'", context={'key': key})
        return description

    def delete(self, key: str) -> None:
        with self._lock:
            if self._pipelines.pop(key, None) is None:
                raise ServiceNotFoundError(f"No pipeline registered for '{key}'", context={'key': key})
