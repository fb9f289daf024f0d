"""
Pipeline engine interface.

Training offloading launches a pipeline from a textual description once its
inputs are in place. Real media/tensor engines plug in through
``PipelineEngine``; ``LocalPipelineEngine`` is an in-process engine that
parses the description, tracks lifecycle state and loops pushed data back to
registered output callbacks.

Description syntax understood by the local engine: elements separated by
``!``, each element a name followed by ``key=value`` properties. An element
with a ``name=`` property is addressable as an endpoint::

    appsrc name=in ! tensor_filter model=/rw/model.bin ! tensor_sink name=out
"""

import enum
import logging
import shlex
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..core.exceptions import InternalError, InvalidParameterError, ServiceNotFoundError

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, bytes], None]


class PipelineState(enum.Enum):
    CONSTRUCTED = "constructed"
    PLAYING = "playing"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


@dataclass
class PipelineElement:
    factory: str
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.properties.get("name")


class Pipeline(ABC):
    """Handle to one constructed pipeline."""

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def state(self) -> PipelineState:
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def destroy(self) -> None:
        pass

    @abstractmethod
    def push_data(self, name: str, data: bytes) -> None:
        """Push a buffer into the source endpoint ``name``."""
        pass

    @abstractmethod
    def set_output_callback(self, name: str, callback: Optional[OutputCallback]) -> None:
        """Receive buffers leaving the sink endpoint ``name``."""
        pass

    @abstractmethod
    def get_endpoint(self, name: str) -> PipelineElement:
        pass

    @property
    def is_running(self) -> bool:
        return self.state == PipelineState.PLAYING


class PipelineEngine(ABC):
    """Factory for pipelines."""

    @abstractmethod
    def construct(self, description: str) -> Pipeline:
        pass


def parse_description(description: str) -> List[PipelineElement]:
    """Split a description into elements; raises InvalidParameterError when malformed."""
    if not description or not description.strip():
        raise InvalidParameterError("The pipeline description is empty.")

    elements = []
    for chunk in description.split("!"):
        try:
            tokens = shlex.split(chunk)
        except ValueError as e:
            raise InvalidParameterError(f"Malformed pipeline element '{chunk.strip()}': {e}") from e
        if not tokens:
            raise InvalidParameterError(f"Empty element in pipeline description: {description}")

        properties = {}
        for token in tokens[1:]:
            if "=" not in token:
                raise InvalidParameterError(f"Malformed property '{token}' in element '{tokens[0]}'")
            key, value = token.split("=", 1)
            properties[key] = value
        elements.append(PipelineElement(factory=tokens[0], properties=properties))
    return elements


class LocalPipeline(Pipeline):
    """In-process pipeline: data pushed into any endpoint reaches every output callback."""

    def __init__(self, description: str, elements: List[PipelineElement]):
        self._description = description
        self._elements = elements
        self._endpoints = {el.name: el for el in elements if el.name}
        self._callbacks: Dict[str, OutputCallback] = {}
        self._state = PipelineState.CONSTRUCTED
        self._lock = threading.Lock()

    @property
    def description(self) -> str:
        return self._description

    @property
    def elements(self) -> List[PipelineElement]:
        return list(self._elements)

    @property
    def state(self) -> PipelineState:
        return self._state

    def start(self) -> None:
        with self._lock:
            if self._state == PipelineState.DESTROYED:
                raise InternalError("Cannot start a destroyed pipeline")
            self._state = PipelineState.PLAYING
        logger.info(f"Pipeline started: {self._description}")

    def stop(self) -> None:
        with self._lock:
            if self._state == PipelineState.DESTROYED:
                raise InternalError("Cannot stop a destroyed pipeline")
            self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def destroy(self) -> None:
        with self._lock:
            self._state = PipelineState.DESTROYED
            self._callbacks.clear()
        logger.debug("Pipeline destroyed")

    def push_data(self, name: str, data: bytes) -> None:
        self.get_endpoint(name)
        with self._lock:
            if self._state != PipelineState.PLAYING:
                raise InternalError(f"Pipeline is not playing (state={self._state.value})")
            callbacks = list(self._callbacks.items())
        for sink, callback in callbacks:
            callback(sink, data)

    def set_output_callback(self, name: str, callback: Optional[OutputCallback]) -> None:
        self.get_endpoint(name)
        with self._lock:
            if callback is None:
                self._callbacks.pop(name, None)
            else:
                self._callbacks[name] = callback

    def get_endpoint(self, name: str) -> PipelineElement:
        element = self._endpoints.get(name)
        if element is None:
            raise ServiceNotFoundError(f"Pipeline has no endpoint '{name}'", context={'name': name})
        return element


class LocalPipelineEngine(PipelineEngine):
    """Constructs LocalPipeline objects and remembers the live ones, newest last."""

    def __init__(self):
        self.pipelines: List[LocalPipeline] = []

    def construct(self, description: str) -> LocalPipeline:
        pipeline = LocalPipeline(description, parse_description(description))
        self.pipelines = [p for p in self.pipelines if p.state != PipelineState.DESTROYED]
        self.pipelines.append(pipeline)
        logger.debug(f"Constructed pipeline with {len(pipeline.elements)} elements")
        return pipeline
