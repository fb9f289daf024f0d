"""
Offloading service: registers exportable services, sends them to a remote
node on request, and installs what remote nodes send in return.

Inbound messages are dispatched on the transport's delivery thread:

    service-type      action
    model_raw/uri     write the model under the install dir, register it
    pipeline_raw/uri  register the pipeline description
    reply             hand the payload to the observer

Every outcome is reported to the single registered observer; dispatch
errors never propagate to the transport.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..config import EdgeMLConfig, get_config
from ..core.events import EventCallback, EventInfo, ServiceEvent
from ..core.exceptions import (
    ConfigurationError,
    EdgeMLException,
    InternalError,
    InvalidParameterError,
    PermissionDeniedError,
    ServiceNotFoundError,
    TransferIOError,
)
from ..core.payload import decode_text
from ..core.registry import ServiceRegistry
from ..core.types import (
    META_ACTIVATE,
    META_DESCRIPTION,
    META_NAME,
    META_SERVICE_KEY,
    META_SERVICE_TYPE,
    EdgeEndpointConfig,
    OffloadingMode,
    OffloadingState,
    ServiceType,
)
from ..transport import EdgeMessage, EdgeTransport
from .edge_session import EdgeSession
from .installer import Installer
from .pipeline import LocalPipelineEngine, PipelineEngine
from .training import TrainingOffloading
from .uri_resolver import UriResolver

logger = logging.getLogger(__name__)


def validate_writable_dir(path: str) -> str:
    """
    Check that ``path`` is an existing, writable directory.

    Raises:
        InvalidParameterError: If the path is not a directory
        PermissionDeniedError: If the directory is not writable
    """
    if not path or not os.path.isdir(path):
        raise InvalidParameterError(
            f"The given param, dir path '{path}' is invalid or the dir is not found or accessible.",
            context={'path': path},
        )
    if not os.access(path, os.W_OK):
        raise PermissionDeniedError(f"Write permission to dir '{path}' is denied.", context={'path': path})
    return path


class OffloadingService:
    """
    Handle for one offloading node.

    Example:
        >>> service = OffloadingService.from_config_file("receiver.json")
        >>> service.set_event_callback(on_event)
        >>> service.start()
        >>> ...
        >>> service.destroy()
    """

    def __init__(self,
                 endpoint: EdgeEndpointConfig,
                 path: Optional[str] = None,
                 transport: Optional[EdgeTransport] = None,
                 installer: Optional[Installer] = None,
                 uri_resolver: Optional[UriResolver] = None,
                 pipeline_engine: Optional[PipelineEngine] = None,
                 config: Optional[EdgeMLConfig] = None,
                 training: Optional[Mapping[str, Any]] = None):
        """
        Validate the writable root, then open the edge session.

        Args:
            endpoint: Edge endpoint of this node
            path: Writable root for received files (optional)
            transport: Transport to use instead of one chosen by connect type
            installer: Model/pipeline installer (default: in-memory stores)
            uri_resolver: Resolver for *_uri services
            pipeline_engine: Engine used by training offloading
            config: Configuration (default: global config)
            training: Training options ({"node-type": ..., "training": {...}});
                enables training mode before any message can arrive

        Raises:
            InvalidParameterError / PermissionDeniedError: Bad writable root
            UnsupportedError: Unknown connect type
            NetworkError: The session could not be opened
        """
        self.config = config or get_config()
        self.endpoint = endpoint
        self._path: Optional[str] = None
        if path is not None:
            self._path = validate_writable_dir(path)

        self.registry = ServiceRegistry()
        self.installer = installer or Installer()
        self._owns_resolver = uri_resolver is None
        self.uri_resolver = uri_resolver or UriResolver(self.config.fetch)
        self.pipeline_engine = pipeline_engine or LocalPipelineEngine()

        self.mode = OffloadingMode.PLAIN
        self.training: Optional[TrainingOffloading] = None
        if training is not None:
            self.enable_training(training)

        self._callback: Optional[EventCallback] = None
        self._callback_lock = threading.Lock()
        self._state = OffloadingState.CREATED

        self.session = EdgeSession(endpoint, handler=self.dispatch, transport=transport, config=self.config.network)
        self.session.open()
        logger.info(f"Offloading service created ({endpoint.node_type.value}, mode={self.mode.value})")

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, options: Mapping[str, Any], **kwargs) -> 'OffloadingService':
        """Build from an option mapping (the configuration's offloading section)."""
        if options is None:
            raise InvalidParameterError("The parameter, 'option' is None. It should be a valid mapping.")

        training = None
        if options.get("training") is not None:
            training = {"node-type": options.get("node-type"), "training": options["training"]}

        return cls(
            EdgeEndpointConfig.from_options(options),
            path=options.get("path"),
            training=training,
            **kwargs,
        )

    @classmethod
    def from_config(cls, document: Union[str, Mapping[str, Any]], **kwargs) -> 'OffloadingService':
        """
        Build from a configuration document with "offloading" and "services" sections.

        ``document`` may be the parsed mapping or its JSON text.
        """
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as e:
                raise ConfigurationError(f"Failed to parse the configuration: {e}") from e
        if not isinstance(document, Mapping):
            raise ConfigurationError("The configuration should be a JSON object.")

        offloading = document.get("offloading")
        if not isinstance(offloading, Mapping):
            raise InvalidParameterError("Failed to get the offloading section from the configuration.")

        services = document.get("services") or {}
        if not isinstance(services, Mapping):
            raise InvalidParameterError("The services section should be a JSON object.")

        service = cls.create(offloading, **kwargs)
        try:
            for key, descriptor in services.items():
                service.set_service(key, descriptor if isinstance(descriptor, str) else json.dumps(descriptor))
        except EdgeMLException:
            service.destroy()
            raise
        return service

    @classmethod
    def from_config_file(cls, path: str, **kwargs) -> 'OffloadingService':
        try:
            with open(path, 'r') as f:
                document = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file {path}: {e}", context={'path': path}) from e
        except ValueError as e:
            raise ConfigurationError(f"Failed to parse configuration file {path}: {e}", context={'path': path}) from e
        return cls.from_config(document, **kwargs)

    def enable_training(self, options: Mapping[str, Any]) -> TrainingOffloading:
        """Switch to training mode with the given training options."""
        self.training = TrainingOffloading(
            self,
            options,
            config=self.config.training,
            pipeline_engine=self.pipeline_engine,
        )
        self.training.set_path(self._path)
        self.mode = OffloadingMode.TRAINING
        return self.training

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def state(self) -> OffloadingState:
        return self._state

    @property
    def bound_port(self) -> Optional[int]:
        return self.session.bound_port

    def _check_alive(self) -> None:
        if self._state == OffloadingState.DESTROYED:
            raise InternalError("The offloading service is already destroyed")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def set_service(self, key: str, value: str) -> None:
        """Register (or replace) the service descriptor JSON under ``key``."""
        self._check_alive()
        self.registry.set(key, value)

    def set_information(self, name: str, value: str) -> None:
        """Set a named property. Only "path" (the writable root) is recognized."""
        self._check_alive()
        if not name:
            raise InvalidParameterError("The parameter, 'name' is empty.")

        if name.lower() == "path":
            self._path = validate_writable_dir(value)
            if self.training is not None:
                self.training.set_path(self._path)
            logger.info(f"Writable path set to {self._path}")
        else:
            logger.debug(f"Ignoring unknown information '{name}'")

    def request(self, key: str, payload: Any, extra_metadata: Optional[Dict[str, str]] = None) -> None:
        """
        Send the payload as the service registered under ``key``.

        Raises:
            InvalidParameterError: Empty key or payload
            ServiceNotFoundError: No service registered under key (nothing is sent)
            NetworkError: The transport failed
        """
        self._check_alive()
        if not key:
            raise InvalidParameterError("The parameter, 'key' is empty. It should be a valid string.")

        descriptor = self.registry.get(key)
        if descriptor is None:
            raise ServiceNotFoundError(
                f"The given service key, {key}, is not registered in the handle.",
                context={'key': key},
            )

        metadata = descriptor.to_metadata()
        if extra_metadata:
            metadata.update(extra_metadata)

        self.session.send(metadata, payload)
        logger.debug(f"Requested service '{key}' ({descriptor.service_type})")

    def set_event_callback(self, callback: Optional[EventCallback]) -> None:
        with self._callback_lock:
            self._callback = callback

    def start(self) -> None:
        self._check_alive()
        if self.training is not None:
            self.training.start()
        self._state = OffloadingState.STARTED

    def stop(self) -> None:
        self._check_alive()
        if self.training is not None:
            self.training.stop()
        self._state = OffloadingState.STOPPED

    def destroy(self) -> None:
        """Release training state, close the session and clear the registry. Idempotent."""
        if self._state == OffloadingState.DESTROYED:
            return

        try:
            if self.training is not None:
                self.training.destroy()
        finally:
            self._state = OffloadingState.DESTROYED
            self.session.close()
            if self._owns_resolver:
                self.uri_resolver.close()
            self.registry.clear()
            self.set_event_callback(None)
            logger.info("Offloading service destroyed")

    def __enter__(self) -> 'OffloadingService':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()
        return False

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def dispatch(self, message: EdgeMessage) -> None:
        """Handle one inbound message (called on the transport's thread)."""
        service_type_str = message.get(META_SERVICE_TYPE)
        service_key = message.get(META_SERVICE_KEY)
        if not service_type_str or not service_key:
            logger.error(f"Dropping message from {message.source}: missing service type or key")
            self._emit(ServiceEvent.ERROR, EventInfo(
                service_key=service_key,
                error=InvalidParameterError("Failed to get the service type or key from the message."),
            ))
            return

        service_type = ServiceType.parse(service_type_str)
        if service_type == ServiceType.UNKNOWN:
            logger.warning(f"Ignoring message '{service_key}' with unknown service type '{service_type_str}'")
            return

        training = self.training
        try:
            if training is not None and not training.process_received(message, service_type):
                return

            if service_type.is_model:
                event, info = self._handle_model(service_type, service_key, message)
            elif service_type.is_pipeline:
                event, info = self._handle_pipeline(service_type, service_key, message)
            else:
                event, info = self._handle_reply(service_key, message)
        except Exception as e:
            logger.error(f"❌ Failed to handle {service_type.value} '{service_key}': {e}")
            self._emit(ServiceEvent.ERROR, EventInfo(service_key=service_key, error=e))
            return

        if training is not None:
            training.mark_arrived(message, service_type, info.get('description'))
        self._emit(event, info)

    def _install_dir(self, service_key: str) -> str:
        if self._path:
            return self._path

        dir_path = os.path.join(os.getcwd(), service_key)
        try:
            os.makedirs(dir_path, exist_ok=True)
        except OSError as e:
            raise TransferIOError(f"Failed to create directory {dir_path}: {e}", context={'path': dir_path}) from e
        return dir_path

    def _content(self, service_type: ServiceType, message: EdgeMessage) -> bytes:
        data = message.payload
        if not data:
            raise InvalidParameterError("The received message has no data.")
        if service_type.is_uri:
            return self.uri_resolver.fetch(decode_text(data))
        return data

    def _handle_model(self, service_type: ServiceType, service_key: str,
                      message: EdgeMessage) -> Tuple[ServiceEvent, EventInfo]:
        data = self._content(service_type, message)
        path, version = self.installer.install_model(
            service_key,
            self._install_dir(service_key),
            message.get(META_NAME),
            data,
            activate=message.get(META_ACTIVATE),
            description=message.get(META_DESCRIPTION),
        )
        return ServiceEvent.MODEL_REGISTERED, EventInfo(service_key=service_key, path=path, version=version)

    def _handle_pipeline(self, service_type: ServiceType, service_key: str,
                         message: EdgeMessage) -> Tuple[ServiceEvent, EventInfo]:
        description = decode_text(self._content(service_type, message))
        self.installer.install_pipeline(service_key, description)
        return ServiceEvent.PIPELINE_REGISTERED, EventInfo(
            service_key=service_key,
            data=description.encode('utf-8'),
            extra={'description': description},
        )

    def _handle_reply(self, service_key: str, message: EdgeMessage) -> Tuple[ServiceEvent, EventInfo]:
        info = EventInfo(service_key=service_key, data=message.payload)
        if self.mode == OffloadingMode.TRAINING:
            # Trained artifact handed back by the receiver; the reply is delivered even if it cannot be installed
            try:
                info.path, info.version = self.installer.install_model(
                    service_key,
                    self._install_dir(service_key),
                    message.get(META_NAME),
                    message.payload,
                    activate=message.get(META_ACTIVATE),
                    description=message.get(META_DESCRIPTION),
                )
            except EdgeMLException as e:
                logger.error(f"❌ Failed to install reply '{service_key}': {e}")
                self._emit(ServiceEvent.ERROR, EventInfo(service_key=service_key, error=e))
        return ServiceEvent.REPLY, info

    def _emit(self, event: ServiceEvent, info: EventInfo) -> None:
        with self._callback_lock:
            callback = self._callback
        if callback is None:
            logger.debug(f"No event callback for {event.value}")
            return
        try:
            callback(event, info)
        except Exception as e:
            logger.error(f"Error in event callback for {event.value}: {e}")
