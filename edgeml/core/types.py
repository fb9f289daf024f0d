"""
Type definitions for the edgeml offloading layer.

Provides:
- ServiceType: the five kinds of offloaded service
- ConnectType / NodeType: edge transport selection and role
- EdgeEndpointConfig: immutable endpoint description for one edge session
- ServiceDescriptor: structured record for one exportable service
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .exceptions import InvalidParameterError

logger = logging.getLogger(__name__)


# ============================================================================
# METADATA KEYS (attached to every transport message)
# ============================================================================

META_SERVICE_TYPE = "service-type"
META_SERVICE_KEY = "service-key"
META_NAME = "name"
META_DESCRIPTION = "description"
META_ACTIVATE = "activate"
META_TRANSFER_TAG = "transfer-tag"


# ============================================================================
# SERVICE / MODE ENUMS
# ============================================================================

class ServiceType(str, Enum):
    """Kind of payload carried by an offloading message."""
    UNKNOWN = "unknown"
    MODEL_RAW = "model_raw"
    MODEL_URI = "model_uri"
    PIPELINE_RAW = "pipeline_raw"
    PIPELINE_URI = "pipeline_uri"
    REPLY = "reply"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ServiceType":
        """Case-insensitive lookup; unknown strings map to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        lowered = value.strip().lower()
        for member in cls:
            if member is not cls.UNKNOWN and member.value == lowered:
                return member
        logger.error(f"Invalid service type '{value}', please check service type.")
        return cls.UNKNOWN

    @property
    def is_model(self) -> bool:
        return self in (ServiceType.MODEL_RAW, ServiceType.MODEL_URI)

    @property
    def is_pipeline(self) -> bool:
        return self in (ServiceType.PIPELINE_RAW, ServiceType.PIPELINE_URI)

    @property
    def is_uri(self) -> bool:
        return self in (ServiceType.MODEL_URI, ServiceType.PIPELINE_URI)


class OffloadingMode(str, Enum):
    """Operating mode of an offloading service."""
    PLAIN = "plain"
    TRAINING = "training"


class OffloadingState(str, Enum):
    """Lifecycle of an offloading service handle."""
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


class TrainingRole(str, Enum):
    """Role of a node in training offloading."""
    UNKNOWN = "unknown"
    SENDER = "sender"
    RECEIVER = "receiver"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TrainingRole":
        if value:
            lowered = value.strip().lower()
            if lowered == "sender":
                return cls.SENDER
            if lowered == "receiver":
                return cls.RECEIVER
        return cls.UNKNOWN


# ============================================================================
# EDGE ENDPOINT
# ============================================================================

class ConnectType(str, Enum):
    """Edge connection kinds."""
    UNKNOWN = "unknown"
    TCP = "tcp"
    HYBRID = "hybrid"
    MQTT = "mqtt"
    AITT = "aitt"
    LOCAL = "local"  # In-process delivery, no sockets

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConnectType":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class NodeType(str, Enum):
    """Edge roles."""
    UNKNOWN = "unknown"
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"
    QUERY_CLIENT = "query_client"
    QUERY_SERVER = "query_server"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NodeType":
        """Accepts role names as well as the offloading aliases sender/receiver."""
        if not value:
            return cls.UNKNOWN
        lowered = value.strip().lower().replace("-", "_")
        if lowered == "sender":
            return cls.QUERY_CLIENT
        if lowered == "receiver":
            return cls.QUERY_SERVER
        try:
            return cls(lowered)
        except ValueError:
            logger.error(f"Invalid node type '{value}', please check node type.")
            return cls.UNKNOWN

    @property
    def is_client(self) -> bool:
        """Client-like roles connect to the destination after starting."""
        return self in (NodeType.QUERY_CLIENT, NodeType.SUBSCRIBER)


@dataclass(frozen=True)
class EdgeEndpointConfig:
    host: str = "localhost"
    port: int = 0
    dest_host: str = "localhost"
    dest_port: int = 0
    topic: Optional[str] = None
    connect_type: ConnectType = ConnectType.UNKNOWN
    node_type: NodeType = NodeType.UNKNOWN
    node_id: Optional[str] = None

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "EdgeEndpointConfig":
        """Build from an option mapping using the configuration file key names."""
        try:
            port = int(options.get("port", 0) or 0)
            dest_port = int(options.get("dest-port", 0) or 0)
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"Invalid port number: {e}") from e

        return cls(
            host=str(options.get("host") or "localhost"),
            port=port,
            dest_host=str(options.get("dest-host") or "localhost"),
            dest_port=dest_port,
            topic=options.get("topic"),
            connect_type=ConnectType.parse(options.get("connect-type")),
            node_type=NodeType.parse(options.get("node-type")),
            node_id=options.get("id"),
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def dest_address(self) -> str:
        return f"{self.dest_host}:{self.dest_port}"


# ============================================================================
# SERVICE DESCRIPTOR
# ============================================================================

def parse_activate(value: Optional[str]) -> bool:
    """Only the literal 'true' (any case) activates a model."""
    return value is not None and str(value).strip().lower() == "true"


@dataclass(frozen=True)
class ServiceDescriptor:
    """
    One exportable service, as declared with ``set_service``.

    The descriptor travels as compact JSON text (registry storage) and as
    string metadata on every transport message (wire form).
    """
    service_type: str
    service_key: str
    name: Optional[str] = None
    description: Optional[str] = None
    activate: Optional[str] = None

    @property
    def kind(self) -> ServiceType:
        return ServiceType.parse(self.service_type)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServiceDescriptor":
        service_type = data.get(META_SERVICE_TYPE)
        service_key = data.get(META_SERVICE_KEY)
        if not service_type:
            raise InvalidParameterError("Failed to get service type from the json object.")
        if not service_key:
            raise InvalidParameterError("Failed to get service key from the json object.")

        def _opt(field_name: str) -> Optional[str]:
            value = data.get(field_name)
            if value is None:
                return None
            if isinstance(value, bool):
                return "true" if value else "false"
            return str(value)

        return cls(
            service_type=str(service_type),
            service_key=str(service_key),
            name=_opt(META_NAME),
            description=_opt(META_DESCRIPTION),
            activate=_opt(META_ACTIVATE),
        )

    @classmethod
    def from_json(cls, text: str) -> "ServiceDescriptor":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"Failed to parse the json string, {text}.") from e
        if not isinstance(data, dict):
            raise InvalidParameterError("Failed to get the json object from the json node.")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, str]:
        data = {
            META_SERVICE_TYPE: self.service_type,
            META_SERVICE_KEY: self.service_key,
        }
        if self.name is not None:
            data[META_NAME] = self.name
        if self.description is not None:
            data[META_DESCRIPTION] = self.description
        if self.activate is not None:
            data[META_ACTIVATE] = self.activate
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_metadata(self) -> Dict[str, str]:
        """Wire metadata: the same fields the descriptor declares."""
        return dict(self.to_dict())
