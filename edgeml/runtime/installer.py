"""Writes received models to disk and records them in the local stores."""

import logging
import os
from typing import Optional, Tuple

from ..core.exceptions import InvalidParameterError, TransferIOError
from ..core.types import parse_activate
from .stores import LocalModelStore, LocalPipelineStore, ModelStore, PipelineStore

logger = logging.getLogger(__name__)


class Installer:
    """Model/pipeline installer backed by a ModelStore and a PipelineStore."""

    def __init__(self,
                 model_store: Optional[ModelStore] = None,
                 pipeline_store: Optional[PipelineStore] = None):
        self.model_store = model_store or LocalModelStore()
        self.pipeline_store = pipeline_store or LocalPipelineStore()

    def install_model(self,
                      service_key: str,
                      dir_path: str,
                      name: Optional[str],
                      data: bytes,
                      activate: Optional[str] = None,
                      description: Optional[str] = None) -> Tuple[str, int]:
        """
        Save ``data`` as ``dir_path/name`` and register it under ``service_key``.

        Args:
            service_key: Model key in the model store
            dir_path: Install directory (must exist)
            name: File name of the model
            data: Model bytes
            activate: Activation flag as received ('true' activates)
            description: Free-form model description

        Returns:
            (installed file path, registered version)

        Raises:
            InvalidParameterError: If the name is missing
            TransferIOError: If the file cannot be written
        """
        if not name:
            raise InvalidParameterError(
                "Failed to get model file name from the message.",
                context={'service_key': service_key},
            )

        path = os.path.join(dir_path, os.path.basename(name))
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to write model file {path}: {e}")
            raise TransferIOError(f"Failed to write model file {path}: {e}", context={'path': path}) from e

        version = self.model_store.register(
            service_key,
            path,
            activate=parse_activate(activate),
            description=description,
        )
        logger.info(f"Installed model '{service_key}' ({len(data)} bytes) at {path}, version {version}")
        return path, version

    def install_pipeline(self, service_key: str, description: str) -> None:
        self.pipeline_store.set(service_key, description)
