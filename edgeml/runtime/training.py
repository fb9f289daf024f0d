"""
Training offloading: coordinates distributed training between two nodes.

The sender owns the training data and configuration; the receiver owns the
compute. On ``start`` the sender transfers every file named in its transfer
table, then sends the receiver's pipeline description as the final message.
That last message is the completion sentinel: once it (and every expected
file) has arrived, the receiver resolves its writable root into the
description and launches the training pipeline.

Configuration (the ``training`` member of the offloading section)::

    {
      "sender-pipeline": "... model=@APP_RW_PATH@/model.json ...",
      "transfer-data": {
        "cfg":  "@APP_RW_PATH@/model.json",
        "data": "@APP_RW_PATH@/train.bin",
        "pipe": "... @REMOTE_APP_RW_PATH@/model.json ..."
      },
      "time-limit": 10,
      "reply-data": {"trained": "@REMOTE_APP_RW_PATH@/trained.bin"}
    }

Each transfer-data key is a service key registered with ``set_service``.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Set, Tuple

from ..config import TrainingConfig, get_config
from ..core.exceptions import (
    CompletionTimeoutError,
    EdgeMLException,
    InvalidParameterError,
    TransferIOError,
)
from ..core.placeholders import contains_placeholder, resolve_placeholder
from ..core.types import META_SERVICE_KEY, META_TRANSFER_TAG, ServiceType, TrainingRole
from .pipeline import Pipeline, PipelineEngine, PipelineState

if TYPE_CHECKING:
    from ..transport import EdgeMessage
    from .offloading import OffloadingService

logger = logging.getLogger(__name__)


class CompletionDetector:
    """
    Monitor tracking whether the receiver has everything it needs.

    Complete means the sentinel (the receiver pipeline description) has
    arrived and so has every expected tag. Arrival is recorded on the
    transport's delivery thread; ``wait`` blocks the caller until completion,
    cancellation or the deadline.
    """

    def __init__(self, expected_tags: Iterable[str] = ()):
        self._cond = threading.Condition()
        self._expected: Set[str] = set(expected_tags)
        self._arrived: Set[str] = set()
        self._sentinel: Optional[str] = None
        self._cancelled = False

    def mark_arrived(self, *tags: str) -> None:
        with self._cond:
            for tag in tags:
                if tag:
                    self._arrived.add(tag)
            self._cond.notify_all()

    def set_sentinel(self, text: str) -> bool:
        """Record the sentinel; returns False if one had already arrived."""
        with self._cond:
            if self._sentinel is not None:
                return False
            self._sentinel = text
            self._cond.notify_all()
            return True

    @property
    def sentinel(self) -> Optional[str]:
        with self._cond:
            return self._sentinel

    @property
    def has_sentinel(self) -> bool:
        return self.sentinel is not None

    def missing(self) -> Set[str]:
        with self._cond:
            return self._expected - self._arrived

    def is_complete(self) -> bool:
        with self._cond:
            return self._is_complete_locked()

    def _is_complete_locked(self) -> bool:
        return self._sentinel is not None and self._expected <= self._arrived

    def wait(self, timeout: Optional[float]) -> bool:
        """Block until complete; False on timeout or cancellation."""
        with self._cond:
            self._cond.wait_for(lambda: self._cancelled or self._is_complete_locked(), timeout)
            return not self._cancelled and self._is_complete_locked()

    def cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()


class TrainingOffloading:
    """Sender/receiver handshake on top of an OffloadingService."""

    def __init__(self,
                 service: 'OffloadingService',
                 options: Mapping[str, Any],
                 config: Optional[TrainingConfig] = None,
                 pipeline_engine: Optional[PipelineEngine] = None):
        self.service = service
        self.config = config or get_config().training
        self.pipeline_engine = pipeline_engine or service.pipeline_engine

        self.role = TrainingRole.parse(options.get("node-type"))
        if self.role == TrainingRole.UNKNOWN:
            raise InvalidParameterError(
                "The node type information in JSON is incorrect.",
                context={'node-type': options.get("node-type")},
            )

        training = options.get("training")
        if not isinstance(training, Mapping):
            raise InvalidParameterError("Failed to get the training information from the configuration.")

        self.sender_pipeline: Optional[str] = training.get("sender-pipeline")
        if self.role == TrainingRole.SENDER and not self.sender_pipeline:
            raise InvalidParameterError("Failed to get the sender pipeline from the configuration.")

        self.transfer_data = self._string_table(training.get("transfer-data"), "transfer-data", required=True)
        self.reply_data = self._string_table(training.get("reply-data"), "reply-data", required=False)

        self.time_limit = float(self.config.completion_timeout)
        if training.get("time-limit") is not None:
            try:
                self.time_limit = float(training["time-limit"])
            except (TypeError, ValueError) as e:
                raise InvalidParameterError(f"Invalid time-limit: {training['time-limit']}") from e

        self.path: Optional[str] = None
        self.pipeline: Optional[Pipeline] = None
        self.detector = CompletionDetector(self._expected_tags())

        logger.info(
            f"Training offloading configured as {self.role.value} "
            f"({len(self.transfer_data)} transfer entries, time limit {self.time_limit}s)"
        )

    @staticmethod
    def _string_table(value: Any, name: str, required: bool) -> Dict[str, str]:
        if value is None:
            if required:
                raise InvalidParameterError(f"Failed to get the {name} table from the configuration.")
            return {}
        if not isinstance(value, Mapping):
            raise InvalidParameterError(f"The {name} member should be a JSON object.")

        table = {}
        for tag, entry in value.items():
            if not isinstance(entry, str) or not entry:
                raise InvalidParameterError(
                    f"The {name} entry '{tag}' should be a non-empty string.",
                    context={'tag': tag},
                )
            table[str(tag)] = entry
        return table

    def _expected_tags(self) -> Set[str]:
        return {
            tag for tag, value in self.transfer_data.items()
            if not contains_placeholder(value, self.config.receiver_placeholder)
        }

    def _pipeline_entry(self) -> Tuple[str, str]:
        entries = [
            (tag, value) for tag, value in self.transfer_data.items()
            if contains_placeholder(value, self.config.receiver_placeholder)
        ]
        if len(entries) != 1:
            raise InvalidParameterError(
                f"The transfer table should hold exactly one receiver pipeline entry, found {len(entries)}."
            )
        return entries[0]

    @property
    def receiver_pipeline(self) -> Optional[str]:
        return self.detector.sentinel

    def set_path(self, path: Optional[str]) -> None:
        self.path = path

    def _require_path(self) -> str:
        if not self.path:
            raise InvalidParameterError("The writable path is not set. Set it with set_information('path', ...).")
        return self.path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.role == TrainingRole.SENDER:
            self._start_sender()
        else:
            self._start_receiver()

    def _start_sender(self) -> None:
        root = self._require_path()
        pipe_tag, pipe_value = self._pipeline_entry()

        for tag, value in self.transfer_data.items():
            if tag == pipe_tag:
                continue
            if not contains_placeholder(value, self.config.sender_placeholder):
                raise InvalidParameterError(
                    f"The transfer entry '{tag}' has no writable path placeholder.",
                    context={'value': value},
                )

        for tag, value in self.transfer_data.items():
            if tag == pipe_tag:
                continue
            file_path = resolve_placeholder(value, self.config.sender_placeholder, root)
            data = self._read_file(file_path)
            self.service.request(tag, data, extra_metadata={META_TRANSFER_TAG: tag})
            logger.info(f"Sent '{tag}' ({len(data)} bytes) from {file_path}")

        # The receiver pipeline goes last; its arrival tells the receiver all files were sent
        self.service.request(
            pipe_tag,
            pipe_value.encode('utf-8') + b"\x00",
            extra_metadata={META_TRANSFER_TAG: pipe_tag},
        )
        logger.info(f"Sent receiver pipeline '{pipe_tag}'")

        description = resolve_placeholder(self.sender_pipeline, self.config.sender_placeholder, root)
        self._launch(description)

    def _start_receiver(self) -> None:
        root = self._require_path()
        if not self.detector.wait(self.time_limit):
            missing = sorted(self.detector.missing())
            logger.error(
                f"❌ Required data not received within {self.time_limit}s "
                f"(sentinel={'yes' if self.detector.has_sentinel else 'no'}, missing={missing})"
            )
            raise CompletionTimeoutError(
                "Failed to receive the required data",
                context={'time_limit': self.time_limit, 'missing': missing},
            )

        logger.info("✅ Received all required data")
        description = resolve_placeholder(self.receiver_pipeline, self.config.receiver_placeholder, root)
        self._launch(description)

    def _launch(self, description: str) -> None:
        # A restart replaces the pipeline of the previous start
        self._release_pipeline()
        pipeline = self.pipeline_engine.construct(description)
        self.pipeline = pipeline
        pipeline.start()
        logger.info(f"Training pipeline started ({self.role.value})")

    def stop(self) -> None:
        if self.pipeline is not None and self.pipeline.state == PipelineState.PLAYING:
            self.pipeline.stop()
            logger.info(f"Training pipeline stopped ({self.role.value})")

    def destroy(self) -> None:
        """
        Release training state.

        A receiver first hands its reply artifacts back to the sender. Only a
        pipeline destroy failure is raised; other errors are logged.
        """
        if self.role == TrainingRole.RECEIVER and self.reply_data:
            self._send_replies()

        self.detector.cancel()
        self._release_pipeline()

        self.transfer_data.clear()
        self.reply_data.clear()
        self.sender_pipeline = None
        logger.debug("Training offloading destroyed")

    def _release_pipeline(self) -> None:
        if self.pipeline is None:
            return
        pipeline = self.pipeline
        self.pipeline = None
        if pipeline.state == PipelineState.PLAYING:
            try:
                pipeline.stop()
            except EdgeMLException as e:
                logger.error(f"Failed to stop training pipeline: {e}")
        pipeline.destroy()

    def _send_replies(self) -> None:
        root = self.path
        for tag, template in self.reply_data.items():
            file_path = resolve_placeholder(template, self.config.receiver_placeholder, root)
            if not os.path.isfile(file_path):
                logger.warning(f"Reply artifact '{tag}' not found at {file_path}, skipping")
                continue
            try:
                data = self._read_file(file_path)
                self.service.request(tag, data, extra_metadata={META_TRANSFER_TAG: tag})
                logger.info(f"Sent reply '{tag}' ({len(data)} bytes)")
            except EdgeMLException as e:
                logger.error(f"Failed to send reply '{tag}': {e}")

    @staticmethod
    def _read_file(path: str) -> bytes:
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise TransferIOError(f"Failed to read {path}: {e}", context={'path': path}) from e

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def process_received(self, message: 'EdgeMessage', service_type: ServiceType) -> bool:
        """
        Inspect an inbound message before it is installed.

        Returns False when the dispatcher should drop the message.
        """
        if self.role != TrainingRole.RECEIVER or service_type == ServiceType.REPLY:
            return True

        tag = message.get(META_TRANSFER_TAG) or message.get(META_SERVICE_KEY)

        if self.detector.has_sentinel:
            logger.warning(f"Dropping '{tag}': it arrived after the receiver pipeline")
            return False

        return True

    def mark_arrived(self, message: 'EdgeMessage', service_type: ServiceType,
                     description: Optional[str] = None) -> None:
        """
        Record that a message was installed successfully.

        An installed receiver pipeline description becomes the sentinel.
        """
        if self.role != TrainingRole.RECEIVER or service_type == ServiceType.REPLY:
            return

        tag = message.get(META_TRANSFER_TAG) or message.get(META_SERVICE_KEY)
        self.detector.mark_arrived(message.get(META_TRANSFER_TAG), message.get(META_SERVICE_KEY))

        if service_type == ServiceType.PIPELINE_RAW:
            if not description:
                logger.warning(f"Ignoring empty receiver pipeline '{tag}'")
                return
            self.detector.set_sentinel(description)
            logger.info(f"Received receiver pipeline '{tag}'")
