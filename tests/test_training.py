"""
Tests for training offloading: completion detection, sender/receiver
handshake and reply handover.

End-to-end tests run a sender and a receiver in one process over
LocalTransport. Placeholders are @SENDER@ / @RECEIVER@.
"""
import json
import threading
import time

import pytest

from edgeml.core.events import ServiceEvent
from edgeml.core.exceptions import CompletionTimeoutError, InvalidParameterError
from edgeml.core.types import ConnectType, EdgeEndpointConfig, NodeType, ServiceType
from edgeml.runtime.offloading import OffloadingService
from edgeml.runtime.pipeline import PipelineState
from edgeml.runtime.training import CompletionDetector
from edgeml.transport import EdgeMessage, LocalTransport

from conftest import EventRecorder, FakeTransport

RECEIVER_PIPELINE = "tensor_trainer model-config=@RECEIVER@/model.json epochs=2 ! tensor_sink name=out"
SENDER_PIPELINE = "datareposrc location=@SENDER@/train.bin ! tensor_query_client name=out"

TRANSFER = {
    "cfg": "@SENDER@/model.json",
    "data": "@SENDER@/train.bin",
    "pipe": RECEIVER_PIPELINE,
}

SENDER_SERVICES = {
    "cfg": {"service-type": "model_raw", "service-key": "cfg", "name": "model.json"},
    "data": {"service-type": "model_raw", "service-key": "data", "name": "train.bin"},
    "pipe": {"service-type": "pipeline_raw", "service-key": "pipe"},
}

RECEIVER_SERVICES = {
    "trained": {"service-type": "reply", "service-key": "trained", "name": "trained.bin", "activate": "true"},
}


@pytest.fixture(autouse=True)
def short_placeholders(edgeml_config):
    edgeml_config.training.sender_placeholder = "@SENDER@"
    edgeml_config.training.receiver_placeholder = "@RECEIVER@"
    return edgeml_config


def _node(hub, node_type, topic, root, services, training=None):
    offloading = {"node-type": node_type, "connect-type": "local", "topic": topic, "path": str(root)}
    if training is not None:
        offloading["training"] = training
    endpoint = EdgeEndpointConfig.from_options(offloading)
    return OffloadingService.from_config(
        {"offloading": offloading, "services": services},
        transport=LocalTransport(endpoint, hub=hub),
    )


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def sender_files(sender_root):
    (sender_root / "model.json").write_text('{"layers": 3}')
    (sender_root / "train.bin").write_bytes(bytes(range(256)) * 4)
    return sender_root


# ============================================================================
# CompletionDetector
# ============================================================================

class TestCompletionDetector:
    """Monitor semantics."""

    def test_completes_when_sentinel_and_tags_arrive(self):
        detector = CompletionDetector({"cfg", "data"})

        def deliver():
            time.sleep(0.05)
            detector.mark_arrived("cfg")
            detector.mark_arrived("data")
            detector.set_sentinel("pipeline")

        threading.Thread(target=deliver).start()
        assert detector.wait(5.0)
        assert detector.sentinel == "pipeline"

    def test_sentinel_alone_is_not_enough(self):
        detector = CompletionDetector({"cfg"})
        detector.set_sentinel("pipeline")

        assert not detector.wait(0.05)
        assert detector.missing() == {"cfg"}

    def test_timeout_is_bounded(self):
        detector = CompletionDetector()
        start = time.monotonic()
        assert not detector.wait(0.1)
        assert time.monotonic() - start < 2.0

    def test_first_sentinel_wins(self):
        detector = CompletionDetector()
        assert detector.set_sentinel("first")
        assert not detector.set_sentinel("second")
        assert detector.sentinel == "first"

    def test_cancel_releases_waiter(self):
        detector = CompletionDetector({"cfg"})
        threading.Timer(0.05, detector.cancel).start()
        assert not detector.wait(5.0)


# ============================================================================
# Configuration and sender validation (FakeTransport)
# ============================================================================

def _sender_service(transport, root, training):
    endpoint = EdgeEndpointConfig(connect_type=ConnectType.LOCAL, node_type=NodeType.QUERY_CLIENT)
    service = OffloadingService(
        endpoint,
        path=str(root) if root else None,
        transport=transport,
        training={"node-type": "sender", "training": training},
    )
    for key, descriptor in SENDER_SERVICES.items():
        service.set_service(key, json.dumps(descriptor))
    return service


class TestTrainingConfiguration:
    """Option validation."""

    @pytest.mark.parametrize("options", [
        {"node-type": "observer", "training": {"transfer-data": TRANSFER}},
        {"node-type": "sender", "training": {"transfer-data": TRANSFER}},
        {"node-type": "receiver", "training": {}},
        {"node-type": "receiver", "training": {"transfer-data": {"cfg": ""}}},
        {"node-type": "receiver", "training": {"transfer-data": TRANSFER, "time-limit": "soon"}},
        {"node-type": "receiver"},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(InvalidParameterError):
            OffloadingService(FakeTransport().endpoint, transport=FakeTransport(), training=options)

    def test_time_limit_default_and_override(self, edgeml_config):
        edgeml_config.training.completion_timeout = 4.0
        plain = OffloadingService(
            FakeTransport().endpoint, transport=FakeTransport(),
            training={"node-type": "receiver", "training": {"transfer-data": TRANSFER}},
        )
        custom = OffloadingService(
            FakeTransport().endpoint, transport=FakeTransport(),
            training={"node-type": "receiver", "training": {"transfer-data": TRANSFER, "time-limit": 0.5}},
        )
        try:
            assert plain.training.time_limit == 4.0
            assert custom.training.time_limit == 0.5
        finally:
            plain.destroy()
            custom.destroy()


class TestSender:
    """Sender start ordering and validation."""

    def test_pipeline_entry_sent_last(self, sender_files):
        transport = FakeTransport()
        # Pipeline entry listed first on purpose
        training = {
            "sender-pipeline": SENDER_PIPELINE,
            "transfer-data": {"pipe": RECEIVER_PIPELINE, "cfg": TRANSFER["cfg"], "data": TRANSFER["data"]},
        }
        service = _sender_service(transport, sender_files, training)
        try:
            service.start()

            tags = [m.metadata["transfer-tag"] for m in transport.sent]
            assert tags == ["cfg", "data", "pipe"]
            assert transport.sent[0].payload == b'{"layers": 3}'
            assert transport.sent[-1].payload == RECEIVER_PIPELINE.encode() + b"\x00"
            assert transport.sent[-1].metadata["service-type"] == "pipeline_raw"

            pipeline = service.training.pipeline
            assert pipeline.description == SENDER_PIPELINE.replace("@SENDER@", str(sender_files))
            assert pipeline.state == PipelineState.PLAYING
        finally:
            service.destroy()

    def test_restart_replaces_pipeline(self, sender_files):
        service = _sender_service(FakeTransport(), sender_files,
                                  {"sender-pipeline": SENDER_PIPELINE, "transfer-data": TRANSFER})
        try:
            service.start()
            first = service.training.pipeline
            service.stop()
            service.start()
            second = service.training.pipeline

            assert first is not second
            assert first.state == PipelineState.DESTROYED
            assert second.state == PipelineState.PLAYING
            assert service.pipeline_engine.pipelines == [second]
        finally:
            service.destroy()

        assert second.state == PipelineState.DESTROYED

    def test_two_pipeline_entries_rejected(self, sender_files):
        transport = FakeTransport()
        training = {
            "sender-pipeline": SENDER_PIPELINE,
            "transfer-data": dict(TRANSFER, extra="@RECEIVER@/other.pipeline"),
        }
        service = _sender_service(transport, sender_files, training)
        try:
            with pytest.raises(InvalidParameterError):
                service.start()
            assert transport.sent == []
        finally:
            service.destroy()

    def test_entry_without_placeholder_rejected(self, sender_files):
        transport = FakeTransport()
        training = {
            "sender-pipeline": SENDER_PIPELINE,
            "transfer-data": dict(TRANSFER, data="/absolute/train.bin"),
        }
        service = _sender_service(transport, sender_files, training)
        try:
            with pytest.raises(InvalidParameterError):
                service.start()
            assert transport.sent == []
        finally:
            service.destroy()

    def test_writable_root_required(self):
        service = _sender_service(FakeTransport(), None, {"sender-pipeline": SENDER_PIPELINE, "transfer-data": TRANSFER})
        try:
            with pytest.raises(InvalidParameterError):
                service.start()
        finally:
            service.destroy()


@pytest.fixture
def receiver(receiver_root, recorder):
    transport = FakeTransport()
    service = OffloadingService(
        transport.endpoint, path=str(receiver_root), transport=transport,
        training={"node-type": "receiver", "training": {"transfer-data": TRANSFER}},
    )
    service.set_event_callback(recorder)
    yield service, transport
    service.destroy()


class TestReceiverDispatch:
    """Receiver-side filtering and sentinel handling."""

    def test_late_items_dropped(self, receiver, recorder, receiver_root):
        service, transport = receiver
        transport.inject({"service-type": "pipeline_raw", "service-key": "pipe", "transfer-tag": "pipe"}, b"p\x00")
        assert service.training.receiver_pipeline == "p"

        transport.inject({"service-type": "model_raw", "service-key": "cfg", "transfer-tag": "cfg",
                          "name": "model.json"}, b"c")
        transport.inject({"service-type": "reply", "service-key": "r"}, b"r")

        assert recorder.of(ServiceEvent.MODEL_REGISTERED) == []
        assert not (receiver_root / "model.json").exists()
        assert recorder.of(ServiceEvent.REPLY)[0].data == b"r"

    def test_undecodable_pipeline_reported(self, receiver, recorder):
        service, transport = receiver
        transport.inject({"service-type": "pipeline_raw", "service-key": "pipe"}, b"\xff\xfe bad")

        error = recorder.of(ServiceEvent.ERROR)[0]
        assert error.service_key == "pipe"
        assert isinstance(error.error, UnicodeDecodeError)
        assert not service.training.detector.has_sentinel

    def test_empty_pipeline_does_not_block_later_items(self, receiver, recorder, receiver_root):
        service, transport = receiver
        transport.inject({"service-type": "pipeline_raw", "service-key": "pipe"}, b"")
        transport.inject({"service-type": "pipeline_raw", "service-key": "pipe"}, b"\x00")

        assert len(recorder.of(ServiceEvent.ERROR)) == 2
        assert service.training.receiver_pipeline is None

        transport.inject({"service-type": "model_raw", "service-key": "cfg", "transfer-tag": "cfg",
                          "name": "model.json"}, b"{}")

        assert recorder.of(ServiceEvent.MODEL_REGISTERED)[0].service_key == "cfg"
        assert (receiver_root / "model.json").read_bytes() == b"{}"
        assert service.training.detector.missing() == {"data"}


class TestReplyInstall:
    """Replies arriving at a training sender."""

    def test_install_failure_still_delivers_reply(self, sender_files, recorder):
        service = _sender_service(FakeTransport(), sender_files,
                                  {"sender-pipeline": SENDER_PIPELINE, "transfer-data": TRANSFER})
        service.set_event_callback(recorder)
        try:
            # No file name: the artifact cannot be installed
            service.session.transport.inject({"service-type": "reply", "service-key": "trained"}, b"weights")

            assert [event for event, _ in recorder.events] == [ServiceEvent.ERROR, ServiceEvent.REPLY]
            assert isinstance(recorder.of(ServiceEvent.ERROR)[0].error, InvalidParameterError)
            reply = recorder.of(ServiceEvent.REPLY)[0]
            assert reply.data == b"weights"
            assert reply.path is None
        finally:
            service.destroy()


# ============================================================================
# End to end
# ============================================================================

@pytest.mark.integration
class TestEndToEnd:
    """Sender and receiver over LocalTransport."""

    def test_training_handshake_and_reply(self, local_hub, sender_files, receiver_root, recorder):
        training = {"sender-pipeline": SENDER_PIPELINE, "transfer-data": TRANSFER, "time-limit": 5,
                    "reply-data": {"trained": "@RECEIVER@/trained.bin"}}
        receiver = _node(local_hub, "receiver", "train", receiver_root, RECEIVER_SERVICES, training)
        sender = _node(local_hub, "sender", "train", sender_files, SENDER_SERVICES, training)
        receiver.set_event_callback(recorder)
        sender_events = EventRecorder()
        sender.set_event_callback(sender_events)

        errors = []

        def run_receiver():
            try:
                receiver.start()
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        waiter = threading.Thread(target=run_receiver)
        waiter.start()
        try:
            sender.start()
            waiter.join(timeout=10)

            assert not waiter.is_alive()
            assert errors == []

            # Files landed under the receiver's root
            assert (receiver_root / "model.json").read_text() == '{"layers": 3}'
            assert (receiver_root / "train.bin").read_bytes() == (sender_files / "train.bin").read_bytes()
            assert len(recorder.of(ServiceEvent.MODEL_REGISTERED)) == 2
            assert recorder.wait_for(ServiceEvent.PIPELINE_REGISTERED)

            # The receiver launched its pipeline with its own root substituted
            pipeline = receiver.training.pipeline
            assert pipeline.state == PipelineState.PLAYING
            assert pipeline.description == RECEIVER_PIPELINE.replace("@RECEIVER@", str(receiver_root))
            assert sender.training.pipeline.state == PipelineState.PLAYING

            receiver.stop()
            assert pipeline.state == PipelineState.STOPPED

            # Trained artifact is handed back on destroy
            (receiver_root / "trained.bin").write_bytes(b"trained-weights")
            receiver.destroy()

            reply = sender_events.wait_for(ServiceEvent.REPLY)[0]
            assert reply.data == b"trained-weights"
            assert reply.path == str(sender_files / "trained.bin")
            assert sender.installer.model_store.get_activated("trained").version == 1
        finally:
            receiver.destroy()
            sender.destroy()

    def test_sentinel_first_times_out(self, local_hub, sender_files, receiver_root, recorder):
        training = {"transfer-data": TRANSFER, "time-limit": 0.3}
        receiver = _node(local_hub, "receiver", "early", receiver_root, {}, training)
        receiver.set_event_callback(recorder)
        # A plain node plays the sender and sends only the pipeline
        services = dict(SENDER_SERVICES, ack={"service-type": "reply", "service-key": "ack", "name": "ack.bin"})
        sender = _node(local_hub, "sender", "early", sender_files, services)
        try:
            sender.request("pipe", RECEIVER_PIPELINE.encode() + b"\x00", extra_metadata={"transfer-tag": "pipe"})
            assert _wait_until(lambda: receiver.training.receiver_pipeline is not None)

            start = time.monotonic()
            with pytest.raises(CompletionTimeoutError):
                receiver.start()
            assert time.monotonic() - start < 3.0
            assert receiver.training.pipeline is None

            # Files arriving after the sentinel are dropped
            sender.request("cfg", b"late", extra_metadata={"transfer-tag": "cfg"})
            sender.request("ack", b"ok")
            assert recorder.wait_for(ServiceEvent.REPLY)
            assert recorder.of(ServiceEvent.MODEL_REGISTERED) == []
            assert not (receiver_root / "model.json").exists()
        finally:
            sender.destroy()
            receiver.destroy()

    def test_no_sentinel_times_out_within_bound(self, local_hub, receiver_root):
        receiver = _node(local_hub, "receiver", "silent", receiver_root, {},
                         {"transfer-data": TRANSFER, "time-limit": 0.2})
        try:
            start = time.monotonic()
            with pytest.raises(CompletionTimeoutError) as exc_info:
                receiver.start()
            elapsed = time.monotonic() - start

            assert 0.15 <= elapsed < 2.0
            assert sorted(exc_info.value.context['missing']) == ["cfg", "data"]
            assert receiver.training.pipeline is None
        finally:
            receiver.destroy()

    def test_pipeline_given_as_path(self, local_hub, sender_files, receiver_root):
        transfer = {"cfg": "@SENDER@/model.json", "data": "@SENDER@/train.bin", "pipe": "@RECEIVER@/run.pipeline"}
        training = {"sender-pipeline": SENDER_PIPELINE, "transfer-data": transfer}
        receiver = _node(local_hub, "receiver", "paths", receiver_root, {}, training)
        sender = _node(local_hub, "sender", "paths", sender_files, SENDER_SERVICES, training)
        try:
            sender.start()
            receiver.start()
            assert receiver.training.pipeline.description == f"{receiver_root}/run.pipeline"
        finally:
            sender.destroy()
            receiver.destroy()
