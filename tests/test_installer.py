"""
Tests for the model/pipeline stores and the installer.
"""
import pytest

from edgeml.core.exceptions import InvalidParameterError, ServiceNotFoundError, TransferIOError
from edgeml.runtime.installer import Installer
from edgeml.runtime.stores import LocalModelStore, LocalPipelineStore


class TestLocalModelStore:
    """Versioning and activation."""

    def test_versions_start_at_one(self):
        store = LocalModelStore()
        assert store.register("mobilenet", "/models/a.tflite") == 1
        assert store.register("mobilenet", "/models/b.tflite") == 2
        assert store.register("yolo", "/models/y.tflite") == 1

    def test_activation_deactivates_older_versions(self):
        store = LocalModelStore()
        store.register("m", "/a", activate=True)
        store.register("m", "/b", activate=True)

        assert store.get_activated("m").path == "/b"
        assert [info.activated for info in store.list("m")] == [False, True]

    def test_activate_specific_version(self):
        store = LocalModelStore()
        store.register("m", "/a", activate=True)
        store.register("m", "/b")
        store.activate("m", 2)

        assert store.get_activated("m").version == 2
        with pytest.raises(ServiceNotFoundError):
            store.activate("m", 7)

    def test_no_activated_version(self):
        store = LocalModelStore()
        store.register("m", "/a")
        with pytest.raises(ServiceNotFoundError):
            store.get_activated("m")


class TestLocalPipelineStore:
    """Key -> description."""

    def test_set_get_delete(self):
        store = LocalPipelineStore()
        store.set("detect", "appsrc ! tensor_sink")
        assert store.get("detect") == "appsrc ! tensor_sink"

        store.delete("detect")
        with pytest.raises(ServiceNotFoundError):
            store.get("detect")

    def test_empty_description_rejected(self):
        with pytest.raises(InvalidParameterError):
            LocalPipelineStore().set("detect", "")


class TestInstaller:
    """Writing models to disk."""

    def test_install_model(self, tmp_path):
        installer = Installer()
        path, version = installer.install_model(
            "mobilenet", str(tmp_path), "mobilenet.tflite", b"\x01\x02", activate="TRUE", description="v2"
        )

        assert path == str(tmp_path / "mobilenet.tflite")
        assert (tmp_path / "mobilenet.tflite").read_bytes() == b"\x01\x02"
        assert version == 1
        info = installer.model_store.get_activated("mobilenet")
        assert info.description == "v2"

    def test_name_stays_inside_install_dir(self, tmp_path):
        path, _ = Installer().install_model("m", str(tmp_path), "../escape.bin", b"x")
        assert path == str(tmp_path / "escape.bin")

    def test_missing_name(self, tmp_path):
        with pytest.raises(InvalidParameterError):
            Installer().install_model("m", str(tmp_path), None, b"x")

    def test_write_failure(self, tmp_path):
        with pytest.raises(TransferIOError):
            Installer().install_model("m", str(tmp_path / "no-such-dir"), "m.bin", b"x")

    def test_install_pipeline(self):
        installer = Installer()
        installer.install_pipeline("detect", "appsrc ! tensor_sink")
        assert installer.pipeline_store.get("detect") == "appsrc ! tensor_sink"
