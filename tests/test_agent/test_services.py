"""Tests for ServiceDetector — plugin matching over the container list."""

from __future__ import annotations

from src.agent.services import ServiceDetector
from src.core.types import ContainerSnapshot, ContainerStatus, ServiceStatus
from src.plugins.credentials import InMemoryCredentialStore
from src.plugins.factory import create_plugin_registry


def _container(cid: str, image: str, status: ContainerStatus = ContainerStatus.RUNNING) -> ContainerSnapshot:
    return ContainerSnapshot(id=cid, name=f"c-{cid}", image=image, status=status)


class TestDetect:
    def test_unmatched_images_are_ignored(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        assert detector.detect([_container("a", "postgres:16")]) == []

    def test_running_n8n_detected(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        services = detector.detect([_container("a", "n8nio/n8n:1.40")])
        assert len(services) == 1
        svc = services[0]
        assert svc.plugin_id == "n8n"
        assert svc.status == ServiceStatus.RUNNING
        assert svc.stats["containerId"] == "a"
        assert svc.error is None
        labels = [item.label for item in svc.summary]
        assert "Container" in labels
        assert "Port" in labels

    def test_stopped_container_reports_stopped(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        services = detector.detect([_container("a", "n8nio/n8n", ContainerStatus.STOPPED)])
        assert services[0].status == ServiceStatus.STOPPED
        assert services[0].error == "c-a is stopped"

    def test_running_container_preferred(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        services = detector.detect([
            _container("old", "n8nio/n8n", ContainerStatus.STOPPED),
            _container("new", "n8nio/n8n"),
        ])
        assert len(services) == 1
        assert services[0].stats["containerId"] == "new"

    def test_configured_when_credential_present(self) -> None:
        credentials = InMemoryCredentialStore({"n8n-apikey-srv": "key"})
        detector = ServiceDetector(create_plugin_registry(), credentials, server_id="srv")
        services = detector.detect([_container("a", "n8nio/n8n")])
        assert services[0].stats["configured"] is True

    def test_unconfigured_without_store(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        services = detector.detect([_container("a", "n8nio/n8n")])
        assert services[0].stats["configured"] is False

    def test_wire_shape(self) -> None:
        detector = ServiceDetector(create_plugin_registry())
        wire = detector.detect([_container("a", "n8nio/n8n")])[0].to_wire()
        assert wire["pluginId"] == "n8n"
        assert wire["status"] == "running"
        assert {"label", "value", "type"} <= set(wire["summary"][0])
