"""
Unit tests for existing-installation detection.
"""

import pytest
import yaml

from stack_deployer.config import DeploymentMode, GpuConfig, StackPaths
from stack_deployer.generator import generate_topology_dict, generate_topology_spec
from stack_deployer.state import DeploymentStateDetector, HostState, classify_topology


@pytest.fixture
def paths(tmp_path):
    return StackPaths(tmp_path)


@pytest.fixture
def detector(paths, fake_services):
    return DeploymentStateDetector(paths, fake_services)


def write_certs(paths: StackPaths):
    paths.ssl_dir.mkdir(parents=True, exist_ok=True)
    paths.certificate.write_text("cert")
    paths.private_key.write_text("key")


class TestClassifyTopology:
    """Test mode inference from compose documents."""

    @pytest.mark.parametrize("mode, expected", [
        (DeploymentMode.SIMPLE, HostState.EXISTING_SIMPLE),
        (DeploymentMode.ADVANCED, HostState.EXISTING_ADVANCED),
    ])
    def test_generated_topologies(self, mode, expected):
        topology = generate_topology_dict(mode, GpuConfig(), False)
        assert classify_topology(topology).host_state == expected

    def test_tls_port_without_mount_is_ambiguous(self):
        topology = generate_topology_dict(DeploymentMode.SIMPLE, GpuConfig(), False)
        topology["services"]["nginx"]["ports"].append("0.0.0.0:443:443/tcp")
        state = classify_topology(topology)
        assert state.host_state == HostState.AMBIGUOUS
        assert "TLS port" in state.reason

    def test_mount_without_tls_port_is_ambiguous(self):
        topology = generate_topology_dict(DeploymentMode.SIMPLE, GpuConfig(), False)
        topology["services"]["nginx"]["volumes"].append("./ssl:/etc/nginx/ssl:ro")
        assert classify_topology(topology).host_state == HostState.AMBIGUOUS

    def test_long_syntax_ports_and_volumes(self):
        topology = {"services": {"nginx": {
            "ports": [{"target": 80, "published": 80}, {"target": 443, "published": 443}],
            "volumes": [{"type": "bind", "source": "./ssl", "target": "/etc/nginx/ssl/"}],
        }}}
        assert classify_topology(topology).mode == DeploymentMode.ADVANCED

    @pytest.mark.parametrize("topology", [None, "text", [], {"services": {}}, {"services": {"nginx": "x"}}])
    def test_unusable_documents(self, topology):
        assert classify_topology(topology).host_state == HostState.AMBIGUOUS


class TestDetector:
    """Test detection against the install directory."""

    def test_fresh(self, detector):
        state = detector.detect()
        assert state.host_state == HostState.FRESH
        assert state.is_fresh
        assert not state.has_cert_material

    def test_certificates_alone_stay_fresh(self, detector, paths):
        write_certs(paths)
        state = detector.detect()
        assert state.host_state == HostState.FRESH
        assert state.has_cert_material

    def test_stale_certificates_with_simple_topology(self, detector, paths):
        write_certs(paths)
        paths.compose_file.write_text(generate_topology_spec(DeploymentMode.SIMPLE, GpuConfig(), False))
        state = detector.detect()
        assert state.host_state == HostState.EXISTING_SIMPLE
        assert state.has_cert_material

    def test_advanced(self, detector, paths, fake_services):
        write_certs(paths)
        paths.compose_file.write_text(generate_topology_spec(DeploymentMode.ADVANCED, GpuConfig(), False))
        fake_services.running = True
        state = detector.detect()
        assert state.host_state == HostState.EXISTING_ADVANCED
        assert state.services_running

    def test_containers_without_compose_file(self, detector, fake_services):
        fake_services.running = True
        state = detector.detect()
        assert state.host_state == HostState.AMBIGUOUS
        assert "docker-compose.yml" in state.reason

    def test_unparseable_compose_file(self, detector, paths):
        paths.compose_file.write_text("services: [unclosed\n")
        assert detector.detect().host_state == HostState.AMBIGUOUS

    def test_compose_file_from_elsewhere(self, detector, paths):
        paths.compose_file.write_text(yaml.safe_dump({"services": {"web": {"image": "nginx"}}}))
        state = detector.detect()
        assert state.host_state == HostState.AMBIGUOUS
        assert "nginx" in state.reason
