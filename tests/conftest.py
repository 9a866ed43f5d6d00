"""
Pytest configuration and shared fixtures for stack deployer tests.

Provides hardware profiles, a fake docker compose runner and a factory for
orchestrators that run entirely inside tmp_path.
"""

import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stack_deployer.config import STACK_SERVICES, DeploymentMode, GpuConfig, InstallConfig
from stack_deployer.core import TransitionOrchestrator
from stack_deployer.hardware import HardwareProfile
from stack_deployer.health import ProbeOutcome, VerificationReport
from stack_deployer.services import ServiceInfo, ServiceStatus


# =============================================================================
# Hardware Fixtures
# =============================================================================

@pytest.fixture
def cpu_only_8gb():
    """8GB RAM, no GPU."""
    return HardwareProfile(ram_gb=8, disk_free_gb=100, gpu_present=False, gpu_vram_gb=0,
                           gpu_name="None", primary_ip="192.168.1.20")


@pytest.fixture
def gpu_24gb():
    """Workstation with a 24GB NVIDIA card."""
    return HardwareProfile(ram_gb=64, disk_free_gb=500, gpu_present=True, gpu_vram_gb=24,
                           gpu_name="NVIDIA GeForce RTX 4090", primary_ip="10.0.0.5")


@pytest.fixture
def gpu_unknown_vram():
    """GPU visible on the PCI bus, nvidia-smi not installed yet."""
    return HardwareProfile(ram_gb=16, disk_free_gb=100, gpu_present=True, gpu_vram_gb=None,
                           gpu_name="NVIDIA Corporation GA102", primary_ip="10.0.0.5")


# =============================================================================
# Docker Fakes
# =============================================================================

class FakeServiceManager:
    """Records docker compose calls instead of running them."""

    def __init__(self):
        self.calls: List[str] = []
        self.running = False
        self.fail_on: Optional[str] = None
        self.docker_available = True

    def _record(self, name: str):
        self.calls.append(name)
        if self.fail_on == name:
            raise subprocess.CalledProcessError(1, ["docker", "compose", name], stderr="boom")

    def ensure_docker(self):
        if not self.docker_available:
            raise RuntimeError("Docker is not running or not installed")

    def pull(self):
        self._record("pull")

    def up(self, pull_images: bool = True):
        self._record("up" if pull_images else "up --pull never")
        self.running = True

    def restart(self, service_name: str):
        self._record(f"restart {service_name}")

    def stop(self) -> bool:
        self.calls.append("stop")
        self.running = False
        return True

    def get_all_services(self) -> Dict[str, ServiceInfo]:
        status = ServiceStatus.RUNNING if self.running else ServiceStatus.MISSING
        return {name: ServiceInfo(name, status) for name in STACK_SERVICES}

    def existing_services(self) -> List[str]:
        return list(STACK_SERVICES) if self.running else []

    def any_running(self) -> bool:
        return self.running


class FakeHealthChecker:
    """Reports every service ready unless told otherwise."""

    def __init__(self, outcome: ProbeOutcome = ProbeOutcome.READY):
        self.outcome = outcome
        self.verified = 0

    def verify(self, targets) -> VerificationReport:
        self.verified += 1
        report = VerificationReport()
        for target in targets:
            report.outcomes[target.service_name] = self.outcome
            if self.outcome == ProbeOutcome.TIMEOUT:
                report.warnings.append(f"{target.service_name} did not become ready")
        return report


@pytest.fixture
def fake_services():
    return FakeServiceManager()


@pytest.fixture
def fake_health():
    return FakeHealthChecker()


# =============================================================================
# Config / Orchestrator Fixtures
# =============================================================================

@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "openwebui-stack"


@pytest.fixture
def make_config(base_dir):
    """Build an InstallConfig rooted in tmp_path."""
    def _make(**kwargs) -> InstallConfig:
        values = {
            "mode": DeploymentMode.SIMPLE,
            "domain": "10.0.0.5",
            "gpu": GpuConfig(),
            "base_dir": base_dir,
        }
        values.update(kwargs)
        return InstallConfig(**values)
    return _make


@pytest.fixture
def make_orchestrator(fake_services, fake_health, monkeypatch):
    """Orchestrator with real generators and fake docker/health."""
    # Never chown files of the test run
    monkeypatch.setattr("stack_deployer.core.os.geteuid", lambda: 1000)

    def _make(config: InstallConfig) -> TransitionOrchestrator:
        return TransitionOrchestrator(
            config,
            service_manager=fake_services,
            health_checker=fake_health,
        )
    return _make
