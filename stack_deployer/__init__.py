"""
Open WebUI Stack Deployer
=========================

Deploys and reconfigures a self-hosted chat stack (nginx, Open WebUI and
Ollama) on a single Docker host.

Features:
- Hardware detection and model recommendations
- Model compatibility checks against RAM, VRAM and disk
- nginx and docker compose generation for HTTP or HTTPS
- Self-signed certificates for HTTPS mode
- In-place HTTP <-> HTTPS transitions that keep data volumes
- Readiness verification and model installation

License: MIT
"""

__version__ = "1.0.0"

from .config import DeploymentMode, GpuConfig, CertificateParams, InstallConfig
from .core import DeployAction, TransitionOrchestrator, TransitionPlan, TransitionResult, plan
from .generator import ConfigArtifacts, ConfigGenerator
from .hardware import HardwareProfile, HardwareProfiler
from .health import HealthChecker, ProbeOutcome
from .models import CompatibilityReport, ModelManager, evaluate, recommend_tier
from .services import ServiceManager
from .state import DeploymentState, DeploymentStateDetector, HostState

__all__ = [
    "DeploymentMode",
    "GpuConfig",
    "CertificateParams",
    "InstallConfig",
    "DeployAction",
    "TransitionOrchestrator",
    "TransitionPlan",
    "TransitionResult",
    "plan",
    "ConfigArtifacts",
    "ConfigGenerator",
    "HardwareProfile",
    "HardwareProfiler",
    "HealthChecker",
    "ProbeOutcome",
    "CompatibilityReport",
    "ModelManager",
    "evaluate",
    "recommend_tier",
    "ServiceManager",
    "DeploymentState",
    "DeploymentStateDetector",
    "HostState",
]
