"""
Detection of an existing installation.

Classifies the install directory as fresh, an existing simple (HTTP)
install, an existing advanced (HTTPS) install, or ambiguous. The compose
file is the source of truth: certificate files on their own never make an
install count as advanced.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from .certificates import CertificateIssuer
from .config import HTTPS_PORT, PROXY_SERVICE, DeploymentMode, StackPaths
from .generator import NGINX_SSL_DIR
from .services import ServiceManager

logger = logging.getLogger(__name__)


class HostState(Enum):
    FRESH = "fresh"
    EXISTING_SIMPLE = "existing-simple"
    EXISTING_ADVANCED = "existing-advanced"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class DeploymentState:
    """What was found on the host."""
    mode: Optional[DeploymentMode]
    has_cert_material: bool = False
    services_running: bool = False
    ambiguous: bool = False
    reason: str = ""

    @property
    def host_state(self) -> HostState:
        if self.ambiguous:
            return HostState.AMBIGUOUS
        if self.mode is None:
            return HostState.FRESH
        if self.mode == DeploymentMode.ADVANCED:
            return HostState.EXISTING_ADVANCED
        return HostState.EXISTING_SIMPLE

    @property
    def is_fresh(self) -> bool:
        return self.host_state == HostState.FRESH


def _port_numbers(mapping: Any) -> List[int]:
    """Host and container ports of one compose port entry."""
    if isinstance(mapping, dict):
        values = [mapping.get("published"), mapping.get("target")]
    else:
        # "443:443", "0.0.0.0:443:443", "443:443/tcp", 443
        text = str(mapping).split("/")[0]
        values = text.split(":")[-2:]
    ports = []
    for value in values:
        try:
            ports.append(int(str(value).strip()))
        except (TypeError, ValueError):
            continue
    return ports


def _mount_target(volume: Any) -> str:
    if isinstance(volume, dict):
        return str(volume.get("target", "")).rstrip("/")
    parts = str(volume).split(":")
    return parts[1].rstrip("/") if len(parts) >= 2 else ""


def classify_topology(topology: Any) -> DeploymentState:
    """
    Infer the deployment mode from a parsed compose document.

    Advanced needs both markers: TLS port published and certificate
    directory mounted. One marker without the other is ambiguous.
    """
    if not isinstance(topology, dict):
        return DeploymentState(mode=None, ambiguous=True, reason="compose file is not a mapping")

    services = topology.get("services")
    if not isinstance(services, dict) or not isinstance(services.get(PROXY_SERVICE), dict):
        return DeploymentState(
            mode=None, ambiguous=True,
            reason=f"compose file has no '{PROXY_SERVICE}' service",
        )

    proxy: Dict[str, Any] = services[PROXY_SERVICE]
    tls_port = any(HTTPS_PORT in _port_numbers(p) for p in proxy.get("ports") or [])
    cert_mount = any(_mount_target(v) == NGINX_SSL_DIR for v in proxy.get("volumes") or [])

    if tls_port and cert_mount:
        return DeploymentState(mode=DeploymentMode.ADVANCED)
    if not tls_port and not cert_mount:
        return DeploymentState(mode=DeploymentMode.SIMPLE)
    marker = "TLS port without certificate mount" if tls_port else "certificate mount without TLS port"
    return DeploymentState(mode=None, ambiguous=True, reason=f"proxy has {marker}")


class DeploymentStateDetector:
    """Inspects an install directory and its containers."""

    def __init__(self, paths: StackPaths, service_manager: Optional[ServiceManager] = None):
        self.paths = paths
        self.service_manager = service_manager or ServiceManager(paths.base_dir)
        self.issuer = CertificateIssuer(paths)

    def detect(self) -> DeploymentState:
        has_certs = self.issuer.has_material()
        existing = self.service_manager.existing_services()
        running = self.service_manager.any_running()

        compose_path = self.paths.compose_file
        if not compose_path.exists():
            if existing:
                state = DeploymentState(
                    mode=None, has_cert_material=has_certs, services_running=running,
                    ambiguous=True,
                    reason=f"containers {', '.join(existing)} exist but {compose_path} is missing",
                )
            else:
                state = DeploymentState(mode=None, has_cert_material=has_certs)
            logger.info(f"Detected host state: {state.host_state.value}")
            return state

        try:
            topology = yaml.safe_load(compose_path.read_text())
        except (OSError, yaml.YAMLError) as e:
            state = DeploymentState(
                mode=None, has_cert_material=has_certs, services_running=running,
                ambiguous=True, reason=f"cannot parse {compose_path}: {e}",
            )
        else:
            classified = classify_topology(topology)
            state = DeploymentState(
                mode=classified.mode,
                has_cert_material=has_certs,
                services_running=running,
                ambiguous=classified.ambiguous,
                reason=classified.reason,
            )

        logger.info(f"Detected host state: {state.host_state.value}"
                    + (f" ({state.reason})" if state.reason else ""))
        return state
