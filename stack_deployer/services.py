"""
Service management for the three containers of the stack.

Handles:
- Running docker compose against the generated topology
- Full deploys, topology re-application and proxy restarts
- Stopping the stack on rollback
- Container status queries
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .config import STACK_SERVICES

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    """Service status states."""
    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    RESTARTING = "restarting"
    MISSING = "missing"
    UNKNOWN = "unknown"


@dataclass
class ServiceInfo:
    """Container state as reported by docker inspect."""
    name: str
    status: ServiceStatus
    image: str = ""
    health: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.status not in (ServiceStatus.MISSING, ServiceStatus.UNKNOWN)


class ServiceManager:
    """
    Runs docker compose for one installation directory.

    Commands that change the stack raise subprocess.CalledProcessError on
    failure; the caller decides how to roll back.
    """

    def __init__(self, base_dir: Path, project_name: Optional[str] = None,
                 services: tuple = STACK_SERVICES):
        self.base_dir = Path(base_dir)
        self.project_name = project_name
        self.services = services

    @property
    def compose_file(self) -> Path:
        return self.base_dir / "docker-compose.yml"

    def ensure_docker(self):
        """Verify Docker is available and running."""
        try:
            subprocess.run(["docker", "info"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            raise RuntimeError("Docker is not running or not installed")

    def _run_compose(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a docker compose command in the installation directory."""
        cmd = ["docker", "compose", "-f", str(self.compose_file)]
        if self.project_name:
            cmd.extend(["-p", self.project_name])
        cmd.extend(args)
        logger.debug(f"Running: {' '.join(cmd)}")
        return subprocess.run(cmd, cwd=self.base_dir, capture_output=True, text=True, check=check)

    def pull(self):
        """Fetch all images of the topology."""
        logger.info("Pulling Docker images (this may take several minutes)...")
        self._run_compose("pull")
        logger.info("Docker images pulled successfully")

    def up(self, pull_images: bool = True):
        """
        Create or update containers to match the topology.

        With pull_images=False no image is fetched; containers whose
        definition changed are recreated and named volumes are kept.
        """
        args = ["up", "-d"]
        if not pull_images:
            args.extend(["--pull", "never"])
        self._run_compose(*args)
        logger.info("Services started")

    def restart(self, service_name: str):
        """Restart one service without recreating it."""
        self._run_compose("restart", service_name)
        logger.info(f"Restarted service: {service_name}")

    def stop(self) -> bool:
        """Stop all containers, keeping containers, networks and volumes."""
        result = self._run_compose("stop", check=False)
        if result.returncode == 0:
            logger.info("All services stopped")
            return True
        logger.error(f"Failed to stop services: {result.stderr.strip()}")
        return False

    def get_info(self, service_name: str) -> ServiceInfo:
        """Get the status of a container."""
        try:
            result = subprocess.run(
                ["docker", "inspect", service_name],
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            return ServiceInfo(service_name, ServiceStatus.UNKNOWN)

        if result.returncode != 0:
            return ServiceInfo(service_name, ServiceStatus.MISSING)

        try:
            data = json.loads(result.stdout)[0]
        except (json.JSONDecodeError, IndexError, TypeError) as e:
            logger.warning(f"Error parsing container info: {e}")
            return ServiceInfo(service_name, ServiceStatus.UNKNOWN)

        state = data.get("State", {})
        status_map = {
            "running": ServiceStatus.RUNNING,
            "exited": ServiceStatus.STOPPED,
            "created": ServiceStatus.STOPPED,
            "paused": ServiceStatus.STOPPED,
            "restarting": ServiceStatus.RESTARTING,
        }
        return ServiceInfo(
            name=service_name,
            status=status_map.get(state.get("Status", ""), ServiceStatus.UNKNOWN),
            image=data.get("Config", {}).get("Image", ""),
            health=state.get("Health", {}).get("Status"),
        )

    def get_all_services(self) -> Dict[str, ServiceInfo]:
        """Get information about the stack's containers."""
        return {name: self.get_info(name) for name in self.services}

    def existing_services(self) -> List[str]:
        return [name for name, info in self.get_all_services().items() if info.exists]

    def any_running(self) -> bool:
        return any(
            info.status == ServiceStatus.RUNNING
            for info in self.get_all_services().values()
        )
