"""
Artifact generation for the stack.

Handles:
- nginx virtual host configuration (HTTP or HTTPS with redirect)
- docker-compose topology for nginx, open-webui and ollama
- Writing both artifacts as one unit
- The .env secrets file
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from .config import (
    BACKEND_PORT,
    BACKEND_SERVICE,
    DEFAULT_PROJECT_NAME,
    HTTP_PORT,
    HTTPS_PORT,
    NETWORK_NAME,
    PROXY_SERVICE,
    UI_PORT,
    UI_SERVICE,
    DeploymentMode,
    GpuConfig,
    StackPaths,
    generate_secret,
    validate_domain,
)
from .exceptions import GenerationError

logger = logging.getLogger(__name__)

# Paths inside the nginx container
NGINX_CONF_TARGET = "/etc/nginx/conf.d/default.conf"
NGINX_SSL_DIR = "/etc/nginx/ssl"

# Named volumes; identical in every mode
VOLUMES = {
    BACKEND_SERVICE: "/root/.ollama",
    UI_SERVICE: "/app/backend/data",
}

PROXY_TIMEOUT_SECONDS = 180

_LOCATION_BLOCK = f"""\
    location / {{
        proxy_pass http://{UI_SERVICE}:{UI_PORT};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        # WebSocket support
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";

        # Timeouts for slow generation
        proxy_connect_timeout {PROXY_TIMEOUT_SECONDS}s;
        proxy_send_timeout {PROXY_TIMEOUT_SECONDS}s;
        proxy_read_timeout {PROXY_TIMEOUT_SECONDS}s;

        # Streamed token output
        proxy_buffering off;
        proxy_request_buffering off;
    }}
"""


@dataclass(frozen=True)
class ConfigArtifacts:
    """Generated documents; always produced and written as a pair."""
    proxy_config: str
    topology_spec: str


def generate_proxy_config(mode: DeploymentMode, domain: str) -> str:
    """Generate the nginx configuration for the open-webui virtual host."""
    validate_domain(domain)
    lines = [f"# Open WebUI reverse proxy for {domain} ({mode.value} mode)", ""]

    if mode == DeploymentMode.SIMPLE:
        lines += [
            "server {",
            f"    listen {HTTP_PORT};",
            "    server_name _;",
            "",
            _LOCATION_BLOCK + "}",
        ]
        return "\n".join(lines) + "\n"

    lines += [
        "server {",
        f"    listen {HTTPS_PORT} ssl;",
        f"    listen [::]:{HTTPS_PORT} ssl;",
        "    http2 on;",
        "    server_name _;",
        "",
        "    # SSL certificates",
        f"    ssl_certificate {NGINX_SSL_DIR}/nginx.crt;",
        f"    ssl_certificate_key {NGINX_SSL_DIR}/nginx.key;",
        "",
        "    # SSL protocols and ciphers",
        "    ssl_protocols TLSv1.2 TLSv1.3;",
        "    ssl_ciphers HIGH:!aNULL:!MD5;",
        "    ssl_prefer_server_ciphers on;",
        "",
        "    # Security headers",
        '    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;',
        '    add_header X-Frame-Options "SAMEORIGIN" always;',
        '    add_header X-Content-Type-Options "nosniff" always;',
        '    add_header X-XSS-Protection "1; mode=block" always;',
        "",
        _LOCATION_BLOCK + "}",
        "",
        "# Redirect HTTP to HTTPS",
        "server {",
        f"    listen {HTTP_PORT};",
        f"    listen [::]:{HTTP_PORT};",
        "    server_name _;",
        "    return 301 https://$host$request_uri;",
        "}",
    ]
    return "\n".join(lines) + "\n"


def _backend_service(gpu: GpuConfig, expose_api: bool) -> Dict[str, Any]:
    service: Dict[str, Any] = {
        "image": "ollama/ollama:latest",
        "container_name": BACKEND_SERVICE,
        "restart": "unless-stopped",
        "expose": [str(BACKEND_PORT)],
    }
    if expose_api:
        service["ports"] = [f"{BACKEND_PORT}:{BACKEND_PORT}"]
    service["volumes"] = [f"{BACKEND_SERVICE}:{VOLUMES[BACKEND_SERVICE]}"]

    if gpu.enabled:
        service["deploy"] = {
            "resources": {
                "reservations": {
                    "devices": [{
                        "driver": "nvidia",
                        "count": gpu.count,
                        "capabilities": ["gpu"],
                    }]
                }
            }
        }
        service["environment"] = [f"CUDA_VISIBLE_DEVICES={gpu.device_ids}"]

    service["networks"] = [NETWORK_NAME]
    return service


def _ui_service() -> Dict[str, Any]:
    return {
        "image": "ghcr.io/open-webui/open-webui:main",
        "container_name": UI_SERVICE,
        "restart": "unless-stopped",
        "environment": [
            f"OLLAMA_BASE_URL=http://{BACKEND_SERVICE}:{BACKEND_PORT}",
            # Interpolated by compose from the .env file next to the compose file
            "WEBUI_SECRET_KEY=${WEBUI_SECRET_KEY}",
        ],
        "expose": [str(UI_PORT)],
        "volumes": [f"{UI_SERVICE}:{VOLUMES[UI_SERVICE]}"],
        "networks": [NETWORK_NAME],
        "depends_on": [BACKEND_SERVICE],
    }


def _proxy_service(mode: DeploymentMode) -> Dict[str, Any]:
    ports = [f"{HTTP_PORT}:{HTTP_PORT}"]
    volumes = [f"./conf.d/open-webui.conf:{NGINX_CONF_TARGET}:ro"]
    if mode == DeploymentMode.ADVANCED:
        ports.append(f"{HTTPS_PORT}:{HTTPS_PORT}")
        volumes.append(f"./ssl:{NGINX_SSL_DIR}:ro")
    return {
        "image": "nginx:alpine",
        "container_name": PROXY_SERVICE,
        "restart": "unless-stopped",
        "ports": ports,
        "volumes": volumes,
        "networks": [NETWORK_NAME],
        "depends_on": [UI_SERVICE],
    }


def generate_topology_dict(
    mode: DeploymentMode,
    gpu: GpuConfig,
    expose_api: bool,
    project_name: str = DEFAULT_PROJECT_NAME,
) -> Dict[str, Any]:
    """Build the compose document as plain data."""
    gpu.validate()
    return {
        "name": project_name,
        "services": {
            BACKEND_SERVICE: _backend_service(gpu, expose_api),
            UI_SERVICE: _ui_service(),
            PROXY_SERVICE: _proxy_service(mode),
        },
        "networks": {
            NETWORK_NAME: {"driver": "bridge"},
        },
        "volumes": {name: {"driver": "local"} for name in VOLUMES},
    }


def generate_topology_spec(
    mode: DeploymentMode,
    gpu: GpuConfig,
    expose_api: bool,
    project_name: str = DEFAULT_PROJECT_NAME,
) -> str:
    """Generate docker-compose.yml content."""
    compose = generate_topology_dict(mode, gpu, expose_api, project_name)
    return yaml.dump(compose, default_flow_style=False, sort_keys=False)


class ConfigGenerator:
    """
    Renders and writes the stack's configuration artifacts.

    Rendering has no side effects; write_artifacts replaces both files or
    neither.
    """

    def __init__(self, paths: StackPaths):
        self.paths = paths

    def render(
        self,
        mode: DeploymentMode,
        domain: str,
        gpu: GpuConfig,
        expose_api: bool,
        project_name: str = DEFAULT_PROJECT_NAME,
    ) -> ConfigArtifacts:
        return ConfigArtifacts(
            proxy_config=generate_proxy_config(mode, domain),
            topology_spec=generate_topology_spec(mode, gpu, expose_api, project_name),
        )

    def current(self) -> ConfigArtifacts:
        """Artifacts currently on disk; missing files read as empty."""
        return ConfigArtifacts(
            proxy_config=_read_text(self.paths.proxy_config),
            topology_spec=_read_text(self.paths.compose_file),
        )

    def write_artifacts(self, artifacts: ConfigArtifacts):
        """
        Replace the proxy config and the compose file as a unit.

        Both files are staged first; if swapping the second one fails the
        first is restored from its backup.
        """
        targets = [
            (self.paths.proxy_config, artifacts.proxy_config),
            (self.paths.compose_file, artifacts.topology_spec),
        ]
        staged = []
        backups = []
        committed = []

        try:
            for target, content in targets:
                target.parent.mkdir(parents=True, exist_ok=True)
                tmp = target.with_name(f".{target.name}.tmp")
                tmp.write_text(content)
                staged.append((tmp, target))

            for tmp, target in staged:
                if target.exists():
                    backup = target.with_name(f".{target.name}.bak")
                    os.replace(target, backup)
                    backups.append((backup, target))
                os.replace(tmp, target)
                committed.append(target)
        except OSError as e:
            for target in committed:
                target.unlink(missing_ok=True)
            for backup, target in backups:
                os.replace(backup, target)
            backups = []
            raise GenerationError(f"Failed to write configuration artifacts: {e}")
        finally:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            for backup, _ in backups:
                backup.unlink(missing_ok=True)

        logger.info(f"Written: {self.paths.proxy_config}")
        logger.info(f"Written: {self.paths.compose_file}")

    def ensure_env_file(self) -> bool:
        """
        Create the .env file with a fresh web UI secret.

        An existing file is left alone so sessions survive regeneration.
        Returns True if the file was created.
        """
        env_path = self.paths.env_file
        if env_path.exists():
            return False
        try:
            env_path.parent.mkdir(parents=True, exist_ok=True)
            env_path.write_text(
                "# Open WebUI stack secrets\n"
                f"WEBUI_SECRET_KEY={generate_secret(48)}\n"
            )
            os.chmod(env_path, 0o600)
        except OSError as e:
            raise GenerationError(f"Failed to write {env_path}: {e}")
        logger.info(f"Written: {env_path}")
        return True


def _read_text(path: Path) -> str:
    try:
        return path.read_text()
    except (FileNotFoundError, NotADirectoryError):
        return ""
