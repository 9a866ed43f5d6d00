"""
Configuration management for the Open WebUI stack deployer.

Handles:
- Deployment mode and execution identity
- The immutable input configuration consumed by every component
- Certificate subject defaults
- Install directory layout
- Loading/saving configuration as YAML
"""

import ipaddress
import re
import secrets
import string
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml

from .exceptions import ValidationError


class DeploymentMode(Enum):
    """Network exposure variants of the stack."""
    SIMPLE = "simple"        # HTTP only, runs as root
    ADVANCED = "advanced"    # HTTPS, dedicated user, self-signed certificate


# Service names used in the compose file and as container names
PROXY_SERVICE = "nginx"
UI_SERVICE = "open-webui"
BACKEND_SERVICE = "ollama"
STACK_SERVICES = (BACKEND_SERVICE, UI_SERVICE, PROXY_SERVICE)

NETWORK_NAME = "openwebui-network"
HTTP_PORT = 80
HTTPS_PORT = 443
UI_PORT = 8080
BACKEND_PORT = 11434

DEFAULT_PROJECT_NAME = "openwebui-stack"
DEFAULT_DOCKER_USER = "openwebui"
DEFAULT_DOCKER_UID = 1000
DEFAULT_DOCKER_GID = 1000

_HOSTNAME_LABEL = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
_PROJECT_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


@dataclass(frozen=True)
class GpuConfig:
    """NVIDIA GPU passthrough for the inference backend."""
    enabled: bool = False
    count: int = 1

    @property
    def device_ids(self) -> str:
        """Visible device index list, e.g. "0,1" for two GPUs."""
        return ",".join(str(i) for i in range(self.count))

    def validate(self):
        if self.enabled and (not isinstance(self.count, int) or self.count <= 0):
            raise ValidationError(f"GPU count must be a positive integer, got {self.count!r}")


@dataclass(frozen=True)
class CertificateParams:
    """Subject fields of the self-signed certificate."""
    country: str = "US"
    state: str = "California"
    city: str = "San Francisco"
    org: str = "Self-Signed"
    org_unit: str = "IT"
    common_name: str = ""

    def for_domain(self, domain: str) -> "CertificateParams":
        return replace(self, common_name=domain)

    def validate(self):
        if len(self.country) != 2 or not self.country.isalpha():
            raise ValidationError(f"Country code must be two letters, got {self.country!r}")
        for name in ("state", "city", "org", "org_unit"):
            if not getattr(self, name).strip():
                raise ValidationError(f"Certificate field '{name}' cannot be empty")

    def to_dict(self) -> Dict[str, str]:
        return {
            "country": self.country,
            "state": self.state,
            "city": self.city,
            "org": self.org,
            "org_unit": self.org_unit,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CertificateParams":
        data = data or {}
        defaults = cls()
        # Unset or blank fields fall back to the defaults
        return cls(**{
            key: str(data.get(key) or getattr(defaults, key))
            for key in ("country", "state", "city", "org", "org_unit")
        })


@dataclass(frozen=True)
class ExecutionIdentity:
    """User the stack files belong to."""
    user: str
    uid: int
    gid: int

    @property
    def is_root(self) -> bool:
        return self.uid == 0


@dataclass(frozen=True)
class StackPaths:
    """On-disk layout of an installation."""
    base_dir: Path

    @property
    def compose_file(self) -> Path:
        return self.base_dir / "docker-compose.yml"

    @property
    def conf_dir(self) -> Path:
        return self.base_dir / "conf.d"

    @property
    def proxy_config(self) -> Path:
        return self.conf_dir / "open-webui.conf"

    @property
    def ssl_dir(self) -> Path:
        return self.base_dir / "ssl"

    @property
    def certificate(self) -> Path:
        return self.ssl_dir / "nginx.crt"

    @property
    def private_key(self) -> Path:
        return self.ssl_dir / "nginx.key"

    @property
    def env_file(self) -> Path:
        return self.base_dir / ".env"

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def applied_config(self) -> Path:
        return self.base_dir / "stack-config.yaml"


def default_base_dir() -> Path:
    return Path.home() / "openwebui-stack"


def normalize_selection(models: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Strip, drop blanks and de-duplicate model ids keeping first occurrence."""
    if isinstance(models, str):
        # "llama3.2:3b" or "llama3.2:3b, mistral:7b" written as a scalar
        models = models.split(",")
    seen = []
    for model in models or ():
        name = str(model).strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def validate_domain(domain: str):
    """Accept an IPv4/IPv6 address or a DNS host name."""
    if not domain or not domain.strip():
        raise ValidationError("Domain/IP cannot be empty")
    if domain != domain.strip() or any(ch.isspace() for ch in domain):
        raise ValidationError(f"Domain/IP contains whitespace: {domain!r}")

    try:
        ipaddress.ip_address(domain)
        return
    except ValueError:
        pass

    if len(domain) > 253:
        raise ValidationError(f"Domain is too long: {domain!r}")
    labels = domain.rstrip(".").split(".")
    if not all(_HOSTNAME_LABEL.match(label) for label in labels):
        raise ValidationError(f"Not a valid IP address or host name: {domain!r}")
    # All-numeric names are mistyped IPs, not host names
    if all(label.isdigit() for label in labels):
        raise ValidationError(f"Not a valid IP address: {domain!r}")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Nested mapping of a config file; blank means defaults."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"'{key}' must be a mapping, got {value!r}")
    return value


@dataclass(frozen=True)
class InstallConfig:
    """
    Everything a deployment run needs, fixed before any generation starts.

    Built by an input provider (interactive prompts, YAML file, CLI flags or
    plain code) and passed explicitly to every component.
    """

    mode: DeploymentMode = DeploymentMode.SIMPLE
    domain: str = ""
    gpu: GpuConfig = field(default_factory=GpuConfig)
    expose_api: bool = False
    cert_params: CertificateParams = field(default_factory=CertificateParams)
    model_selection: Tuple[str, ...] = ()

    base_dir: Path = field(default_factory=default_base_dir)
    project_name: str = DEFAULT_PROJECT_NAME
    docker_user: str = DEFAULT_DOCKER_USER

    # Operator overrides for non-fatal model checks
    accept_hardware_warnings: bool = False
    allow_insufficient_disk: bool = False

    def __post_init__(self):
        if isinstance(self.mode, str):
            object.__setattr__(self, "mode", DeploymentMode(self.mode))
        if not isinstance(self.base_dir, Path):
            object.__setattr__(self, "base_dir", Path(self.base_dir).expanduser())
        object.__setattr__(self, "model_selection", normalize_selection(self.model_selection))

    @property
    def paths(self) -> StackPaths:
        return StackPaths(self.base_dir)

    @property
    def certificate_params(self) -> CertificateParams:
        """Certificate subject with the common name bound to the domain."""
        return self.cert_params.for_domain(self.domain)

    @property
    def identity(self) -> ExecutionIdentity:
        if self.mode == DeploymentMode.ADVANCED:
            return ExecutionIdentity(self.docker_user, DEFAULT_DOCKER_UID, DEFAULT_DOCKER_GID)
        return ExecutionIdentity("root", 0, 0)

    @property
    def protocol(self) -> str:
        return "https" if self.mode == DeploymentMode.ADVANCED else "http"

    @property
    def public_url(self) -> str:
        return f"{self.protocol}://{self.domain}"

    def validate(self):
        """Raise ValidationError for the first malformed field."""
        validate_domain(self.domain)
        self.gpu.validate()
        if self.mode == DeploymentMode.ADVANCED:
            self.cert_params.validate()
        if not _PROJECT_NAME.match(self.project_name):
            raise ValidationError(
                f"Project name must be lowercase letters, digits, '-' or '_': {self.project_name!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "mode": self.mode.value,
            "domain": self.domain,
            "gpu": {"enabled": self.gpu.enabled, "count": self.gpu.count},
            "expose_api": self.expose_api,
            "cert_params": self.cert_params.to_dict(),
            "model_selection": list(self.model_selection),
            "base_dir": str(self.base_dir),
            "project_name": self.project_name,
            "docker_user": self.docker_user,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides) -> "InstallConfig":
        gpu = _section(data, "gpu")
        values: Dict[str, Any] = {
            "mode": DeploymentMode(data.get("mode") or "simple"),
            "domain": str(data.get("domain") or ""),
            "gpu": GpuConfig(
                enabled=bool(gpu.get("enabled", False)),
                count=gpu.get("count", 1),
            ),
            "expose_api": bool(data.get("expose_api", False)),
            "cert_params": CertificateParams.from_dict(_section(data, "cert_params")),
            "model_selection": data.get("model_selection") or (),
            "project_name": str(data.get("project_name") or DEFAULT_PROJECT_NAME),
            "docker_user": str(data.get("docker_user") or DEFAULT_DOCKER_USER),
            "accept_hardware_warnings": bool(data.get("accept_hardware_warnings", False)),
            "allow_insufficient_disk": bool(data.get("allow_insufficient_disk", False)),
        }
        if data.get("base_dir"):
            values["base_dir"] = Path(data["base_dir"]).expanduser()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def save(self, path: Optional[Path] = None):
        """Save configuration to YAML file."""
        if path is None:
            path = self.paths.applied_config
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Path, **overrides) -> "InstallConfig":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(f"Cannot read configuration {path}: {e}")
        if not isinstance(data, dict):
            raise ValidationError(f"Configuration {path} must be a mapping")
        try:
            return cls.from_dict(data, **overrides)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid configuration {path}: {e}")


def generate_secret(length: int = 32, include_special: bool = False) -> str:
    """Generate a cryptographically secure random secret."""
    alphabet = string.ascii_letters + string.digits
    if include_special:
        alphabet += "!@#$%^&*"
    return ''.join(secrets.choice(alphabet) for _ in range(length))
