"""
Model catalog, hardware compatibility and model installation for Ollama.

Handles:
- Resource requirements per model size class
- Recommendation tiers from RAM/VRAM
- Compatibility reports for a model selection
- Pulling and listing models inside the ollama container
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .config import BACKEND_SERVICE, normalize_selection
from .exceptions import CompatibilityWarningError, DiskInsufficientError
from .hardware import HardwareProfile

logger = logging.getLogger(__name__)

# Free disk below this is flagged even when the selection fits
LOW_DISK_THRESHOLD_GB = 20


@dataclass(frozen=True)
class ModelSpec:
    """Download size and memory requirements of a model."""
    id: str
    size_gb: float
    ram_required_gb: int
    vram_required_gb: int


@dataclass(frozen=True)
class ModelRule:
    """One entry of the ordered classification table."""
    name: str
    matches: Callable[[str], bool]
    size_gb: float
    ram_required_gb: int
    vram_required_gb: int

    def spec_for(self, model_id: str) -> ModelSpec:
        return ModelSpec(model_id, self.size_gb, self.ram_required_gb, self.vram_required_gb)


def _size_class(*tokens: str) -> Callable[[str], bool]:
    # "13b" must not satisfy the "3b" rule, nor "6.7b" the "7b" rule
    pattern = re.compile(r"(?<![\d.])(?:%s)" % "|".join(re.escape(t) for t in tokens), re.IGNORECASE)
    return lambda model_id: bool(pattern.search(model_id))


def _contains(token: str) -> Callable[[str], bool]:
    return lambda model_id: token in model_id.lower()


# First match wins
MODEL_RULES: Tuple[ModelRule, ...] = (
    ModelRule("70b", _size_class("70b"), 40, 64, 48),
    ModelRule("13b", _size_class("13b"), 7, 16, 12),
    ModelRule("medium", _contains("medium"), 8, 16, 12),
    ModelRule("9b", _size_class("9b"), 6, 12, 10),
    ModelRule("7b/8b", _size_class("7b", "8b"), 5, 8, 8),
    ModelRule("3b", _size_class("3b"), 2, 4, 4),
)
DEFAULT_RULE = ModelRule("default", lambda model_id: True, 5, 8, 8)


# Models offered in the interactive menu
KNOWN_MODELS = [
    {"name": "llama3.2:3b", "description": "Recommended, small and fast", "size": "2GB", "min_ram": 4},
    {"name": "llama3.1:8b", "description": "Balanced performance", "size": "4.7GB", "min_ram": 8},
    {"name": "mistral:7b", "description": "Good for general tasks", "size": "4GB", "min_ram": 8},
    {"name": "codellama:13b", "description": "Best for coding", "size": "7GB", "min_ram": 16},
    {"name": "qwen2.5:7b", "description": "Multilingual model", "size": "4.7GB", "min_ram": 8},
    {"name": "phi3:medium", "description": "Microsoft model", "size": "7.9GB", "min_ram": 16},
    {"name": "gemma2:9b", "description": "Google model", "size": "5.4GB", "min_ram": 12},
]


def resolve_model(model_id: str) -> ModelSpec:
    """Requirements for a model id; unknown ids get the default mid-tier."""
    for rule in MODEL_RULES:
        if rule.matches(model_id):
            return rule.spec_for(model_id)
    return DEFAULT_RULE.spec_for(model_id)


@dataclass(frozen=True)
class RecommendationTier:
    """Largest model size class the host is expected to run well."""
    label: str
    max_size_b: Optional[int]   # None = no upper bound
    basis: str                  # "vram" or "ram"
    caution: bool = False
    notes: Tuple[str, ...] = ()


# (minimum GB, label, max size in billions of parameters, notes)
VRAM_LADDER = (
    (24, "all sizes", None, ("Excellent GPU! All models will run smoothly, even large ones (70B+)",)),
    (12, "up to 13B", 13, ("Great GPU! Models up to 13B will run well",
                          "Avoid: 70B+ models (require 24GB+ VRAM)")),
    (8, "up to 8B", 8, ("Good GPU! Models up to 8B will run smoothly",
                       "Possible but slower: 13B+ models")),
    (6, "up to 7B", 7, ("GPU detected! Best for models up to 7B",
                       "May struggle with: 8B+ models")),
)
RAM_LADDER = (
    (32, "up to 13B", 13, ("High RAM! Models up to 13B will work (slowly)",
                          "Expect slower responses than with GPU")),
    (16, "up to 8B", 8, ("Good RAM! Models up to 8B will work",
                        "Responses will be slower without GPU")),
    (8, "3B only", 3, ("Minimum RAM. Stick to small models",
                      "Larger models may cause system slowdown")),
)


def recommend_tier(profile: HardwareProfile) -> RecommendationTier:
    """Pick the tier from VRAM when the GPU is usable, otherwise from RAM."""
    if profile.gpu_usable:
        for minimum, label, max_size, notes in VRAM_LADDER:
            if profile.gpu_vram_gb >= minimum:
                return RecommendationTier(label, max_size, "vram", notes=notes)
        return RecommendationTier(
            "3B only", 3, "vram",
            notes=("Limited GPU VRAM detected", "Larger models will likely fail or be very slow"),
        )

    extra: Tuple[str, ...] = ()
    if profile.gpu_present and not profile.gpu_vram_known:
        extra = ("GPU detected but VRAM unknown; recommendation based on RAM",)

    for minimum, label, max_size, notes in RAM_LADDER:
        if profile.ram_gb >= minimum:
            return RecommendationTier(label, max_size, "ram", notes=extra + notes)
    return RecommendationTier(
        "3B only", 3, "ram", caution=True,
        notes=extra + (f"Limited RAM detected ({profile.ram_gb}GB)",
                       "Only very small models recommended, use with caution"),
    )


@dataclass(frozen=True)
class ModelCompatibility:
    model: str
    spec: ModelSpec
    warning: Optional[str] = None


@dataclass(frozen=True)
class CompatibilityReport:
    """Requirements of a selection measured against one hardware profile."""
    per_model: Tuple[ModelCompatibility, ...]
    total_download_gb: float
    max_ram_required_gb: int
    max_vram_required_gb: int
    disk_insufficient: bool
    basis: str
    low_disk: bool = False

    @property
    def warnings(self) -> List[str]:
        return [entry.warning for entry in self.per_model if entry.warning]

    @property
    def has_warnings(self) -> bool:
        return any(entry.warning for entry in self.per_model)


def evaluate(profile: HardwareProfile, selection: Iterable[str]) -> CompatibilityReport:
    """
    Compute requirements and warnings for a model selection.

    Pure function of its inputs; per_model keeps the selection order.
    """
    models = normalize_selection(selection)
    entries = []
    total_size = 0.0
    max_ram = 0
    max_vram = 0

    for model in models:
        spec = resolve_model(model)
        total_size += spec.size_gb
        max_ram = max(max_ram, spec.ram_required_gb)
        max_vram = max(max_vram, spec.vram_required_gb)

        warning = None
        if profile.gpu_usable:
            if spec.vram_required_gb > profile.gpu_vram_gb:
                warning = (f"{model} may not fit in GPU VRAM "
                           f"(needs {spec.vram_required_gb}GB, you have {profile.gpu_vram_gb}GB)")
        elif spec.ram_required_gb > profile.ram_gb:
            warning = f"{model} requires {spec.ram_required_gb}GB RAM (you have {profile.ram_gb}GB)"
        entries.append(ModelCompatibility(model, spec, warning))

    return CompatibilityReport(
        per_model=tuple(entries),
        total_download_gb=total_size,
        max_ram_required_gb=max_ram,
        max_vram_required_gb=max_vram,
        disk_insufficient=profile.disk_free_gb < total_size,
        basis="vram" if profile.gpu_usable else "ram",
        low_disk=profile.disk_free_gb < LOW_DISK_THRESHOLD_GB,
    )


def review_selection(
    report: CompatibilityReport,
    accept_hardware_warnings: bool = False,
    allow_insufficient_disk: bool = False,
) -> CompatibilityReport:
    """Raise unless every problem in the report was explicitly accepted."""
    if report.disk_insufficient and not allow_insufficient_disk:
        raise DiskInsufficientError(
            f"Not enough disk space for the selected models "
            f"(~{report.total_download_gb:g}GB required)",
            report,
        )
    if report.has_warnings and not accept_hardware_warnings:
        raise CompatibilityWarningError(
            "Selected models exceed this host's hardware: " + "; ".join(report.warnings),
            report,
        )
    return report


@dataclass
class ModelPullResult:
    model: str
    success: bool
    message: str = ""


class ModelManager:
    """
    Manages models inside the running ollama container.

    Uses `docker exec` so it works whether or not the API port is
    published on the host.
    """

    def __init__(self, container: str = BACKEND_SERVICE):
        self.container = container

    def _exec(self, *args: str, capture: bool = True) -> subprocess.CompletedProcess:
        cmd = ["docker", "exec", self.container, "ollama", *args]
        return subprocess.run(cmd, capture_output=capture, text=True)

    def is_available(self) -> bool:
        """Check if the ollama container answers."""
        try:
            return self._exec("list").returncode == 0
        except OSError:
            return False

    def list_models(self) -> List[str]:
        """Names of installed models."""
        try:
            result = self._exec("list")
        except OSError as e:
            logger.error(f"Failed to list models: {e}")
            return []
        if result.returncode != 0:
            logger.error(f"Failed to list models: {result.stderr.strip()}")
            return []
        lines = result.stdout.strip().splitlines()
        # First line is the NAME/ID/SIZE/MODIFIED header
        return [line.split()[0] for line in lines[1:] if line.strip()]

    def pull_model(self, model_name: str, show_progress: bool = True) -> ModelPullResult:
        """Pull a model; progress goes straight to the terminal."""
        logger.info(f"Pulling model: {model_name}")
        try:
            result = self._exec("pull", model_name, capture=not show_progress)
        except OSError as e:
            logger.error(f"Failed to pull model {model_name}: {e}")
            return ModelPullResult(model_name, False, str(e))

        if result.returncode == 0:
            logger.info(f"Model {model_name} installed successfully")
            return ModelPullResult(model_name, True)

        message = (result.stderr or "").strip() or f"exit code {result.returncode}"
        logger.warning(f"Failed to install model {model_name}: {message}")
        logger.warning(f"Retry later with: docker exec {self.container} ollama pull {model_name}")
        return ModelPullResult(model_name, False, message)

    def ensure_models(self, models: Iterable[str], show_progress: bool = True) -> Dict[str, ModelPullResult]:
        """
        Ensure the given models are installed, pulling if necessary.

        A failed pull does not stop the remaining ones.
        """
        installed = set(self.list_models())
        results = {}
        selection = normalize_selection(models)

        for index, model in enumerate(selection, start=1):
            if model in installed:
                logger.info(f"Model already installed: {model}")
                results[model] = ModelPullResult(model, True, "already installed")
                continue
            logger.info(f"[{index}/{len(selection)}] Pulling model: {model}")
            results[model] = self.pull_model(model, show_progress=show_progress)

        return results
