"""
Host hardware detection.

Reads the facts the model advisor and the prompts need: primary IP, total
RAM, free disk and NVIDIA GPU presence/VRAM. Every probe degrades to a
default instead of failing.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

CommandRunner = Callable[[List[str]], Tuple[int, str, str]]


def run_command(cmd: List[str], timeout: int = 10) -> Tuple[int, str, str]:
    """
    Run a command and capture its output.

    Returns (returncode, stdout, stderr); a missing binary or a timeout is
    reported as returncode -1 rather than raised.
    """
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return result.returncode, result.stdout or "", result.stderr or ""
    except subprocess.TimeoutExpired:
        return -1, "", "Command timed out"
    except (FileNotFoundError, PermissionError):
        return -1, "", f"Command not found: {cmd[0]}"


@dataclass(frozen=True)
class HardwareProfile:
    """
    Snapshot of the host taken once per run.

    gpu_vram_gb is None when a GPU is present but its VRAM cannot be queried
    (driver tools not installed yet). That is not the same as 0.
    """
    ram_gb: int = 0
    disk_free_gb: int = 0
    gpu_present: bool = False
    gpu_vram_gb: Optional[int] = 0
    gpu_name: str = "None"
    primary_ip: Optional[str] = None

    @property
    def gpu_vram_known(self) -> bool:
        return self.gpu_vram_gb is not None

    @property
    def gpu_usable(self) -> bool:
        """GPU present and its VRAM is known to be non-zero."""
        return self.gpu_present and self.gpu_vram_gb is not None and self.gpu_vram_gb > 0

    def summary(self) -> List[str]:
        lines = [f"CPU RAM: {self.ram_gb}GB", f"Available Disk: {self.disk_free_gb}GB"]
        if self.gpu_present:
            lines.append(f"GPU: {self.gpu_name}")
            if self.gpu_usable:
                lines.append(f"GPU VRAM: {self.gpu_vram_gb}GB")
            elif not self.gpu_vram_known:
                lines.append("GPU VRAM: unknown (nvidia-smi not available)")
        else:
            lines.append("GPU: None detected (CPU-only mode)")
        return lines


class HardwareProfiler:
    """Collects a HardwareProfile from the local host."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        meminfo_path: Path = Path("/proc/meminfo"),
        disk_path: Path = Path("/"),
    ):
        self.runner = runner or run_command
        self.meminfo_path = Path(meminfo_path)
        self.disk_path = Path(disk_path)

    def profile(self) -> HardwareProfile:
        """Probe the host. Never raises."""
        gpu_present, gpu_vram_gb, gpu_name = self.detect_gpu()
        profile = HardwareProfile(
            ram_gb=self.detect_ram_gb(),
            disk_free_gb=self.detect_disk_free_gb(),
            gpu_present=gpu_present,
            gpu_vram_gb=gpu_vram_gb,
            gpu_name=gpu_name,
            primary_ip=self.detect_primary_ip(),
        )
        logger.debug(f"Hardware profile: {profile}")
        return profile

    def detect_primary_ip(self) -> Optional[str]:
        code, stdout, _ = self.runner(["hostname", "-I"])
        if code != 0:
            return None
        addresses = stdout.split()
        return addresses[0] if addresses else None

    def detect_ram_gb(self) -> int:
        """Total RAM in whole GB, 0 when unreadable."""
        try:
            with open(self.meminfo_path) as f:
                for line in f:
                    if line.startswith("MemTotal"):
                        kb = int(line.split()[1])
                        return kb // (1024 ** 2)
        except (OSError, ValueError, IndexError) as e:
            logger.warning(f"Could not read total RAM: {e}")
        return 0

    def detect_disk_free_gb(self) -> int:
        """Free space of the install filesystem in whole GB, 0 when unreadable."""
        path = self.disk_path
        # The install directory may not exist yet
        while not path.exists() and path != path.parent:
            path = path.parent
        try:
            return shutil.disk_usage(path).free // (1024 ** 3)
        except OSError as e:
            logger.warning(f"Could not read free disk space: {e}")
            return 0

    def detect_gpu(self) -> Tuple[bool, Optional[int], str]:
        """
        Return (present, vram_gb, name).

        Presence comes from lspci, capability from nvidia-smi; either one
        proves a device exists.
        """
        lspci_name = self._lspci_nvidia_device()

        code, stdout, _ = self.runner(
            ["nvidia-smi", "--query-gpu=name,memory.total", "--format=csv,noheader,nounits"]
        )
        if code == 0 and stdout.strip():
            first = stdout.strip().splitlines()[0]
            parts = [p.strip() for p in first.split(",")]
            if len(parts) >= 2:
                try:
                    return True, int(float(parts[1])) // 1024, parts[0]
                except ValueError:
                    logger.warning(f"Unexpected nvidia-smi output: {first!r}")
                    return True, None, parts[0]

        if lspci_name is not None:
            return True, None, lspci_name or "NVIDIA GPU"
        return False, 0, "None"

    def _lspci_nvidia_device(self) -> Optional[str]:
        """Device description of the first NVIDIA entry, None if there is none."""
        code, stdout, _ = self.runner(["lspci"])
        if code != 0:
            return None
        for line in stdout.splitlines():
            if "nvidia" in line.lower():
                # "01:00.0 VGA compatible controller: NVIDIA Corporation ..."
                fields = line.split(":", 2)
                return fields[2].strip() if len(fields) == 3 else line.strip()
        return None
