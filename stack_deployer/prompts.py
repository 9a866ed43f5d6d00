"""
Input providers: the ways an InstallConfig gets built.

The core components never prompt. Whatever the source (interactive menus,
a YAML file or plain code) the result is one immutable InstallConfig.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt

from .config import (
    CertificateParams,
    DeploymentMode,
    GpuConfig,
    InstallConfig,
    validate_domain,
)
from .exceptions import ValidationError
from .hardware import HardwareProfile
from .models import KNOWN_MODELS, LOW_DISK_THRESHOLD_GB, CompatibilityReport, evaluate, recommend_tier

logger = logging.getLogger(__name__)

CUSTOM_CHOICE = len(KNOWN_MODELS) + 1
SKIP_CHOICE = len(KNOWN_MODELS) + 2


class InputProvider:
    """Produces the configuration for one run."""

    def collect(self, profile: HardwareProfile) -> InstallConfig:
        raise NotImplementedError


class StaticInputProvider(InputProvider):
    """Configuration built in code."""

    def __init__(self, config: InstallConfig):
        self.config = config

    def collect(self, profile: HardwareProfile) -> InstallConfig:
        return self.config


class FileInputProvider(InputProvider):
    """Configuration read from a YAML file; keyword overrides win."""

    def __init__(self, path: Path, **overrides):
        self.path = Path(path)
        self.overrides = overrides

    def collect(self, profile: HardwareProfile) -> InstallConfig:
        config = InstallConfig.load(self.path, **self.overrides)
        if not config.domain and profile.primary_ip:
            logger.info(f"No domain configured, using detected IP {profile.primary_ip}")
            config = replace(config, domain=profile.primary_ip)
        return config


def parse_model_choices(text: str) -> Tuple[List[str], bool, bool]:
    """
    Parse a menu answer such as "1,2, 4".

    Returns (known model names, custom requested, skip requested).
    Raises ValueError on anything that is not a menu number.
    """
    models = []
    custom = False
    for token in text.replace(" ", "").split(","):
        if not token:
            continue
        if not token.isdigit():
            raise ValueError(f"Invalid choice: {token}")
        choice = int(token)
        if choice == SKIP_CHOICE:
            return [], False, True
        if choice == CUSTOM_CHOICE:
            custom = True
        elif 1 <= choice <= len(KNOWN_MODELS):
            models.append(KNOWN_MODELS[choice - 1]["name"])
        else:
            raise ValueError(f"Invalid choice: {token}")
    return models, custom, False


class InteractiveInputProvider(InputProvider):
    """
    Terminal menus for mode, address, certificate, GPU, API and models.
    """

    def __init__(self, console: Optional[Console] = None, **defaults):
        self.console = console or Console()
        self.defaults = defaults

    def _header(self, title: str):
        self.console.print()
        self.console.rule(f"[bold]{title}")
        self.console.print()

    def collect(self, profile: HardwareProfile) -> InstallConfig:
        mode = self.select_mode()
        domain = self.prompt_domain(profile)
        cert_params = self.prompt_certificate() if mode == DeploymentMode.ADVANCED else CertificateParams()
        gpu = self.prompt_gpu(profile)
        expose_api = self.prompt_api_exposure()
        models, accept_warnings, allow_disk = self.prompt_models(profile)

        config = InstallConfig(
            mode=mode,
            domain=domain,
            gpu=gpu,
            expose_api=expose_api,
            cert_params=cert_params,
            model_selection=tuple(models),
            accept_hardware_warnings=accept_warnings,
            allow_insufficient_disk=allow_disk,
            **self.defaults,
        )
        self.console.print("✓ Configuration completed")
        return config

    def select_mode(self) -> DeploymentMode:
        self._header("Installation Mode Selection")
        self.console.print("Choose installation mode:")
        self.console.print("  1) Simple (HTTP, root user, no SSL)")
        self.console.print("  2) Advanced (HTTPS, dedicated user, SSL certificates)")
        choice = Prompt.ask("Enter your choice", choices=["1", "2"], console=self.console)
        mode = DeploymentMode.SIMPLE if choice == "1" else DeploymentMode.ADVANCED
        self.console.print(f"✓ Selected: {mode.value.capitalize()} installation mode")
        return mode

    def prompt_domain(self, profile: HardwareProfile) -> str:
        self._header("Configuration Setup")
        if profile.primary_ip:
            self.console.print(f"✓ Detected IP: {profile.primary_ip}")
            if Confirm.ask("Use this IP address?", default=True, console=self.console):
                return profile.primary_ip
        else:
            self.console.print("⚠ Could not detect IP address automatically")

        while True:
            domain = Prompt.ask("Enter your server's IPv4 address or domain", console=self.console).strip()
            try:
                validate_domain(domain)
            except ValidationError as e:
                self.console.print(f"[red]{e}[/red]")
                continue
            self.console.print(f"✓ Domain/IP set to: {domain}")
            return domain

    def prompt_certificate(self) -> CertificateParams:
        self.console.print("SSL Certificate Details:")
        defaults = CertificateParams()
        if Confirm.ask("Use default certificate information?", default=True, console=self.console):
            self.console.print("✓ Using default certificate information")
            return defaults

        while True:
            params = CertificateParams(
                country=Prompt.ask("Country code (C)", default=defaults.country, console=self.console),
                state=Prompt.ask("State (ST)", default=defaults.state, console=self.console),
                city=Prompt.ask("City (L)", default=defaults.city, console=self.console),
                org=Prompt.ask("Organization (O)", default=defaults.org, console=self.console),
                org_unit=Prompt.ask("Organizational Unit (OU)", default=defaults.org_unit, console=self.console),
            )
            try:
                params.validate()
            except ValidationError as e:
                self.console.print(f"[red]{e}[/red]")
                continue
            self.console.print("✓ SSL certificate details configured")
            return params

    def prompt_gpu(self, profile: HardwareProfile) -> GpuConfig:
        if not profile.gpu_present:
            self.console.print("No NVIDIA GPU detected, skipping GPU configuration")
            return GpuConfig()

        self.console.print(f"NVIDIA GPU detected on system: {profile.gpu_name}")
        if not Confirm.ask("Do you want to use NVIDIA GPU acceleration?", default=False, console=self.console):
            self.console.print("✓ GPU acceleration disabled")
            return GpuConfig()

        while True:
            count = IntPrompt.ask("How many GPUs do you want to use?", default=1, console=self.console)
            if count > 0:
                self.console.print(f"✓ GPU count set to: {count}")
                return GpuConfig(enabled=True, count=count)
            self.console.print("Please enter a valid positive number")

    def prompt_api_exposure(self) -> bool:
        self._header("Ollama API Configuration")
        self.console.print("  • No (default):  API accessible only via Docker network (recommended for security)")
        self.console.print("  • Yes:           API accessible on host at port 11434 (allows external tools to connect)")
        expose = Confirm.ask("Expose Ollama API on host?", default=False, console=self.console)
        if expose:
            self.console.print("✓ Ollama API will be exposed on port 11434")
        else:
            self.console.print("✓ Ollama API will remain internal (Docker network only)")
        return expose

    def show_hardware(self, profile: HardwareProfile):
        self.console.print("📊 System Resources:")
        for line in profile.summary():
            self.console.print(f"   {line}")
        self.console.print()

        tier = recommend_tier(profile)
        self.console.print("💡 Recommendations for your system:")
        if tier.basis == "ram":
            self.console.print("   💻 CPU-only mode")
        for note in tier.notes:
            self.console.print(f"   {note}")
        self.console.print(f"   ✓ Recommended: models {tier.label}")
        self.console.print()

    def show_report(self, report: CompatibilityReport, profile: HardwareProfile):
        self.console.print(f"Estimated total download: ~{report.total_download_gb:g}GB")
        if report.basis == "vram":
            self.console.print(f"Maximum VRAM needed: {report.max_vram_required_gb}GB "
                               f"(you have {profile.gpu_vram_gb}GB)")
        else:
            self.console.print(f"Maximum RAM needed: {report.max_ram_required_gb}GB "
                               f"(you have {profile.ram_gb}GB)")
        if report.has_warnings:
            self.console.print("[yellow]⚠️  Hardware Compatibility Warnings:[/yellow]")
            for warning in report.warnings:
                self.console.print(f"   ⚠️  {warning}")
            self.console.print("These models may fail to load, run extremely slowly or destabilize the system")

    def prompt_models(self, profile: HardwareProfile) -> Tuple[List[str], bool, bool]:
        """Returns (selection, hardware warnings accepted, low disk accepted)."""
        self._header("Ollama Models Installation")
        self.console.print("  • Models can be installed later via: docker exec ollama ollama pull <model>")
        self.console.print("  • Initial download may take 5-30 minutes depending on model size")
        if not Confirm.ask("Install models now?", default=True, console=self.console):
            self.console.print("✓ Model installation skipped")
            return [], False, False

        self.console.print("Available models:")
        for index, model in enumerate(KNOWN_MODELS, start=1):
            self.console.print(f"  {index}) {model['name']:<17} - {model['description']} "
                               f"({model['size']}, {model['min_ram']}GB RAM min)")
        self.console.print(f"  {CUSTOM_CHOICE}) Custom model      - Enter model name manually")
        self.console.print(f"  {SKIP_CHOICE}) None              - Skip installation")
        self.console.print()
        self.show_hardware(profile)

        if profile.disk_free_gb < LOW_DISK_THRESHOLD_GB:
            self.console.print(f"[yellow]⚠️  WARNING: Low disk space ({profile.disk_free_gb}GB available)[/yellow]")

        while True:
            answer = Prompt.ask(f"Select model(s) (comma-separated, e.g., 1,2,3 or {SKIP_CHOICE} to skip)",
                                console=self.console)
            try:
                models, custom, skip = parse_model_choices(answer)
            except ValueError as e:
                self.console.print(str(e))
                continue
            if skip:
                self.console.print("✓ Model installation skipped")
                return [], False, False
            if custom:
                name = Prompt.ask("Enter custom model name (e.g., llama3.3:70b)",
                                  default="", console=self.console).strip()
                if name:
                    models.append(name)
            if not models:
                self.console.print("No models selected")
                continue

            report = evaluate(profile, models)
            self.console.print("Selected models:")
            for entry in report.per_model:
                self.console.print(f"  ✓ {entry.model}")
            self.show_report(report, profile)

            allow_disk = False
            if report.disk_insufficient:
                self.console.print("[red]⚠️  CRITICAL: Not enough disk space![/red]")
                self.console.print(f"   Required: ~{report.total_download_gb:g}GB")
                self.console.print(f"   Available: {profile.disk_free_gb}GB")
                if not Confirm.ask("Continue anyway?", default=False, console=self.console):
                    continue
                allow_disk = True

            if Confirm.ask("Confirm installation?", default=True, console=self.console):
                self.console.print("✓ Models will be installed after services start")
                return [entry.model for entry in report.per_model], report.has_warnings, allow_disk
