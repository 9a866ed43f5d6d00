#!/usr/bin/env python3
"""
Open WebUI Stack Deployer - Command Line Interface

Deploys nginx + Open WebUI + Ollama with docker compose, in simple (HTTP)
or advanced (HTTPS, self-signed certificate) mode, and switches an existing
installation between the two in place.

Usage:
    python -m stack_deployer install [--config FILE] [--mode MODE] [--domain DOMAIN] [-y]
    python -m stack_deployer plan [--config FILE] [--mode MODE] [--domain DOMAIN]
    python -m stack_deployer detect [--base-dir DIR]
    python -m stack_deployer hardware
    python -m stack_deployer models {list,check,pull} [MODEL ...]
    python -m stack_deployer render [--mode MODE] [--domain DOMAIN]
    python -m stack_deployer verify [--base-dir DIR]
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .config import (
    BACKEND_PORT,
    DeploymentMode,
    GpuConfig,
    InstallConfig,
    StackPaths,
    default_base_dir,
)
from .core import TransitionOrchestrator, TransitionPlan, TransitionResult
from .exceptions import ConfirmationRequired, StackDeployerError
from .hardware import HardwareProfile, HardwareProfiler
from .health import HealthChecker, ProbeOutcome, default_targets
from .models import ModelManager, evaluate, recommend_tier
from .prompts import FileInputProvider, InteractiveInputProvider, StaticInputProvider
from .services import ServiceManager, ServiceStatus
from .state import DeploymentStateDetector

logger = logging.getLogger("stack_deployer")
console = Console()

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False):
    """Console logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def add_log_file(paths: StackPaths) -> Path:
    """Also log to <base>/logs/installation_<timestamp>.log."""
    paths.logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = paths.logs_dir / f"installation_{datetime.now():%Y%m%d_%H%M%S}.log"
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return log_file


def print_banner():
    console.print()
    console.rule("[bold]🚀 Open WebUI Stack Deployer")
    console.print("  nginx + Open WebUI + Ollama", justify="center")
    console.rule()
    console.print()


def _parse_models(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [m for m in value.split(",") if m.strip()]


def config_overrides(args) -> Dict[str, Any]:
    """Config fields set on the command line; unset flags are None."""
    overrides: Dict[str, Any] = {
        "mode": DeploymentMode(args.mode) if getattr(args, "mode", None) else None,
        "domain": getattr(args, "domain", None),
        "gpu": GpuConfig(enabled=True, count=args.gpus) if getattr(args, "gpus", None) is not None else None,
        "expose_api": True if getattr(args, "expose_api", False) else None,
        "model_selection": _parse_models(getattr(args, "models", None)),
        "base_dir": Path(args.base_dir).expanduser() if getattr(args, "base_dir", None) else None,
        "project_name": getattr(args, "project_name", None),
        "accept_hardware_warnings": True if getattr(args, "accept_hardware_warnings", False) else None,
        "allow_insufficient_disk": True if getattr(args, "allow_insufficient_disk", False) else None,
    }
    return {k: v for k, v in overrides.items() if v is not None}


def build_config(args, profile: HardwareProfile, interactive: bool = False) -> InstallConfig:
    """Pick the input provider for this invocation and collect the config."""
    overrides = config_overrides(args)
    if getattr(args, "config", None):
        provider = FileInputProvider(Path(args.config), **overrides)
    elif interactive:
        defaults = {k: overrides[k] for k in ("base_dir", "project_name") if k in overrides}
        provider = InteractiveInputProvider(console, **defaults)
    else:
        if "domain" not in overrides and profile.primary_ip:
            overrides["domain"] = profile.primary_ip
        provider = StaticInputProvider(InstallConfig(**overrides))
    return provider.collect(profile)


def print_config_summary(config: InstallConfig):
    console.print("📋 Configuration Summary:")
    console.print(f"   Mode:       {config.mode.value}")
    console.print(f"   Domain/IP:  {config.domain}")
    console.print(f"   GPU:        {f'{config.gpu.count} GPU(s)' if config.gpu.enabled else 'disabled'}")
    console.print(f"   Ollama API: {'exposed on port 11434' if config.expose_api else 'internal only'}")
    console.print(f"   Models:     {', '.join(config.model_selection) or 'none'}")
    console.print(f"   Base:       {config.base_dir}")
    console.print()


def print_plan(transition: TransitionPlan):
    table = Table(title="Transition plan", show_header=False)
    table.add_row("From", transition.source.value)
    table.add_row("To", transition.target.value)
    table.add_row("Issue certificate", "yes" if transition.issue_certificates else "no")
    table.add_row("Write configuration", "yes" if transition.write_artifacts else "no")
    table.add_row("Action", transition.action.value)
    for note in transition.notes:
        if note:
            table.add_row("Note", note)
    console.print(table)


def print_final_info(config: InstallConfig, result: TransitionResult, installed: List[str]):
    console.print()
    console.rule()
    console.print("  ✅ OpenWebUI Installation Completed Successfully!")
    console.rule()
    console.print()
    console.print(f"  ▶️  Access OpenWebUI at: {config.public_url}")
    console.print()
    console.print(f"  📝 Installation Mode: {config.mode.value}")
    if config.gpu.enabled:
        console.print(f"  🟩 GPU Acceleration: Enabled ({config.gpu.count} GPU(s))")
    if config.expose_api:
        console.print(f"  ↔️  Ollama API : Exposed (http://{config.domain}:{BACKEND_PORT})")
    if installed:
        console.print(f"  🤖 Installed Models: {' '.join(installed)}")
    console.print()
    console.print("  🔧 Useful Commands:")
    console.print(f"     - View logs:        docker compose -f {config.paths.compose_file} logs -f")
    console.print(f"     - Restart services: docker compose -f {config.paths.compose_file} restart")
    console.print(f"     - Stop services:    docker compose -f {config.paths.compose_file} stop")
    console.print()
    if config.mode == DeploymentMode.ADVANCED:
        console.print("  ⚠️  Note: Using self-signed SSL certificate")
        console.print("     Your browser will show a security warning")
        console.print()
    if result.warnings:
        console.print("⚠️  Warnings:")
        for warning in result.warnings:
            console.print(f"   - {warning}")
        console.print()
    console.print(f"Completed in {result.duration_seconds:.1f}s")


def cmd_install(args):
    """Handle install command."""
    print_banner()
    profile = HardwareProfiler().profile()
    interactive = not (args.config or args.mode or args.domain or args.yes)

    config = build_config(args, profile, interactive=interactive)
    log_file = add_log_file(config.paths)
    console.print(f"📝 Log file: {log_file}\n")

    orchestrator = TransitionOrchestrator(config)
    try:
        orchestrator.check_models(profile)
    except ConfirmationRequired as e:
        console.print(f"❌ {e}")
        console.print("   Re-run with --accept-hardware-warnings / --allow-insufficient-disk to proceed anyway")
        return 1

    print_config_summary(config)
    if not args.yes and not Confirm.ask("Proceed with deployment?", default=True, console=console):
        console.print("Deployment cancelled.")
        return 1

    def progress(msg):
        console.print(f"   {msg}")

    console.print("🚀 Starting deployment...")
    result = orchestrator.apply(
        confirm_ambiguous=args.confirm_ambiguous,
        deploy=not args.no_deploy,
        verify=not args.no_verify,
        progress_callback=progress,
    )
    console.print(f"✅ {result.message}")

    installed = []
    if not args.no_deploy and not args.skip_models and config.model_selection:
        console.print("\n📥 Installing models (may take 5-30 minutes)...")
        results = orchestrator.install_models()
        for model, pulled in results.items():
            console.print(f"   {'✅' if pulled.success else '❌'} {model}")
            if pulled.success:
                installed.append(model)

    print_final_info(config, result, installed)
    return 0


def cmd_plan(args):
    """Handle plan command (dry run)."""
    profile = HardwareProfiler().profile()
    config = build_config(args, profile)
    transition = TransitionOrchestrator(config).plan(confirm_ambiguous=args.confirm_ambiguous)
    print_config_summary(config)
    print_plan(transition)
    return 0


def cmd_detect(args):
    """Handle detect command."""
    base_dir = Path(args.base_dir).expanduser() if args.base_dir else default_base_dir()
    state = DeploymentStateDetector(StackPaths(base_dir)).detect()

    table = Table(title=f"Installation at {base_dir}", show_header=False)
    table.add_row("Host state", state.host_state.value)
    table.add_row("Mode", state.mode.value if state.mode else "-")
    table.add_row("Certificate material", "present" if state.has_cert_material else "absent")
    table.add_row("Services running", "yes" if state.services_running else "no")
    if state.reason:
        table.add_row("Reason", state.reason)
    console.print(table)
    return 0


def cmd_hardware(args):
    """Handle hardware command."""
    profile = HardwareProfiler(disk_path=Path(args.base_dir or default_base_dir())).profile()
    tier = recommend_tier(profile)

    console.print("📊 System Resources:")
    for line in profile.summary():
        console.print(f"   {line}")
    if profile.primary_ip:
        console.print(f"   Primary IP: {profile.primary_ip}")
    console.print()
    console.print(f"💡 Recommended: models {tier.label} (based on {tier.basis.upper()})")
    for note in tier.notes:
        console.print(f"   {note}")
    return 0


def cmd_models(args):
    """Handle models command."""
    if args.action == "check":
        if not args.model_names:
            console.print("❌ Model name(s) required")
            return 1
        profile = HardwareProfiler().profile()
        report = evaluate(profile, args.model_names)

        table = Table(title="Model compatibility")
        table.add_column("Model")
        table.add_column("Download")
        table.add_column("RAM")
        table.add_column("VRAM")
        table.add_column("Status")
        for entry in report.per_model:
            table.add_row(
                entry.model,
                f"{entry.spec.size_gb:g}GB",
                f"{entry.spec.ram_required_gb}GB",
                f"{entry.spec.vram_required_gb}GB",
                f"[yellow]{entry.warning}[/yellow]" if entry.warning else "[green]ok[/green]",
            )
        console.print(table)
        console.print(f"Estimated total download: ~{report.total_download_gb:g}GB "
                      f"(available: {profile.disk_free_gb}GB)")
        if report.disk_insufficient:
            console.print("⚠️  CRITICAL: Not enough disk space!")
        return 1 if report.disk_insufficient or report.has_warnings else 0

    model_manager = ModelManager()
    if not model_manager.is_available():
        console.print("❌ Ollama is not available. Make sure it's running.")
        return 1

    if args.action == "list":
        models = model_manager.list_models()
        if not models:
            console.print("No models installed.")
            return 0
        for name in sorted(models):
            console.print(f"   - {name}")
        return 0

    if not args.model_names:
        console.print("❌ Model name required")
        return 1
    results = model_manager.ensure_models(args.model_names)
    failed = [name for name, result in results.items() if not result.success]
    for name, result in results.items():
        console.print(f"{'✅' if result.success else '❌'} {name}")
    return 1 if failed else 0


def cmd_render(args):
    """Handle render command: print the artifacts without touching the host."""
    profile = HardwareProfiler().profile()
    config = build_config(args, profile)
    config.validate()
    artifacts = TransitionOrchestrator(config).render()
    if args.output:
        print(artifacts.topology_spec if args.output == "compose" else artifacts.proxy_config, end="")
    else:
        print(f"# {config.paths.proxy_config}")
        print(artifacts.proxy_config)
        print(f"# {config.paths.compose_file}")
        print(artifacts.topology_spec, end="")
    return 0


def cmd_verify(args):
    """Handle verify command: container status and readiness checks."""
    base_dir = Path(args.base_dir).expanduser() if args.base_dir else default_base_dir()
    paths = StackPaths(base_dir)
    state = DeploymentStateDetector(paths).detect()
    mode = state.mode or DeploymentMode.SIMPLE

    services = ServiceManager(base_dir).get_all_services()
    table = Table(title="Container Status")
    table.add_column("Service")
    table.add_column("Exists")
    table.add_column("Running")
    all_ok = True
    for name, info in services.items():
        running = info.status == ServiceStatus.RUNNING
        all_ok = all_ok and running
        table.add_row(name, "✓" if info.exists else "✗", "✓" if running else "✗")
    console.print(table)

    checker = HealthChecker()
    for target in default_targets(mode):
        if args.quick:
            target.max_attempts = 1
        outcome = checker.probe(target.service_name, target.endpoint, target.max_attempts,
                                target.interval_seconds, target.check_type)
        ready = outcome == ProbeOutcome.READY
        all_ok = all_ok and ready
        console.print(f"  {'✓' if ready else '⚠'} {target.service_name} "
                      f"{'is responding' if ready else 'is not responding yet'}")

    console.print()
    if all_ok:
        console.print("✅ All checks passed!")
        protocol = "https" if mode == DeploymentMode.ADVANCED else "http"
        host = HardwareProfiler().detect_primary_ip() or "localhost"
        console.print(f"   Access your installation at: {protocol}://{host}")
        return 0
    console.print("⚠️  Some checks had issues (may be normal during startup)")
    console.print("   - View logs: docker compose logs -f")
    console.print("   - Check status: docker compose ps")
    return 1


def _add_config_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--config", help="YAML file with the install configuration")
    parser.add_argument("--mode", choices=[m.value for m in DeploymentMode], help="Deployment mode")
    parser.add_argument("--domain", help="Domain name or IP address (default: detected IP)")
    parser.add_argument("--gpus", type=int, help="Enable NVIDIA GPU passthrough with N GPUs")
    parser.add_argument("--expose-api", action="store_true", help="Publish the Ollama API on port 11434")
    parser.add_argument("--models", help="Comma-separated models to install, e.g. llama3.2:3b,mistral:7b")
    parser.add_argument("--base-dir", help="Installation directory (default: ~/openwebui-stack)")
    parser.add_argument("--project-name", help="docker compose project name")
    parser.add_argument("--confirm-ambiguous", action="store_true",
                        help="Proceed even if the existing installation cannot be classified")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webui-stack",
        description="Open WebUI Stack Deployer - nginx + Open WebUI + Ollama"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Install command
    install_parser = subparsers.add_parser("install", help="Install or reconfigure the stack")
    _add_config_arguments(install_parser)
    install_parser.add_argument("--accept-hardware-warnings", action="store_true",
                                help="Install models even if they exceed this host's RAM/VRAM")
    install_parser.add_argument("--allow-insufficient-disk", action="store_true",
                                help="Install models even if they do not fit on disk")
    install_parser.add_argument("--no-deploy", action="store_true",
                                help="Only write configuration files")
    install_parser.add_argument("--no-verify", action="store_true", help="Skip readiness checks")
    install_parser.add_argument("--skip-models", action="store_true", help="Do not pull models")
    install_parser.add_argument("-y", "--yes", action="store_true",
                                help="Non-interactive, skip confirmation")

    # Plan command
    plan_parser = subparsers.add_parser("plan", help="Show what install would do")
    _add_config_arguments(plan_parser)

    # Detect command
    detect_parser = subparsers.add_parser("detect", help="Classify an existing installation")
    detect_parser.add_argument("--base-dir", help="Installation directory")

    # Hardware command
    hardware_parser = subparsers.add_parser("hardware", help="Show hardware and recommendations")
    hardware_parser.add_argument("--base-dir", help="Installation directory (for free disk)")

    # Models command
    models_parser = subparsers.add_parser("models", help="Model management")
    models_parser.add_argument("action", choices=["list", "check", "pull"],
                               default="list", nargs="?", help="Action")
    models_parser.add_argument("model_names", nargs="*", help="Model name(s)")

    # Render command
    render_parser = subparsers.add_parser("render", help="Print generated configuration")
    _add_config_arguments(render_parser)
    render_parser.add_argument("--output", choices=["compose", "nginx"], help="Print only one file")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Post-install verification")
    verify_parser.add_argument("--base-dir", help="Installation directory")
    verify_parser.add_argument("--quick", action="store_true", help="One attempt per service")

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.verbose)

    commands = {
        "install": cmd_install,
        "plan": cmd_plan,
        "detect": cmd_detect,
        "hardware": cmd_hardware,
        "models": cmd_models,
        "render": cmd_render,
        "verify": cmd_verify,
    }

    handler = commands.get(args.command)
    try:
        return handler(args) or 0
    except StackDeployerError as e:
        logger.error(str(e))
        console.print(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
