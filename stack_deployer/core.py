"""
Core transition logic for the Open WebUI stack.

Handles:
- Planning the move from the detected host state to the requested mode
- Certificate, artifact and .env generation in a fixed order
- Running the deployment action and rolling back to stopped on failure
- Readiness verification and model installation after a deployment
"""

import logging
import os
import pwd
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .certificates import CertificateIssuer
from .config import PROXY_SERVICE, DeploymentMode, InstallConfig
from .exceptions import DeploymentError, DetectionAmbiguousError, GenerationError
from .generator import ConfigArtifacts, ConfigGenerator
from .hardware import HardwareProfile
from .health import HealthChecker, ProbeOutcome, default_targets
from .models import CompatibilityReport, ModelManager, ModelPullResult, evaluate, review_selection
from .services import ServiceManager
from .state import DeploymentState, DeploymentStateDetector, HostState

logger = logging.getLogger(__name__)


class DeployAction(Enum):
    """What the deployment runner has to do after artifacts are written."""
    NONE = "none"
    FULL_DEPLOY = "full-deploy"            # pull images, then up -d
    APPLY_TOPOLOGY = "apply-topology"      # up -d without pulling
    RESTART_PROXY = "restart-proxy"        # proxy config changed only


@dataclass(frozen=True)
class TransitionPlan:
    """Decisions for one run, computed before anything is touched."""
    source: HostState
    target: DeploymentMode
    issue_certificates: bool
    write_artifacts: bool
    action: DeployAction
    notes: tuple = ()

    @property
    def is_noop(self) -> bool:
        return not (self.issue_certificates or self.write_artifacts) and self.action == DeployAction.NONE


def _same_mode_plan(
    source: HostState,
    target: DeploymentMode,
    state: DeploymentState,
    current: ConfigArtifacts,
    rendered: ConfigArtifacts,
    issue_certificates: bool,
) -> TransitionPlan:
    topology_changed = current.topology_spec != rendered.topology_spec
    proxy_changed = current.proxy_config != rendered.proxy_config
    notes = []

    if topology_changed:
        action = DeployAction.APPLY_TOPOLOGY
        notes.append("compose topology changed")
    elif not state.services_running:
        action = DeployAction.APPLY_TOPOLOGY
        notes.append("services are not running")
    elif proxy_changed or issue_certificates:
        action = DeployAction.RESTART_PROXY
        notes.append("proxy configuration or certificate changed")
    else:
        action = DeployAction.NONE
        notes.append("configuration unchanged")

    return TransitionPlan(
        source=source,
        target=target,
        issue_certificates=issue_certificates,
        write_artifacts=topology_changed or proxy_changed,
        action=action,
        notes=tuple(notes),
    )


def plan(
    state: DeploymentState,
    target: DeploymentMode,
    current: ConfigArtifacts,
    rendered: ConfigArtifacts,
    certificate_matches: bool = False,
    confirm_ambiguous: bool = False,
) -> TransitionPlan:
    """
    Decide what a run has to do. Has no side effects.

    Raises DetectionAmbiguousError for an unclassifiable host unless the
    operator confirmed, in which case the fresh-install path is taken.
    """
    source = state.host_state
    advanced = target == DeploymentMode.ADVANCED

    if source == HostState.AMBIGUOUS:
        if not confirm_ambiguous:
            raise DetectionAmbiguousError(state)
        return TransitionPlan(
            source, target, issue_certificates=advanced, write_artifacts=True,
            action=DeployAction.FULL_DEPLOY,
            notes=("ambiguous state confirmed by operator", state.reason),
        )

    if source == HostState.FRESH:
        return TransitionPlan(
            source, target, issue_certificates=advanced, write_artifacts=True,
            action=DeployAction.FULL_DEPLOY, notes=("fresh installation",),
        )

    if source == HostState.EXISTING_SIMPLE and advanced:
        # Stale certificate files of an earlier run are never reused
        return TransitionPlan(
            source, target, issue_certificates=True, write_artifacts=True,
            action=DeployAction.APPLY_TOPOLOGY, notes=("upgrading HTTP to HTTPS",),
        )

    if source == HostState.EXISTING_ADVANCED and not advanced:
        return TransitionPlan(
            source, target, issue_certificates=False, write_artifacts=True,
            action=DeployAction.APPLY_TOPOLOGY,
            notes=("downgrading HTTPS to HTTP, certificate files are left in place",),
        )

    return _same_mode_plan(
        source, target, state, current, rendered,
        issue_certificates=advanced and not certificate_matches,
    )


@dataclass
class TransitionResult:
    """Result of a transition."""
    success: bool
    message: str
    plan: Optional[TransitionPlan] = None
    state: Optional[DeploymentState] = None
    readiness: Dict[str, ProbeOutcome] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class TransitionOrchestrator:
    """
    Brings one installation directory to the requested configuration.

    Every collaborator can be replaced, which is how the tests run without
    Docker.
    """

    def __init__(
        self,
        config: InstallConfig,
        service_manager: Optional[ServiceManager] = None,
        detector: Optional[DeploymentStateDetector] = None,
        generator: Optional[ConfigGenerator] = None,
        issuer: Optional[CertificateIssuer] = None,
        health_checker: Optional[HealthChecker] = None,
    ):
        self.config = config
        paths = config.paths
        self.service_manager = service_manager or ServiceManager(paths.base_dir, config.project_name)
        self.detector = detector or DeploymentStateDetector(paths, self.service_manager)
        self.generator = generator or ConfigGenerator(paths)
        self.issuer = issuer or CertificateIssuer(paths)
        self.health_checker = health_checker or HealthChecker()

    def render(self) -> ConfigArtifacts:
        c = self.config
        return self.generator.render(c.mode, c.domain, c.gpu, c.expose_api, c.project_name)

    def plan(self, confirm_ambiguous: bool = False) -> TransitionPlan:
        """Dry run: validate, detect and plan without writing anything."""
        self.config.validate()
        state = self.detector.detect()
        return self._plan_for(state, self.render(), confirm_ambiguous)

    def _plan_for(self, state: DeploymentState, rendered: ConfigArtifacts,
                  confirm_ambiguous: bool) -> TransitionPlan:
        matches = False
        if self.config.mode == DeploymentMode.ADVANCED:
            matches = self.issuer.matches(self.config.certificate_params)
        return plan(
            state, self.config.mode, self.generator.current(), rendered,
            certificate_matches=matches, confirm_ambiguous=confirm_ambiguous,
        )

    def check_models(self, profile: HardwareProfile) -> CompatibilityReport:
        """
        Evaluate the model selection against the host.

        Raises DiskInsufficientError / CompatibilityWarningError unless the
        config carries the matching override.
        """
        report = evaluate(profile, self.config.model_selection)
        return review_selection(
            report,
            accept_hardware_warnings=self.config.accept_hardware_warnings,
            allow_insufficient_disk=self.config.allow_insufficient_disk,
        )

    def apply(
        self,
        confirm_ambiguous: bool = False,
        deploy: bool = True,
        verify: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> TransitionResult:
        """
        Run the transition.

        Args:
            confirm_ambiguous: Proceed on a host that could not be classified
            deploy: Run the docker compose action (False only writes files)
            verify: Poll services for readiness afterwards
            progress_callback: Optional callback for progress updates

        Returns:
            TransitionResult; readiness timeouts are listed as warnings.

        Raises:
            ValidationError, DetectionAmbiguousError, GenerationError before
            any service is touched; DeploymentError after rolling back.
        """
        start_time = time.time()

        def progress(msg: str):
            logger.info(msg)
            if progress_callback:
                progress_callback(msg)

        progress("Validating configuration...")
        self.config.validate()

        progress("Detecting existing installation...")
        state = self.detector.detect()

        rendered = self.render()
        transition = self._plan_for(state, rendered, confirm_ambiguous)
        for note in transition.notes:
            if note:
                logger.info(f"Plan: {note}")

        result = TransitionResult(success=True, message="", plan=transition, state=state)
        self._prepare_directories()

        if transition.issue_certificates:
            progress("Generating SSL certificate...")
            self.issuer.issue(self.config.certificate_params)

        self.generator.ensure_env_file()

        if transition.write_artifacts:
            progress("Writing configuration files...")
            self.generator.write_artifacts(rendered)
        else:
            logger.info("Configuration files are up to date")

        if not self.config.identity.is_root:
            warning = self._chown_to_identity(self.config.paths.base_dir)
            if warning:
                logger.warning(warning)
                result.warnings.append(warning)

        if deploy:
            self._run_action(transition.action, progress)

        self.config.save()

        if deploy and verify and transition.action != DeployAction.NONE:
            progress("Verifying installation...")
            report = self.health_checker.verify(default_targets(self.config.mode))
            result.readiness = report.outcomes
            result.warnings.extend(report.warnings)

        result.message = self._summary(transition, deploy)
        result.duration_seconds = time.time() - start_time
        return result

    def _run_action(self, action: DeployAction, progress: Callable[[str], None]):
        if action == DeployAction.NONE:
            logger.info("No service changes needed")
            return

        try:
            self.service_manager.ensure_docker()
        except RuntimeError as e:
            raise DeploymentError(str(e))

        try:
            if action == DeployAction.FULL_DEPLOY:
                self.service_manager.pull()
                progress("Starting services...")
                self.service_manager.up(pull_images=True)
            elif action == DeployAction.APPLY_TOPOLOGY:
                progress("Applying new topology (images and volumes are kept)...")
                self.service_manager.up(pull_images=False)
            elif action == DeployAction.RESTART_PROXY:
                progress("Restarting reverse proxy...")
                self.service_manager.restart(PROXY_SERVICE)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or str(e)
            logger.error(f"Deployment failed: {detail}")
            logger.warning("Rolling back: stopping services")
            self.service_manager.stop()
            raise DeploymentError(f"Deployment failed ({action.value}): {detail}")

    def _prepare_directories(self):
        paths = self.config.paths
        directories = [paths.base_dir, paths.conf_dir, paths.logs_dir]
        if self.config.mode == DeploymentMode.ADVANCED:
            directories.append(paths.ssl_dir)
        try:
            for directory in directories:
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GenerationError(f"Cannot create {directory}: {e}")

    def _chown_to_identity(self, base_dir: Path) -> Optional[str]:
        if os.geteuid() != 0:
            return None
        user = self.config.identity.user
        try:
            entry = pwd.getpwnam(user)
        except KeyError:
            return f"User '{user}' does not exist; files stay owned by root"

        try:
            for root, dirs, files in os.walk(base_dir):
                os.chown(root, entry.pw_uid, entry.pw_gid)
                for name in files:
                    os.chown(os.path.join(root, name), entry.pw_uid, entry.pw_gid)
        except OSError as e:
            return f"Could not change ownership of {base_dir} to {user}: {e}"
        return None

    def _summary(self, transition: TransitionPlan, deploy: bool) -> str:
        if transition.is_noop:
            return "Installation already up to date"
        if not deploy:
            return "Configuration written; services were not touched"
        verbs = {
            DeployAction.NONE: "Configuration updated",
            DeployAction.FULL_DEPLOY: "Stack deployed",
            DeployAction.APPLY_TOPOLOGY: "Stack reconfigured",
            DeployAction.RESTART_PROXY: "Reverse proxy restarted",
        }
        return f"{verbs[transition.action]} in {self.config.mode.value} mode at {self.config.public_url}"

    def install_models(
        self,
        model_manager: Optional[ModelManager] = None,
        show_progress: bool = True,
    ) -> Dict[str, ModelPullResult]:
        """Pull the selected models; failures are logged and returned, not raised."""
        if not self.config.model_selection:
            logger.info("No models selected, skipping model installation")
            return {}
        manager = model_manager or ModelManager()
        return manager.ensure_models(self.config.model_selection, show_progress=show_progress)
