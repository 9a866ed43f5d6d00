"""
Readiness verification for the deployed stack.

Handles:
- Bounded readiness polling per service (explicit state machine)
- HTTP checks from the host and command checks inside containers

A probe that runs out of attempts is reported as TIMEOUT, which callers
treat as a warning: services may still be initializing.
"""

import logging
import subprocess
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List

import requests
from urllib3.exceptions import InsecureRequestWarning

from .config import (
    BACKEND_PORT,
    BACKEND_SERVICE,
    PROXY_SERVICE,
    UI_PORT,
    UI_SERVICE,
    DeploymentMode,
)

logger = logging.getLogger(__name__)


class ProbeOutcome(Enum):
    READY = "ready"
    TIMEOUT = "timeout"


class ReadinessState(Enum):
    PENDING = "pending"
    READY = "ready"
    TIMED_OUT = "timed-out"


class ReadinessPoller:
    """
    Pending -> Ready, or Pending -> TimedOut after max_attempts failed checks.

    Terminal states never change again.
    """

    def __init__(self, max_attempts: int):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.attempts = 0
        self.state = ReadinessState.PENDING

    @property
    def done(self) -> bool:
        return self.state != ReadinessState.PENDING

    def record(self, ready: bool) -> ReadinessState:
        """Feed the result of one check."""
        if self.done:
            return self.state
        self.attempts += 1
        if ready:
            self.state = ReadinessState.READY
        elif self.attempts >= self.max_attempts:
            self.state = ReadinessState.TIMED_OUT
        return self.state


def wait_until_ready(
    check: Callable[[], bool],
    max_attempts: int,
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> ProbeOutcome:
    """Run check until it passes or the attempt ceiling is reached."""
    poller = ReadinessPoller(max_attempts)
    while not poller.done:
        poller.record(check())
        if not poller.done:
            sleep(interval_seconds)
    return ProbeOutcome.READY if poller.state == ReadinessState.READY else ProbeOutcome.TIMEOUT


@dataclass
class ReadinessTarget:
    """What to poll for one service and how long to keep trying."""
    service_name: str
    endpoint: str
    max_attempts: int
    interval_seconds: float = 2
    check_type: str = "command"  # command (inside the container) or http (from the host)
    timeout_seconds: int = 5
    hint: str = ""


def default_targets(mode: DeploymentMode) -> List[ReadinessTarget]:
    """Probe budgets for ollama, open-webui and nginx."""
    protocol = "https" if mode == DeploymentMode.ADVANCED else "http"
    return [
        ReadinessTarget(
            service_name=BACKEND_SERVICE,
            endpoint=f"http://localhost:{BACKEND_PORT}/api/tags",
            max_attempts=30,
            hint="Ollama may still be starting",
        ),
        ReadinessTarget(
            service_name=UI_SERVICE,
            endpoint=f"http://localhost:{UI_PORT}",
            max_attempts=60,
            hint=f"OpenWebUI is taking longer than expected, check logs: docker logs {UI_SERVICE}",
        ),
        ReadinessTarget(
            service_name=PROXY_SERVICE,
            endpoint=f"{protocol}://localhost",
            max_attempts=10,
            check_type="http",
            hint="Nginx may have issues",
        ),
    ]


@dataclass
class VerificationReport:
    outcomes: Dict[str, ProbeOutcome] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return all(o == ProbeOutcome.READY for o in self.outcomes.values())


class HealthChecker:
    """
    Polls the stack's services after a deployment.

    Checks run one service at a time; sleep is injectable so tests do not
    wait.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.sleep = sleep

    def probe(
        self,
        service_name: str,
        endpoint: str,
        max_attempts: int,
        interval_seconds: float,
        check_type: str = "command",
    ) -> ProbeOutcome:
        """Poll one service until ready or out of attempts."""
        target = ReadinessTarget(service_name, endpoint, max_attempts, interval_seconds, check_type)
        logger.info(f"Checking {service_name}...")
        outcome = wait_until_ready(
            lambda: self.check(target), max_attempts, interval_seconds, self.sleep
        )
        if outcome == ProbeOutcome.READY:
            logger.info(f"{service_name} is responding")
        return outcome

    def check(self, target: ReadinessTarget) -> bool:
        """Perform a single check."""
        if target.check_type == "http":
            return self._check_http(target)
        if target.check_type == "command":
            return self._check_command(target)
        raise ValueError(f"Unknown check type: {target.check_type}")

    def _check_http(self, target: ReadinessTarget) -> bool:
        """Perform HTTP check; the self-signed certificate is not verified."""
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", InsecureRequestWarning)
                response = requests.get(target.endpoint, timeout=target.timeout_seconds, verify=False)
            return response.status_code < 400
        except requests.RequestException:
            return False

    def _check_command(self, target: ReadinessTarget) -> bool:
        """Run curl inside the service's container."""
        try:
            result = subprocess.run(
                ["docker", "exec", target.service_name, "curl", "-sf", target.endpoint],
                capture_output=True,
                text=True,
                timeout=target.timeout_seconds,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False
        return result.returncode == 0

    def verify(self, targets: List[ReadinessTarget]) -> VerificationReport:
        """Probe every target in order; timeouts become warnings."""
        report = VerificationReport()
        for target in targets:
            outcome = self.probe(
                target.service_name,
                target.endpoint,
                target.max_attempts,
                target.interval_seconds,
                target.check_type,
            )
            report.outcomes[target.service_name] = outcome
            if outcome == ProbeOutcome.TIMEOUT:
                message = target.hint or f"{target.service_name} did not become ready"
                logger.warning(message)
                report.warnings.append(message)
        return report
