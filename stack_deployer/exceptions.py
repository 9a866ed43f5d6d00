"""
Exception hierarchy for the stack deployer.

Validation and generation errors halt a transition before running services
are touched. Compatibility and disk errors only signal that an explicit
operator confirmation is missing.
"""

from typing import Any, Optional


class StackDeployerError(Exception):
    """Base class for all deployer errors."""


class ValidationError(StackDeployerError):
    """Input configuration is malformed (empty domain, bad GPU count, ...)."""


class GenerationError(StackDeployerError):
    """An artifact or certificate could not be produced or written."""


class DeploymentError(StackDeployerError):
    """The deployment runner failed; services were stopped."""


class DetectionAmbiguousError(StackDeployerError):
    """Host state does not cleanly match a fresh, simple or advanced install."""

    def __init__(self, state: Any):
        self.state = state
        super().__init__(
            f"Existing installation could not be classified: {state.reason}"
        )


class ConfirmationRequired(StackDeployerError):
    """Proceeding needs an explicit operator override."""

    def __init__(self, message: str, report: Optional[Any] = None):
        self.report = report
        super().__init__(message)


class CompatibilityWarningError(ConfirmationRequired):
    """Selected models exceed the hardware of this host."""


class DiskInsufficientError(ConfirmationRequired):
    """Selected models do not fit on the free disk space."""
