"""
Error kinds raised by the orchestrator.

Two families:
- Run-level errors abort the whole run and propagate to the CLI.
- Service-level errors (ServiceStepError) are caught at the per-service task
  boundary, recorded as that service's outcome, and never cross a stage barrier.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for every error raised by service_pipeline."""


# Run-level errors


class ConfigurationError(OrchestratorError):
    """Raised when settings or CLI options are inconsistent."""


class ChangeDetectionError(OrchestratorError):
    """
    Raised when the changed paths between two revisions cannot be retrieved.

    Attributes:
        base_rev: Base revision of the diff
        head_rev: Head revision of the diff
        original_error: The underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        base_rev: str | None = None,
        head_rev: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.base_rev = base_rev
        self.head_rev = head_rev
        self.original_error = original_error

        if base_rev and head_rev:
            message = f"{message} ({base_rev}..{head_rev})"
        if original_error is not None:
            message += f": {original_error}"

        super().__init__(message)


class NoAffectedServices(OrchestratorError):
    """Raised when no registry service has a changed path and the policy is to fail."""

    def __init__(self, base_rev: str, head_rev: str) -> None:
        self.base_rev = base_rev
        self.head_rev = head_rev
        super().__init__(f"No service changed between {base_rev} and {head_rev}")


class BranchRunRejected(OrchestratorError):
    """Raised when branch runs are configured to be rejected outright."""

    def __init__(self, branch: str) -> None:
        self.branch = branch
        super().__init__(f"Runs on branch '{branch}' are rejected by the tag policy")


class RegistryAuthError(OrchestratorError):
    """Raised when the container registry session cannot be established."""

    def __init__(self, registry: str, detail: str = "") -> None:
        self.registry = registry
        self.detail = detail

        message = f"Registry login to '{registry}' failed"
        if detail:
            message += f": {detail}"

        super().__init__(message)


# Service-level errors


class ServiceStepError(OrchestratorError):
    """
    Failure of one step for one service.

    Attributes:
        service: Service identifier the step ran for
        detail: Human readable failure detail
    """

    step = "step"

    def __init__(self, service: str, detail: str) -> None:
        self.service = service
        self.detail = detail
        super().__init__(f"{self.step} failed for '{service}': {detail}")


class TestExecutionError(ServiceStepError):
    """The test runner failed for a reason other than coverage."""

    __test__ = False  # keep pytest from collecting this as a test class
    step = "test"


class CoverageExtractionError(ServiceStepError):
    """No usable coverage value could be read from the coverage report."""

    step = "coverage extraction"


class CoverageBelowThreshold(ServiceStepError):
    """Coverage was extracted but is under the configured threshold."""

    step = "coverage gate"

    def __init__(self, service: str, percent: int, threshold: int) -> None:
        self.percent = percent
        self.threshold = threshold
        super().__init__(service, f"coverage {percent}% is below threshold {threshold}%")


class BuildError(ServiceStepError):
    """The build tool failed or did not leave exactly one artifact."""

    step = "build"


class ImageBuildError(ServiceStepError):
    """The container image could not be built."""

    step = "image build"


class PublishError(ServiceStepError):
    """The container image could not be pushed to the registry."""

    step = "publish"
