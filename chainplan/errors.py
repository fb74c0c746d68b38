from typing import List, Optional


class DeploymentConfigError(ValueError):
    """Raised when a deployment configuration is invalid; nothing is submitted."""


class CycleError(DeploymentConfigError):
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class UnknownComponentError(DeploymentConfigError):
    def __init__(self, name: str, referenced_by: Optional[str] = None):
        self.name = name
        self.referenced_by = referenced_by
        message = f"Unknown component '{name}'"
        if referenced_by:
            message += f" referenced by '{referenced_by}'"
        super().__init__(message)


class ArtifactNotFoundError(DeploymentConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No artifact found with name '{name}'.")


class UnsafeLinkingError(DeploymentConfigError):
    """Raised when a proxied component links an external library without opting in."""


class DeploymentRuntimeError(RuntimeError):
    """A step or wiring call failed; the ledger is preserved for resume."""

    def __init__(self, component: str, message: str):
        self.component = component
        self.reason = message
        super().__init__(f"{component}: {message}")


class SubmissionError(DeploymentRuntimeError):
    pass


class ConfirmationTimeoutError(DeploymentRuntimeError):
    pass


class ConfirmationFailedError(DeploymentRuntimeError):
    pass


class WiringError(DeploymentRuntimeError):
    def __init__(self, edge, message: str, results=None):
        self.edge = edge
        self.results = results or list()
        super().__init__(component=edge.target, message=f"{edge} failed: {message}")


class RunCancelled(DeploymentRuntimeError):
    pass


class UnresolvedAddressError(AssertionError):
    """
    Raised when an address is requested for a component that is not confirmed.
    Correct ordering makes this unreachable; treat it as a programming error.
    """

    def __init__(self, name: str, reason: str = "is not confirmed"):
        self.name = name
        super().__init__(f"Address of '{name}' cannot be resolved: component {reason}.")


class InvalidTransitionError(AssertionError):
    pass


class DoubleSubmissionError(AssertionError):
    pass
