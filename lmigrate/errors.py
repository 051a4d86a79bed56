"""
Error classes for lmigrate.

Every error here is fatal to the current sequence run:
- The sequencer records the failing step as failed and stops
- No step after the failing one is attempted
- Retry happens only by invoking the sequencer again

Error handling contract:
- Steps and collaborators raise these errors, they never return them
- The sequencer catches at the step boundary, records the failure, and
  re-raises as StepFailed with the step index and label attached
"""

from typing import Optional


class LmigrateError(Exception):
    """Base exception for lmigrate."""
    pass


class ConfigError(LmigrateError):
    """Configuration validation error."""
    pass


class DuplicateStepIndex(LmigrateError):
    """Two steps in the same step set share an index."""

    def __init__(self, index: int, identifiers: tuple[str, ...]):
        self.index = index
        self.identifiers = identifiers
        super().__init__(
            f"Duplicate step index {index}: {', '.join(identifiers)}"
        )


class InvalidStepIdentifier(LmigrateError):
    """A step identifier does not start with an integer index."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Step identifier has no leading index: {identifier!r}")


class MissingStep(LmigrateError):
    """
    The target holds an unfinished record for a step that is not in the step set.

    Steps above it cannot run until the step is restored and completes.
    """

    def __init__(self, index: int, label: str, status: str):
        self.index = index
        self.label = label
        self.status = status
        super().__init__(
            f"Step {index} ({label}) is {status} on the target but missing "
            f"from the step set; later steps cannot run"
        )


class UnresolvedDependency(LmigrateError):
    """
    A step referenced a component that is not visible to it.

    Raised before any network action when the name is declared in the
    step's requirements, or at the point of use otherwise.
    """

    def __init__(self, name: str, step_index: Optional[int] = None):
        self.name = name
        self.step_index = step_index
        where = f" (step {step_index})" if step_index is not None else ""
        super().__init__(f"Unresolved dependency: {name}{where}")


class UnknownComponent(LmigrateError):
    """Registry lookup for a name that is not bound."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown component: {name}")


class DuplicateComponent(LmigrateError):
    """Registry already holds a binding for this name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Component already registered: {name}")


class DeployFailed(LmigrateError):
    """A deploy or call transaction was rejected by the ledger."""

    def __init__(self, component: str, cause: Optional[BaseException] = None):
        self.component = component
        self.cause = cause
        message = f"Deploy failed for {component}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class GrantFailed(LmigrateError):
    """The ledger rejected an authorization grant."""

    def __init__(
        self,
        grantor: str,
        grantee: str,
        capability: str,
        cause: Optional[BaseException] = None,
    ):
        self.grantor = grantor
        self.grantee = grantee
        self.capability = capability
        self.cause = cause
        message = f"Grant {grantor} -> {grantee} ({capability}) failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StepFailed(LmigrateError):
    """Raised by the sequencer when a step fails; wraps the original error."""

    def __init__(self, index: int, label: str, cause: BaseException):
        self.index = index
        self.label = label
        self.cause = cause
        super().__init__(f"Step {index} ({label}) failed: {cause}")
