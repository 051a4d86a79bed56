"""Tests for lmigrate error classes.

Tests cover:
- Error hierarchy
- Attributes carried by each error
- Messages
"""

import pytest

from lmigrate.errors import (
    ConfigError,
    DeployFailed,
    DuplicateComponent,
    DuplicateStepIndex,
    GrantFailed,
    InvalidStepIdentifier,
    LmigrateError,
    MissingStep,
    StepFailed,
    UnknownComponent,
    UnresolvedDependency,
)


ALL_ERRORS = [
    ConfigError,
    DeployFailed,
    DuplicateComponent,
    DuplicateStepIndex,
    GrantFailed,
    InvalidStepIdentifier,
    MissingStep,
    StepFailed,
    UnknownComponent,
    UnresolvedDependency,
]


class TestHierarchy:
    """All errors share the LmigrateError base."""

    @pytest.mark.parametrize("error_cls", ALL_ERRORS)
    def test_is_lmigrate_error(self, error_cls):
        assert issubclass(error_cls, LmigrateError)

    def test_base_is_exception(self):
        assert issubclass(LmigrateError, Exception)

    def test_base_has_message(self):
        assert str(LmigrateError("my message")) == "my message"


class TestAttributes:
    """Errors carry the names and indices needed to report them."""

    def test_duplicate_step_index(self):
        error = DuplicateStepIndex(3, ("3_a", "3_b"))
        assert error.index == 3
        assert error.identifiers == ("3_a", "3_b")
        assert "3_a" in str(error) and "3_b" in str(error)

    def test_invalid_step_identifier(self):
        error = InvalidStepIdentifier("deploy_platform")
        assert error.identifier == "deploy_platform"

    def test_unresolved_dependency_mentions_step(self):
        error = UnresolvedDependency("Platform", step_index=2)
        assert error.name == "Platform"
        assert error.step_index == 2
        assert "step 2" in str(error)

    def test_unknown_and_duplicate_component(self):
        assert UnknownComponent("X").name == "X"
        assert DuplicateComponent("X").name == "X"

    def test_deploy_failed_keeps_cause(self):
        cause = RuntimeError("out of gas")
        error = DeployFailed("History", cause)
        assert error.component == "History"
        assert error.cause is cause
        assert "out of gas" in str(error)

    def test_grant_failed(self):
        error = GrantFailed("History", "Platform", "event-authority")
        assert (error.grantor, error.grantee, error.capability) == (
            "History", "Platform", "event-authority",
        )
        assert error.cause is None

    def test_step_failed_wraps_cause(self):
        cause = DeployFailed("History")
        error = StepFailed(2, "History", cause)
        assert error.index == 2
        assert error.label == "History"
        assert error.cause is cause
        assert str(error).startswith("Step 2 (History) failed")

    def test_missing_step(self):
        error = MissingStep(2, "History", "failed")
        assert (error.index, error.label, error.status) == (2, "History", "failed")
        assert "Step 2 (History) is failed" in str(error)
