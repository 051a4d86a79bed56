"""Tests for ComponentRegistry."""

import pytest

from lmigrate.errors import DuplicateComponent, UnknownComponent
from lmigrate.registry import ComponentRegistry
from lmigrate.schemas import ComponentRecord


@pytest.fixture
def registry():
    registry = ComponentRegistry()
    registry.register("Platform", "0xp", step_index=1)
    registry.register("History", "0xh", step_index=2)
    return registry


class TestRegisterResolve:
    """register() and resolve() contracts."""

    def test_resolve_registered(self, registry):
        assert registry.resolve("Platform") == "0xp"
        assert registry.resolve("History") == "0xh"

    def test_resolve_unknown(self, registry):
        with pytest.raises(UnknownComponent) as exc:
            registry.resolve("Voting")
        assert exc.value.name == "Voting"

    def test_duplicate_register_rejected(self, registry):
        with pytest.raises(DuplicateComponent):
            registry.register("Platform", "0xother", step_index=3)
        # No silent overwrite
        assert registry.resolve("Platform") == "0xp"

    def test_register_returns_record(self):
        record = ComponentRegistry().register("Platform", "0xp", step_index=1, kind="ChronoBankPlatform")
        assert record == ComponentRecord(
            name="Platform",
            address="0xp",
            step_index=1,
            kind="ChronoBankPlatform",
            deployed_at=record.deployed_at,
        )

    def test_contains_and_len(self, registry):
        assert "Platform" in registry
        assert "Voting" not in registry
        assert len(registry) == 2


class TestVisibility:
    """as_of bounds lookups to records from earlier (or the same) steps."""

    def test_later_step_record_hidden(self, registry):
        with pytest.raises(UnknownComponent):
            registry.resolve("History", as_of=1)

    def test_same_step_record_visible(self, registry):
        assert registry.resolve("History", as_of=2) == "0xh"

    def test_snapshot_bounded(self, registry):
        assert registry.snapshot(as_of=1) == {"Platform": "0xp"}
        assert registry.snapshot() == {"Platform": "0xp", "History": "0xh"}

    def test_has(self, registry):
        assert registry.has("History")
        assert not registry.has("History", as_of=1)


class TestSupersede:
    """Redeploys append a record instead of rewriting the old one."""

    def test_supersede_keeps_history(self, registry):
        record = registry.supersede("Platform", "0xp2", step_index=5)
        assert record.supersedes == "0xp"
        assert registry.resolve("Platform") == "0xp2"
        assert [r.address for r in registry.records if r.name == "Platform"] == ["0xp", "0xp2"]

    def test_earlier_steps_still_see_old_address(self, registry):
        registry.supersede("Platform", "0xp2", step_index=5)
        assert registry.resolve("Platform", as_of=4) == "0xp"

    def test_supersede_unknown(self, registry):
        with pytest.raises(UnknownComponent):
            registry.supersede("Voting", "0xv", step_index=5)

    def test_supersede_inherits_kind(self):
        registry = ComponentRegistry()
        registry.register("Platform", "0xp", step_index=1, kind="ChronoBankPlatform")
        assert registry.supersede("Platform", "0xp2", step_index=2).kind == "ChronoBankPlatform"


class TestLoading:
    """Registry state comes from persisted records."""

    def test_load_from_records(self):
        records = [
            ComponentRecord(name="Platform", address="0xp", step_index=1),
            ComponentRecord(name="Platform", address="0xp2", step_index=4, supersedes="0xp"),
        ]
        registry = ComponentRegistry(records)
        assert registry.resolve("Platform") == "0xp2"
        assert registry.names() == ["Platform"]
        assert registry.records == tuple(records)


class TestCompletedVisibility:
    """With a completed set, later steps only see finished steps' records."""

    @pytest.fixture
    def partial(self):
        records = [
            ComponentRecord(name="Platform", address="0xp", step_index=1),
            ComponentRecord(name="Partial", address="0xq", step_index=2),
        ]
        return ComponentRegistry(records, completed={1})

    def test_unfinished_step_hidden_from_later_steps(self, partial):
        assert partial.snapshot(as_of=3) == {"Platform": "0xp"}
        with pytest.raises(UnknownComponent):
            partial.resolve("Partial", as_of=3)

    def test_step_sees_its_own_records(self, partial):
        assert partial.resolve("Partial", as_of=2) == "0xq"

    def test_unbounded_lookup_sees_everything(self, partial):
        assert partial.resolve("Partial") == "0xq"
        assert "Partial" in partial

    def test_complete_exposes_records(self, partial):
        partial.complete(2)
        assert partial.resolve("Partial", as_of=3) == "0xq"

    def test_no_completed_set_means_index_bound_only(self):
        registry = ComponentRegistry([ComponentRecord(name="Partial", address="0xq", step_index=2)])
        assert registry.resolve("Partial", as_of=3) == "0xq"
