"""
Sequencer - ordered, at-most-once application of deployment steps.

The Sequencer implements:
- Step validation (unique indices derived from identifiers)
- Loading persisted records for the target
- Skipping completed steps without touching the ledger
- Strict index-order execution, halting on the first failure
- Migration record transitions and completion notifications

Execution flow:
1. Validate and sort the step set (DuplicateStepIndex on collision)
2. Load MigrationRecords, ComponentRecords and grants for the target
   (an unfinished record for a step missing from the set blocks every
   step above it with MissingStep)
3. For each step not yet completed, in ascending index order:
   a. Mark its MigrationRecord running and persist it
   b. Check declared requirements, then run the step body
   c. On success: mark completed, persist, expose its components to later
      steps, emit StepCompleted
   d. On failure: mark failed, persist, raise StepFailed (no later step runs)

Concurrent runs against the same target are not guarded here; callers
must hold an external deployment lock.
"""

import logging
from typing import Iterable, Optional

from lmigrate.deployer import Deployer
from lmigrate.errors import DuplicateStepIndex, MissingStep, StepFailed
from lmigrate.notify import NotificationSink, StepCompleted
from lmigrate.registry import ComponentRegistry
from lmigrate.schemas import MigrationRecord
from lmigrate.steps import MigrationStep, StepContext, StepResult
from lmigrate.store import LoadedRecords, RecordStore
from lmigrate.wiring import AuthorizationWiring

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "development"


def order_steps(steps: Iterable[MigrationStep]) -> list[MigrationStep]:
    """
    Sort steps by index.

    Raises:
        DuplicateStepIndex: If two steps share an index
    """
    by_index: dict[int, list[MigrationStep]] = {}
    for step in steps:
        by_index.setdefault(step.index, []).append(step)

    for index, group in by_index.items():
        if len(group) > 1:
            raise DuplicateStepIndex(index, tuple(s.identifier for s in group))

    return [by_index[i][0] for i in sorted(by_index)]


class SequenceResult:
    """Result of a sequencer run that did not fail."""

    def __init__(
        self,
        target: str,
        applied: list[MigrationRecord],
        skipped: list[int],
        notifications: list[StepCompleted],
        registry: ComponentRegistry,
        results: Optional[dict[int, StepResult]] = None,
    ):
        self.target = target
        self.applied = applied
        self.skipped = skipped
        self.notifications = notifications
        self.registry = registry
        # step index -> components and grants that step produced
        self.results = results or {}

    @property
    def applied_indices(self) -> list[int]:
        return [r.index for r in self.applied]

    def __repr__(self) -> str:
        return (
            f"SequenceResult(target={self.target}, applied={self.applied_indices}, "
            f"skipped={self.skipped})"
        )


class Sequencer:
    """
    Applies deployment steps to one target.

    Usage:
        sequencer = Sequencer(
            store=FileRecordStore(".lmigrate"),
            deployer=my_deployer,
            target="mainnet",
            sinks=[LoggingSink()],
        )
        result = sequencer.run(load_steps("migrations"))
    """

    def __init__(
        self,
        store: RecordStore,
        deployer: Deployer,
        target: str = DEFAULT_TARGET,
        sinks: Optional[Iterable[NotificationSink]] = None,
        capability_methods: Optional[dict[str, str]] = None,
    ):
        """
        Initialize the sequencer.

        Args:
            store: RecordStore holding this target's records
            deployer: Ledger capability used by the steps
            target: Target ledger name
            sinks: Callables receiving one StepCompleted per completed step
            capability_methods: capability -> grantor method for grants
        """
        self._store = store
        self._deployer = deployer
        self._target = target
        self._sinks = list(sinks or [])
        self._capability_methods = capability_methods

    @property
    def target(self) -> str:
        return self._target

    def load(self) -> LoadedRecords:
        return self._store.load_records(self._target)

    def status(
        self,
        steps: Iterable[MigrationStep],
    ) -> list[tuple[MigrationStep, Optional[MigrationRecord]]]:
        """Each step in index order, paired with its persisted record (or None)."""
        loaded = self.load()
        return [(step, loaded.migration(step.index)) for step in order_steps(steps)]

    def plan(
        self,
        steps: Iterable[MigrationStep],
        to_index: Optional[int] = None,
    ) -> list[MigrationStep]:
        """
        Steps a run would attempt, without executing anything.

        Steps above an unfinished record that is missing from the step set
        are left out, since a run stops there.

        Args:
            steps: The full step set
            to_index: Stop after this index (inclusive)
        """
        ordered = order_steps(steps)
        loaded = self.load()
        blocker = _blocking_record(ordered, loaded)
        return [
            step for step in ordered
            if step.index not in loaded.completed_indices
            and (to_index is None or step.index <= to_index)
            and (blocker is None or step.index < blocker.index)
        ]

    def run(
        self,
        steps: Iterable[MigrationStep],
        to_index: Optional[int] = None,
    ) -> SequenceResult:
        """
        Apply every step that is not yet completed.

        Args:
            steps: The full step set (any order)
            to_index: Stop after this index (inclusive)

        Returns:
            SequenceResult with applied records, skipped indices,
            notifications and per-step results

        Raises:
            DuplicateStepIndex: If two steps share an index (nothing runs)
            MissingStep: Before running a step above an unfinished record
                whose step is not in the step set
            StepFailed: If a step fails; its record is saved as failed first
        """
        ordered = order_steps(steps)
        loaded = self.load()
        self._check_records(ordered, loaded)
        blocker = _blocking_record(ordered, loaded)

        registry = ComponentRegistry(loaded.components, completed=loaded.completed_indices)
        wiring = AuthorizationWiring(
            registry,
            self._deployer,
            grants=loaded.grants,
            capability_methods=self._capability_methods,
            on_grant=lambda grant: self._store.save_record(self._target, grant),
        )

        applied: list[MigrationRecord] = []
        skipped: list[int] = []
        notifications: list[StepCompleted] = []
        results: dict[int, StepResult] = {}

        for step in ordered:
            if to_index is not None and step.index > to_index:
                break

            record = loaded.migration(step.index)
            if record is not None and record.is_completed:
                logger.debug(f"Skipping step {step.index} ({step.label}): already completed")
                skipped.append(step.index)
                continue

            if blocker is not None and step.index > blocker.index:
                raise MissingStep(blocker.index, blocker.label, blocker.status.value)

            if record is None:
                record = MigrationRecord(index=step.index, label=step.label)
            record.label = step.label

            results[step.index] = self._run_step(step, record, registry, wiring)
            registry.complete(step.index)

            event = StepCompleted(
                index=step.index,
                label=step.label,
                completed_at=record.applied_at,
            )
            applied.append(record)
            notifications.append(event)
            for sink in self._sinks:
                sink(event)

        logger.info(
            f"Target {self._target}: applied {len(applied)} step(s), "
            f"skipped {len(skipped)} completed"
        )
        return SequenceResult(self._target, applied, skipped, notifications, registry, results)

    def _run_step(
        self,
        step: MigrationStep,
        record: MigrationRecord,
        registry: ComponentRegistry,
        wiring: AuthorizationWiring,
    ) -> StepResult:
        """Run one step, persisting its record around the attempt."""
        record.mark_running()
        self._store.save_record(self._target, record)
        logger.info(f"Running step {step.index} ({step.label}), attempt {record.attempts}")

        ctx = StepContext(
            step,
            registry,
            self._deployer,
            wiring,
            on_component=lambda component: self._store.save_record(self._target, component),
        )
        try:
            ctx.check_requirements()
            step.run(ctx)
        except Exception as e:
            record.mark_failed(e)
            self._store.save_record(self._target, record)
            logger.error(
                f"Step {step.index} ({step.label}) failed: {e}",
                extra={"event": "step_failed", "metadata": record.to_dict()},
            )
            raise StepFailed(step.index, step.label, e) from e

        record.mark_completed()
        self._store.save_record(self._target, record)

        result = ctx.result()
        logger.info(
            f"Step {step.index} ({step.label}) produced {len(result.components)} "
            f"component(s), {len(result.grants)} grant(s)",
            extra={
                "event": "step_result",
                "metadata": {
                    "index": step.index,
                    "components": [c.to_dict() for c in result.components],
                    "grants": [g.to_dict() for g in result.grants],
                },
            },
        )
        return result

    def _check_records(self, ordered: list[MigrationStep], loaded: LoadedRecords) -> None:
        """Warn about persisted state that does not line up with the step set."""
        declared = {step.index for step in ordered}
        for record in loaded.migrations:
            if record.index not in declared and record.is_completed:
                logger.warning(
                    f"Target {self._target} has a record for step {record.index} "
                    f"({record.label}) that is not in the step set"
                )

        completed = loaded.completed_indices
        if not completed:
            return
        highest = max(completed)
        for step in ordered:
            if step.index < highest and step.index not in completed:
                logger.warning(
                    f"Step {step.index} ({step.label}) is pending below completed "
                    f"step {highest}; it will not see components from later steps"
                )


def _blocking_record(
    ordered: list[MigrationStep],
    loaded: LoadedRecords,
) -> Optional[MigrationRecord]:
    """Lowest unfinished record whose step is not in the step set, if any."""
    declared = {step.index for step in ordered}
    for record in loaded.migrations:
        if record.index not in declared and not record.is_completed:
            return record
    return None
