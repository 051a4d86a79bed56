"""
ComponentRegistry - name -> address bindings for one target.

The registry provides:
- Loading from persisted ComponentRecords at sequencer start
- Duplicate-safe registration (no silent overwrite)
- Explicit supersede for deliberate redeploys, keeping the history
- Step-bounded visibility: resolve(name, as_of=i) only sees records
  produced by step i itself or by earlier steps that completed
"""

from typing import Iterable, Optional

from lmigrate.errors import DuplicateComponent, UnknownComponent
from lmigrate.schemas import Address, ComponentRecord


class ComponentRegistry:
    """
    Registry of deployed components for one target.

    Records are kept in registration order. The current binding for a name
    is the most recent record for it that is visible at the requested step
    index; older records stay in the history untouched.

    Usage:
        registry = ComponentRegistry(loaded.components)
        registry.register("Platform", "0xabc...", step_index=1)
        registry.resolve("Platform")             # "0xabc..."
        registry.resolve("Platform", as_of=0)    # UnknownComponent

    When `completed` is given, a bounded lookup only sees earlier steps
    listed in it (plus the step doing the lookup, for retries). Components
    left behind by a failed step stay hidden from later steps until that
    step completes. Unbounded lookups (as_of=None) see every record.
    """

    def __init__(
        self,
        records: Iterable[ComponentRecord] = (),
        completed: Optional[Iterable[int]] = None,
    ):
        self._records: list[ComponentRecord] = list(records)
        self._completed: Optional[set[int]] = set(completed) if completed is not None else None

    def complete(self, step_index: int) -> None:
        """Make a step's records visible to later steps."""
        if self._completed is not None:
            self._completed.add(step_index)

    def _visible(self, record: ComponentRecord, as_of: Optional[int]) -> bool:
        if as_of is None or record.step_index == as_of:
            return True
        if record.step_index > as_of:
            return False
        return self._completed is None or record.step_index in self._completed

    @property
    def records(self) -> tuple[ComponentRecord, ...]:
        """All records, including superseded ones, in registration order."""
        return tuple(self._records)

    def lookup(self, name: str, as_of: Optional[int] = None) -> ComponentRecord:
        """
        Get the current record for a name.

        Args:
            name: Component name
            as_of: Only consider records visible to step as_of

        Returns:
            The latest visible ComponentRecord for the name

        Raises:
            UnknownComponent: If no visible record exists
        """
        for record in reversed(self._records):
            if record.name == name and self._visible(record, as_of):
                return record
        raise UnknownComponent(name)

    def resolve(self, name: str, as_of: Optional[int] = None) -> Address:
        """Resolve a name to its address (UnknownComponent if unbound)."""
        return self.lookup(name, as_of=as_of).address

    def has(self, name: str, as_of: Optional[int] = None) -> bool:
        try:
            self.lookup(name, as_of=as_of)
        except UnknownComponent:
            return False
        return True

    def register(
        self,
        name: str,
        address: Address,
        step_index: int,
        kind: Optional[str] = None,
    ) -> ComponentRecord:
        """
        Bind a new name.

        Raises:
            DuplicateComponent: If the name is already bound, by any step
        """
        if self.has(name):
            raise DuplicateComponent(name)
        record = ComponentRecord(
            name=name,
            address=address,
            step_index=step_index,
            kind=kind,
        )
        self._records.append(record)
        return record

    def supersede(
        self,
        name: str,
        address: Address,
        step_index: int,
        kind: Optional[str] = None,
    ) -> ComponentRecord:
        """
        Append a record that replaces the current binding for a name.

        Earlier records are kept; steps bounded below step_index still
        resolve the previous address.

        Raises:
            UnknownComponent: If the name is not visible at step_index
        """
        previous = self.lookup(name, as_of=step_index)
        record = ComponentRecord(
            name=name,
            address=address,
            step_index=step_index,
            kind=kind or previous.kind,
            supersedes=previous.address,
        )
        self._records.append(record)
        return record

    def names(self, as_of: Optional[int] = None) -> list[str]:
        """Names visible at as_of, in first-registration order."""
        seen: list[str] = []
        for record in self._records:
            if not self._visible(record, as_of):
                continue
            if record.name not in seen:
                seen.append(record.name)
        return seen

    def snapshot(self, as_of: Optional[int] = None) -> dict[str, Address]:
        """Current name -> address mapping visible at as_of."""
        return {name: self.resolve(name, as_of=as_of) for name in self.names(as_of)}

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self.names())

    def __repr__(self) -> str:
        return f"ComponentRegistry(components={len(self)}, records={len(self._records)})"
