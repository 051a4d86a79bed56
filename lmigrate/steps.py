"""
Deployment steps - definition, discovery and execution context.

A MigrationStep is identified by a string that starts with its index
("3_deploy_chronobank_platform" -> 3). Its body is a function taking a
StepContext; everything the step touches goes through that context:

    @migration("2_deploy_history", label="History", requires=["Platform"])
    def deploy_history(ctx):
        history = ctx.deploy("History")
        ctx.grant("History", "Platform", "event-authority")
        ctx.call("Platform", "setupEventsHistory", history)

Steps can also live in a directory as NNN_name.py modules defining
migrate(ctx), with optional LABEL and REQUIRES module attributes.
"""

import importlib.util
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from lmigrate.deployer import Deployer
from lmigrate.errors import (
    ConfigError,
    DeployFailed,
    DuplicateComponent,
    InvalidStepIdentifier,
    UnknownComponent,
    UnresolvedDependency,
)
from lmigrate.registry import ComponentRegistry
from lmigrate.schemas import Address, AuthorizationGrant, ComponentRecord
from lmigrate.wiring import AuthorizationWiring

logger = logging.getLogger(__name__)

# Leading integer of a step identifier
STEP_INDEX_PATTERN = re.compile(r"^(\d+)")


def parse_step_index(identifier: str) -> int:
    """
    Extract the step index from an identifier.

    >>> parse_step_index("153_deploy_chronomint_voting_backend_gateway")
    153

    Raises:
        InvalidStepIdentifier: If the identifier does not start with digits
    """
    match = STEP_INDEX_PATTERN.match(identifier)
    if not match:
        raise InvalidStepIdentifier(identifier)
    return int(match.group(1))


def _default_label(identifier: str) -> str:
    return STEP_INDEX_PATTERN.sub("", identifier).lstrip("_-. ") or identifier


@dataclass(frozen=True)
class MigrationStep:
    """
    One deployment step.

    Attributes:
        identifier: Declared identifier; its leading integer is the index
        run: Step body, called with a StepContext
        label: Label used in records and notifications
        requires: Component names that must be visible before the step runs
        index: Derived from identifier
    """
    identifier: str
    run: Callable[["StepContext"], Any]
    label: str = ""
    requires: tuple[str, ...] = ()
    index: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "index", parse_step_index(self.identifier))
        object.__setattr__(self, "requires", tuple(self.requires))
        if not self.label:
            object.__setattr__(self, "label", _default_label(self.identifier))


def migration(
    identifier: str,
    label: Optional[str] = None,
    requires: Iterable[str] = (),
) -> Callable[[Callable[["StepContext"], Any]], MigrationStep]:
    """Decorator turning a function into a MigrationStep."""
    def decorator(func: Callable[["StepContext"], Any]) -> MigrationStep:
        return MigrationStep(
            identifier=identifier,
            run=func,
            label=label or "",
            requires=tuple(requires),
        )
    return decorator


def load_steps(directory: Path | str) -> list[MigrationStep]:
    """
    Load steps from NNN_name.py modules in a directory.

    Files starting with "_" are ignored. Each module must define a
    migrate(ctx) function; LABEL and REQUIRES are optional.

    Returns:
        Steps in file-name order (the sequencer sorts by index)

    Raises:
        ConfigError: If the directory is missing or a module has no migrate()
        InvalidStepIdentifier: If a file name has no leading index
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigError(f"Migrations directory not found: {directory}")

    steps = []
    for path in sorted(directory.glob("*.py")):
        if path.name.startswith("_"):
            continue
        parse_step_index(path.stem)

        spec = importlib.util.spec_from_file_location(f"lmigrate_migration_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise ConfigError(f"Cannot load migration module: {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        run = getattr(module, "migrate", None)
        if not callable(run):
            raise ConfigError(f"{path.name}: missing migrate(ctx) function")

        steps.append(MigrationStep(
            identifier=path.stem,
            run=run,
            label=getattr(module, "LABEL", ""),
            requires=tuple(getattr(module, "REQUIRES", ())),
        ))
        logger.debug(f"Loaded migration {path.name}")
    return steps


@dataclass(frozen=True)
class StepResult:
    """What one step attempt produced."""
    components: tuple[ComponentRecord, ...] = ()
    grants: tuple[AuthorizationGrant, ...] = ()


class StepContext:
    """
    Everything a step body may use.

    Component lookups are bounded to the step's own index, so a step sees
    components produced by earlier steps and by itself, never by later
    ones. Every confirmed deploy is registered (and handed to on_component
    for persistence) before the next operation in the step runs.
    """

    def __init__(
        self,
        step: MigrationStep,
        registry: ComponentRegistry,
        deployer: Deployer,
        wiring: AuthorizationWiring,
        on_component: Optional[Callable[[ComponentRecord], None]] = None,
    ):
        self.step = step
        self._registry = registry
        self._deployer = deployer
        self._wiring = wiring
        self._on_component = on_component
        self._components: list[ComponentRecord] = []
        self._grants: list[AuthorizationGrant] = []
        self._touched: set[str] = set()

    @property
    def index(self) -> int:
        return self.step.index

    @property
    def label(self) -> str:
        return self.step.label

    @property
    def components(self) -> dict[str, Address]:
        """Registry snapshot visible to this step."""
        return self._registry.snapshot(as_of=self.index)

    def has(self, name: str) -> bool:
        return self._registry.has(name, as_of=self.index)

    def resolve(self, name: str) -> Address:
        """
        Address of a component visible to this step.

        Raises:
            UnresolvedDependency: If the name is unbound or only produced
                by a later step
        """
        try:
            return self._registry.resolve(name, as_of=self.index)
        except UnknownComponent as e:
            raise UnresolvedDependency(name, self.index) from e

    def check_requirements(self) -> None:
        """Fail before any network action if a declared dependency is missing."""
        for name in self.step.requires:
            self.resolve(name)

    def _record(self, record: ComponentRecord) -> None:
        self._components.append(record)
        if self._on_component is not None:
            self._on_component(record)

    def _deploy(self, name: str, kind: str, args: tuple) -> Address:
        try:
            return self._deployer.deploy(kind, list(args))
        except DeployFailed as e:
            if e.component == name:
                raise
            raise DeployFailed(name, e.cause or e) from e
        except Exception as e:
            raise DeployFailed(name, e) from e

    def deploy(self, name: str, *constructor_args: Any, kind: Optional[str] = None) -> Address:
        """
        Deploy a component and register it under `name`.

        If this step registered `name` on an earlier failed attempt, the
        existing address is reused and nothing is sent to the ledger.

        Raises:
            DuplicateComponent: If `name` is bound by another step, or was
                already deployed in this attempt
            DeployFailed: If the ledger rejects the deploy
        """
        if name in self._touched:
            raise DuplicateComponent(name)

        if self._registry.has(name):
            existing = self._registry.lookup(name)
            if existing.step_index != self.index:
                raise DuplicateComponent(name)
            logger.info(f"Reusing {name} at {existing.address} from an earlier attempt")
            self._touched.add(name)
            return existing.address

        address = self._deploy(name, kind or name, constructor_args)
        record = self._registry.register(name, address, self.index, kind=kind or name)
        self._touched.add(name)
        self._record(record)
        logger.info(f"Deployed {name} at {address}")
        return address

    def redeploy(self, name: str, *constructor_args: Any, kind: Optional[str] = None) -> Address:
        """
        Deploy a fresh instance of an existing component and supersede it.

        Earlier records stay in the registry history.

        Raises:
            UnresolvedDependency: If `name` is not visible to this step
            DeployFailed: If the ledger rejects the deploy
        """
        if name in self._touched:
            raise DuplicateComponent(name)
        current = self._registry.lookup(name) if self._registry.has(name) else None
        if current is not None and current.step_index == self.index and current.supersedes:
            logger.info(f"Reusing redeployed {name} at {current.address} from an earlier attempt")
            self._touched.add(name)
            return current.address

        previous = self._registry.lookup(name, as_of=self.index) if self.has(name) else None
        if previous is None:
            raise UnresolvedDependency(name, self.index)

        address = self._deploy(name, kind or previous.kind or name, constructor_args)
        record = self._registry.supersede(name, address, self.index, kind=kind)
        self._touched.add(name)
        self._record(record)
        logger.info(f"Redeployed {name} at {address} (was {record.supersedes})")
        return address

    def call(self, name: str, method: str, *args: Any) -> Any:
        """
        Call a method on a component visible to this step.

        Raises:
            UnresolvedDependency: If `name` is not visible
            DeployFailed: If the ledger rejects the call
        """
        address = self.resolve(name)
        try:
            return self._deployer.call(address, method, list(args))
        except DeployFailed as e:
            if e.component == name:
                raise
            raise DeployFailed(name, e.cause or e) from e
        except Exception as e:
            raise DeployFailed(name, e) from e

    def grant(self, grantor: str, grantee: str, capability: str) -> AuthorizationGrant:
        """
        Grant `capability` from grantor to grantee (no-op if already held).

        Raises:
            UnknownComponent: If either name does not resolve
            GrantFailed: If the ledger rejects the grant
        """
        held = len(self._wiring.grants)
        record = self._wiring.grant(grantor, grantee, capability, step_index=self.index)
        # Only newly issued grants belong to this step's result
        if len(self._wiring.grants) > held:
            self._grants.append(record)
        return record

    def result(self) -> StepResult:
        return StepResult(
            components=tuple(self._components),
            grants=tuple(self._grants),
        )
