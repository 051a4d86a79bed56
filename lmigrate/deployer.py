"""
Deployer - the ledger capability consumed by deployment steps.

A Deployer turns "deploy this kind" and "call this method" into confirmed
ledger transactions. Both operations block until the ledger confirms or
rejects; timeouts and signing belong to the implementation.

Implementations:
- InMemoryLedger: deterministic fake ledger for dry runs and tests
- Anything importable as "module:factory" (see load_deployer)
"""

import hashlib
import importlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from lmigrate.errors import ConfigError, DeployFailed
from lmigrate.schemas import Address

logger = logging.getLogger(__name__)


class Deployer(ABC):
    """
    Abstract ledger capability.

    Implementations must raise DeployFailed when the ledger rejects a
    transaction. Any other exception is wrapped into DeployFailed by the
    step context.
    """

    @abstractmethod
    def deploy(self, kind: str, constructor_args: Sequence[Any] = ()) -> Address:
        """
        Deploy a component and wait for confirmation.

        Args:
            kind: Artifact kind to deploy
            constructor_args: Positional constructor arguments

        Returns:
            The address of the deployed component

        Raises:
            DeployFailed: If the deploy transaction is rejected
        """
        pass

    @abstractmethod
    def call(self, address: Address, method: str, args: Sequence[Any] = ()) -> Any:
        """
        Invoke a method on a deployed component and wait for confirmation.

        Args:
            address: Target component address
            method: Method name
            args: Positional arguments

        Returns:
            The call result (implementation-defined)

        Raises:
            DeployFailed: If the transaction is rejected
        """
        pass


class InMemoryLedger(Deployer):
    """
    In-memory ledger for testing and dry-run mode.

    Addresses are derived from the kind and a per-ledger nonce, so the same
    sequence of deploys always yields the same addresses. Every deploy and
    call is appended to `transactions` so tests can count side effects.

    Calls to the grant method (default "authorize") add the first argument to
    the target's authorized set; any other call stores its args under the
    method name in the target's state.
    """

    def __init__(self, grant_method: str = "authorize"):
        self._nonce = 0
        self._grant_method = grant_method
        self._rejected_kinds: set[str] = set()
        self._rejected_methods: set[str] = set()
        self.components: dict[Address, str] = {}
        self.state: dict[Address, dict[str, Any]] = {}
        self.authorized: dict[Address, list[Address]] = {}
        self.transactions: list[tuple[str, ...]] = []

    def reject(self, kind: Optional[str] = None, method: Optional[str] = None) -> None:
        """Make future deploys of `kind` (or calls to `method`) fail."""
        if kind is not None:
            self._rejected_kinds.add(kind)
        if method is not None:
            self._rejected_methods.add(method)

    def accept(self, kind: Optional[str] = None, method: Optional[str] = None) -> None:
        """Undo a previous reject()."""
        self._rejected_kinds.discard(kind)
        self._rejected_methods.discard(method)

    def deploy(self, kind: str, constructor_args: Sequence[Any] = ()) -> Address:
        if kind in self._rejected_kinds:
            raise DeployFailed(kind, RuntimeError("transaction rejected"))
        self._nonce += 1
        digest = hashlib.sha256(f"{kind}:{self._nonce}".encode()).hexdigest()
        address = "0x" + digest[:40]
        self.components[address] = kind
        self.state[address] = {"constructor_args": list(constructor_args)}
        self.transactions.append(("deploy", kind, address))
        logger.debug(f"Deployed {kind} at {address}")
        return address

    def call(self, address: Address, method: str, args: Sequence[Any] = ()) -> Any:
        if address not in self.components:
            raise DeployFailed(address, LookupError(f"no component at {address}"))
        if method in self._rejected_methods:
            raise DeployFailed(self.components[address], RuntimeError("transaction rejected"))
        self.transactions.append(("call", address, method))
        if method == self._grant_method:
            self.authorized.setdefault(address, []).append(args[0])
        else:
            self.state[address][method] = list(args)
        return True

    @property
    def deploy_count(self) -> int:
        return sum(1 for tx in self.transactions if tx[0] == "deploy")


def load_deployer(spec: str, options: Optional[dict[str, Any]] = None) -> Deployer:
    """
    Build a Deployer from a config value.

    Args:
        spec: "memory" for InMemoryLedger, or "package.module:factory"
        options: Keyword arguments passed to the factory

    Returns:
        A Deployer instance

    Raises:
        ConfigError: If the factory cannot be imported or yields a non-Deployer
    """
    options = options or {}
    if spec == "memory":
        return InMemoryLedger(**options)

    module_path, _, attr = spec.partition(":")
    if not module_path or not attr:
        raise ConfigError(f"Deployer must be 'memory' or 'module:factory', got {spec!r}")

    try:
        module = importlib.import_module(module_path)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot load deployer {spec!r}: {e}") from e

    deployer = factory(**options)
    if not isinstance(deployer, Deployer):
        raise ConfigError(f"Deployer factory {spec!r} returned {type(deployer).__name__}")
    return deployer
