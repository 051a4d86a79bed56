"""
AuthorizationWiring - one-way capability grants between components.

A grant resolves both component names, then asks the grantor to authorize
the grantee through the Deployer:

    deployer.call(grantor_address, method, [grantee_address])

The method defaults to "authorize" and can be overridden per capability.
Grants already held (same grantor address, grantee address and capability)
are a no-op, so a retried step can re-issue them safely.
"""

import logging
from typing import Callable, Iterable, Optional

from lmigrate.deployer import Deployer
from lmigrate.errors import GrantFailed
from lmigrate.registry import ComponentRegistry
from lmigrate.schemas import AuthorizationGrant

logger = logging.getLogger(__name__)

DEFAULT_GRANT_METHOD = "authorize"


class AuthorizationWiring:
    """
    Issues and remembers authorization grants for one target.

    Usage:
        wiring = AuthorizationWiring(registry, deployer, grants=loaded.grants,
                                     on_grant=lambda g: store.save_record(target, g))
        wiring.grant("History", "Platform", "event-authority", step_index=2)
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        deployer: Deployer,
        grants: Iterable[AuthorizationGrant] = (),
        capability_methods: Optional[dict[str, str]] = None,
        on_grant: Optional[Callable[[AuthorizationGrant], None]] = None,
    ):
        """
        Args:
            registry: Registry used to resolve grantor and grantee
            deployer: Ledger capability that issues the grant
            grants: Grants already held on this target
            capability_methods: capability -> grantor method name
            on_grant: Called with each newly confirmed grant (persistence)
        """
        self._registry = registry
        self._deployer = deployer
        self._held: dict[tuple[str, str, str], AuthorizationGrant] = {
            g.key: g for g in grants
        }
        self._capability_methods = dict(capability_methods or {})
        self._on_grant = on_grant

    @property
    def grants(self) -> tuple[AuthorizationGrant, ...]:
        return tuple(self._held.values())

    def method_for(self, capability: str) -> str:
        return self._capability_methods.get(capability, DEFAULT_GRANT_METHOD)

    def is_held(self, grantor_address: str, grantee_address: str, capability: str) -> bool:
        return (grantor_address, grantee_address, capability) in self._held

    def grant(
        self,
        grantor: str,
        grantee: str,
        capability: str,
        step_index: int,
        as_of: Optional[int] = None,
    ) -> AuthorizationGrant:
        """
        Grant `capability` from grantor to grantee.

        Args:
            grantor: Name of the component that holds the capability
            grantee: Name of the component being authorized
            capability: Capability name
            step_index: Index of the step issuing the grant
            as_of: Registry visibility bound (defaults to step_index)

        Returns:
            The new grant, or the already-held one

        Raises:
            UnknownComponent: If either name does not resolve
            GrantFailed: If the ledger rejects the grant
        """
        as_of = step_index if as_of is None else as_of
        grantor_address = self._registry.resolve(grantor, as_of=as_of)
        grantee_address = self._registry.resolve(grantee, as_of=as_of)

        key = (grantor_address, grantee_address, capability)
        if key in self._held:
            logger.debug(f"Grant already held: {grantor} -> {grantee} ({capability})")
            return self._held[key]

        method = self.method_for(capability)
        try:
            self._deployer.call(grantor_address, method, [grantee_address])
        except Exception as e:
            raise GrantFailed(grantor, grantee, capability, cause=e) from e

        record = AuthorizationGrant(
            grantor=grantor,
            grantee=grantee,
            capability=capability,
            grantor_address=grantor_address,
            grantee_address=grantee_address,
            step_index=step_index,
        )
        self._held[key] = record
        if self._on_grant is not None:
            self._on_grant(record)
        logger.info(f"Granted {capability}: {grantor} -> {grantee}")
        return record
