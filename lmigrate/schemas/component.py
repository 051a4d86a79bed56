"""
Component and grant schemas - what a deployment step leaves on the ledger.

ComponentRecord binds a component name to its deployed address.
AuthorizationGrant records a one-way capability grant between two
components. Both are append-only: a redeploy or a re-grant adds a record,
it never rewrites an earlier one.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# Ledger address type alias for documentation
Address = str


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ComponentRecord:
    """
    A deployed component.

    Attributes:
        name: Registry name (unique per target unless superseded)
        address: Opaque ledger address returned by the deployer
        step_index: Index of the step that produced this record
        kind: Artifact kind that was deployed (defaults to name)
        deployed_at: When the deploy was confirmed
        supersedes: Address this record replaces, for redeploys
    """
    name: str
    address: Address
    step_index: int
    kind: Optional[str] = None
    deployed_at: datetime = field(default_factory=_utcnow)
    supersedes: Optional[Address] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "name": self.name,
            "address": self.address,
            "step_index": self.step_index,
            "deployed_at": self.deployed_at.isoformat(),
        }
        if self.kind is not None:
            result["kind"] = self.kind
        if self.supersedes is not None:
            result["supersedes"] = self.supersedes
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComponentRecord":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            address=data["address"],
            step_index=data["step_index"],
            kind=data.get("kind"),
            deployed_at=datetime.fromisoformat(data["deployed_at"]),
            supersedes=data.get("supersedes"),
        )


@dataclass(frozen=True)
class AuthorizationGrant:
    """
    A capability granted by one component to another.

    The grant is held by (grantor_address, grantee_address, capability):
    redeploying either side produces a new key that needs a fresh grant.

    Attributes:
        grantor: Name of the component granting the capability
        grantee: Name of the component receiving it
        capability: Capability name (e.g. "event-authority")
        grantor_address: Resolved grantor address at grant time
        grantee_address: Resolved grantee address at grant time
        step_index: Index of the step that issued the grant
        granted_at: When the grant was confirmed
    """
    grantor: str
    grantee: str
    capability: str
    grantor_address: Address
    grantee_address: Address
    step_index: int
    granted_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[Address, Address, str]:
        return (self.grantor_address, self.grantee_address, self.capability)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "grantor": self.grantor,
            "grantee": self.grantee,
            "capability": self.capability,
            "grantor_address": self.grantor_address,
            "grantee_address": self.grantee_address,
            "step_index": self.step_index,
            "granted_at": self.granted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationGrant":
        """Deserialize from dictionary."""
        return cls(
            grantor=data["grantor"],
            grantee=data["grantee"],
            capability=data["capability"],
            grantor_address=data["grantor_address"],
            grantee_address=data["grantee_address"],
            step_index=data["step_index"],
            granted_at=datetime.fromisoformat(data["granted_at"]),
        )
