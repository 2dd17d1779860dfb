"""Static allow-list access policy.

The allow-list is loaded once from configuration and never changes while the
process runs. An empty allow-list means no restriction.

The identity checked is the configured owner of the process. Request headers
play no part in the decision.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

LOCKDOWN_MESSAGE = (
    "The server is in lockdown mode. You are not allowed to access this resource."
)


@dataclass(frozen=True)
class AccessPolicy:
    """Immutable allow-list of owner identities.

    Attributes:
        allowed: Identities allowed to run the gateway. Empty means everyone.
        owner_id: Identity of the process owner, from configuration.
    """

    allowed: frozenset[str] = frozenset()
    owner_id: str | None = None

    @classmethod
    def from_ids(cls, ids: Iterable[str], owner_id: str | None = None) -> AccessPolicy:
        return cls(
            allowed=frozenset(i.strip() for i in ids if i.strip()),
            owner_id=owner_id,
        )

    @property
    def is_restricted(self) -> bool:
        return bool(self.allowed)

    @property
    def is_locked_down(self) -> bool:
        """True if the allow-list is set and the owner is not on it."""
        return not self.allows(self.owner_id)

    def allows(self, identity: str | None) -> bool:
        if not self.allowed:
            return True
        return identity is not None and identity in self.allowed
