"""Principal authorization for protected environments.

Authorization is two-tier: an explicit allow-list of principal ids, or
membership in one of the authorized groups as reported by an identity
provider. Either check alone suffices.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from loguru import logger

from .errors import AuthorizationError


class IdentityProvider(Protocol):
    """Resolves group membership for a principal."""

    def groups_for(self, principal: str) -> set[str]: ...


class StaticIdentityProvider:
    """Identity provider backed by a static group -> members directory."""

    def __init__(self, groups: Mapping[str, Iterable[str]] | None = None) -> None:
        self._groups = {
            name: {member.lower() for member in members}
            for name, members in (groups or {}).items()
        }

    def groups_for(self, principal: str) -> set[str]:
        principal = principal.lower()
        return {name for name, members in self._groups.items() if principal in members}


class PrincipalAuthorizer:
    """Decides whether a principal may approve or override for protected targets."""

    def __init__(
        self,
        allowed_principals: Iterable[str],
        authorized_groups: Iterable[str],
        identity: IdentityProvider,
    ) -> None:
        self._allowed = {p.lower() for p in allowed_principals}
        self._groups = set(authorized_groups)
        self._identity = identity

    def is_authorized(self, principal: str) -> bool:
        if not principal:
            return False
        if principal.lower() in self._allowed:
            return True
        if not self._groups:
            return False
        return bool(self._identity.groups_for(principal) & self._groups)

    def require(self, principal: str, action: str) -> None:
        """Raise AuthorizationError unless the principal is authorized."""
        if self.is_authorized(principal):
            return
        logger.warning(f"Authorization denied: '{principal}' attempted to {action}")
        raise AuthorizationError(
            principal,
            action,
            details=(
                "The principal is neither on the allow-list nor a member of an "
                f"authorized group ({', '.join(sorted(self._groups)) or 'none configured'})."
            ),
        )
