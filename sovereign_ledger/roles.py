"""
Role-based capability checks for privileged ledger operations.

Privileged calls take an explicit `caller` identity; the registry decides
whether that identity holds the required role. ADMIN implies every role.
"""

import threading
from enum import Enum
from typing import Dict, Iterable, Set

from .errors import AuthorizationError, require_identifier


class Role(str, Enum):
    ADMIN = "ADMIN"
    VAULT_OPERATOR = "VAULT_OPERATOR"            # unlock / liquidate
    INACTIVITY_SWEEPER = "INACTIVITY_SWEEPER"    # sweep_inactivity
    JURISDICTION_SIGNER = "JURISDICTION_SIGNER"  # activate


class RoleRegistry:
    """In-memory role assignments."""
    
    def __init__(self, admins: Iterable[str] = ()):
        self._roles: Dict[str, Set[Role]] = {}
        self._lock = threading.RLock()
        for admin in admins:
            self._roles.setdefault(admin, set()).add(Role.ADMIN)
    
    def has_role(self, caller: str, role: Role) -> bool:
        with self._lock:
            held = self._roles.get(caller, set())
            return Role.ADMIN in held or role in held
    
    def require(self, caller: str, role: Role) -> None:
        """
        Raises:
            AuthorizationError: if caller does not hold the role
        """
        if not isinstance(caller, str) or not self.has_role(caller, role):
            raise AuthorizationError(str(caller), role.value)
    
    def grant(self, granter: str, grantee: str, role: Role) -> None:
        self.require(granter, Role.ADMIN)
        require_identifier(grantee, "grantee")
        with self._lock:
            self._roles.setdefault(grantee, set()).add(role)
    
    def revoke(self, revoker: str, grantee: str, role: Role) -> bool:
        """Returns True if the role was held and has been removed."""
        self.require(revoker, Role.ADMIN)
        with self._lock:
            held = self._roles.get(grantee)
            if not held or role not in held:
                return False
            held.discard(role)
            return True
    
    def roles_of(self, caller: str) -> Set[Role]:
        with self._lock:
            return set(self._roles.get(caller, set()))
    
    def restore(self, caller: str, roles: Set[Role]) -> None:
        """Put back a caller's role set as previously read from `roles_of`."""
        with self._lock:
            if roles:
                self._roles[caller] = set(roles)
            else:
                self._roles.pop(caller, None)
