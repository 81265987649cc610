"""Per-request permit/deny decision.

The gate holds no per-request state, so one instance is shared by every
request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flowgate.auth.claims import ClaimsBundle
from flowgate.auth.rules import HttpMethod, RoleRuleSet

logger = logging.getLogger("flowgate.auth")


@dataclass(frozen=True)
class Principal:
    """Identity for a request together with its flattened authorities."""

    identity: str
    authorities: frozenset[str] = field(default_factory=frozenset)
    claims: ClaimsBundle = field(default_factory=ClaimsBundle, compare=False, repr=False)
    authenticated: bool = True

    def has_any(self, roles: frozenset[str]) -> bool:
        return not self.authorities.isdisjoint(roles)


ANONYMOUS = Principal(identity="anonymous", authenticated=False)


class AuthorizationDenied(Exception):
    def __init__(self, method: str, principal: Principal, required: frozenset[str] | None):
        self.method = method
        self.principal = principal
        self.required = required
        if required is None:
            detail = "Authentication required"
        else:
            detail = f"Requires one of roles: {sorted(required)}"
        super().__init__(detail)


class RequestAuthorizationGate:
    """Decide whether *principal* may issue a request with *method*.

    - ``enabled=False``: every request is permitted.
    - A rule for the method: the principal must be authenticated and hold
      one of the rule's roles.
    - No rule: the principal must be authenticated, unless
      ``open_fallback`` is set.
    """

    def __init__(self, rule_set: RoleRuleSet, enabled: bool = True, open_fallback: bool = False):
        self.rule_set = rule_set
        self.enabled = enabled
        self.open_fallback = open_fallback

    def evaluate(self, method: str | HttpMethod, principal: Principal) -> bool:
        if not self.enabled:
            return True

        required = self.rule_set.required_roles(method)
        if required is None:
            return self.open_fallback or principal.authenticated

        return principal.authenticated and principal.has_any(required)

    def authorize(self, method: str | HttpMethod, principal: Principal) -> Principal:
        """Return *principal* if permitted, otherwise raise :class:`AuthorizationDenied`."""
        if self.evaluate(method, principal):
            return principal
        method_name = method.value if isinstance(method, HttpMethod) else str(method).upper()
        required = self.rule_set.required_roles(method_name)
        logger.warning(
            "Access denied: '%s' (authorities=%s) %s needs one of %s",
            principal.identity,
            sorted(principal.authorities),
            method_name,
            sorted(required) if required is not None else "authentication",
        )
        raise AuthorizationDenied(method_name, principal, required)
