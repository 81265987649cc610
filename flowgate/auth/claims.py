"""Bearer-token claims and authority extraction.

Identity providers disagree on where roles live inside a token.  Keycloak
style tokens carry them in two nested claims::

    {
      "realm_access":    {"roles": ["admin", "ops"]},
      "resource_access": {"billing": {"roles": ["viewer"]}}
    }

:func:`extract_authorities` flattens those into a single authority set:
realm roles are kept verbatim, client roles become ``"<client>_<role>"`` so
that a ``viewer`` role on ``billing`` never grants a bare ``viewer``.

A claim with an unexpected shape is treated as absent.  It never raises.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

CLAIM_REALM_ACCESS = "realm_access"
CLAIM_RESOURCE_ACCESS = "resource_access"
CLAIM_ROLES = "roles"

SCOPE_AUTHORITY_PREFIX = "SCOPE_"
_SCOPE_CLAIMS = ("scope", "scp")


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


class ClaimsBundle:
    """Immutable view over the verified payload of a bearer token.

    Accessors walk a key path and return ``None`` whenever the value is
    missing or has the wrong shape.
    """

    __slots__ = ("_claims",)

    def __init__(self, claims: Mapping[str, Any] | None = None) -> None:
        self._claims = _freeze(claims or {})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClaimsBundle):
            return NotImplemented
        return dict(self._claims) == dict(other._claims)

    def __repr__(self) -> str:
        return f"ClaimsBundle(keys={sorted(self._claims)})"

    def __contains__(self, key: str) -> bool:
        return key in self._claims

    def _lookup(self, path: tuple[str, ...]) -> Any:
        node: Any = self._claims
        for key in path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
            if node is None:
                return None
        return node

    def mapping(self, *path: str) -> Mapping[str, Any] | None:
        """Return the mapping at *path*, or ``None``."""
        node = self._lookup(path)
        return node if isinstance(node, Mapping) else None

    def strings(self, *path: str) -> tuple[str, ...] | None:
        """Return the list of strings at *path*, or ``None``.

        Non-string entries are dropped.
        """
        node = self._lookup(path)
        if not isinstance(node, tuple):
            return None
        return tuple(item for item in node if isinstance(item, str))

    def string(self, *path: str) -> str | None:
        node = self._lookup(path)
        return node if isinstance(node, str) else None


def base_authorities_from(claims: ClaimsBundle) -> frozenset[str]:
    """Derive ``SCOPE_*`` authorities from the standard ``scope``/``scp`` claims."""
    for claim in _SCOPE_CLAIMS:
        raw = claims.string(claim)
        scopes: Iterable[str] | None = raw.split() if raw is not None else claims.strings(claim)
        if scopes:
            return frozenset(SCOPE_AUTHORITY_PREFIX + scope for scope in scopes)
    return frozenset()


def extract_authorities(
    claims: ClaimsBundle,
    base_authorities: Iterable[str] = (),
) -> frozenset[str]:
    """Return *base_authorities* plus the realm and client roles in *claims*."""
    authorities = set(base_authorities)

    realm_access = claims.mapping(CLAIM_REALM_ACCESS)
    if realm_access:
        roles = claims.strings(CLAIM_REALM_ACCESS, CLAIM_ROLES)
        if roles:
            authorities.update(roles)

    resource_access = claims.mapping(CLAIM_RESOURCE_ACCESS)
    if resource_access:
        for resource in resource_access:
            # Some providers omit "roles" for clients with no assignments.
            roles = claims.strings(CLAIM_RESOURCE_ACCESS, resource, CLAIM_ROLES)
            if not roles:
                continue
            authorities.update(f"{resource}_{role}" for role in roles)

    return frozenset(authorities)
