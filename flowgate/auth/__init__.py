"""Inbound authorization for the flowgate API.

Opt-in via ``AUTH_ENABLED=true``.  When disabled (the default) every request
is permitted, so local usage works without an identity provider.

Credential scheme
-----------------
``Authorization: Bearer <jwt>`` verified with PyJWT.  Authorities are taken
from ``scope``/``scp`` (as ``SCOPE_<scope>``), ``realm_access.roles``
(verbatim) and ``resource_access.<client>.roles`` (as ``<client>_<role>``).

Rules
-----
``AUTH_ROLES`` maps HTTP methods to the roles allowed to use them.  A caller
must hold at least one of them.  Methods without a rule only require a valid
token, or nothing at all with ``AUTH_OPEN_FALLBACK=true``.
"""

from flowgate.auth.claims import ClaimsBundle, extract_authorities
from flowgate.auth.deps import authorize_request, get_current_principal
from flowgate.auth.gate import AuthorizationDenied, Principal, RequestAuthorizationGate
from flowgate.auth.rules import ConfigurationError, HttpMethod, RoleRuleSet

__all__ = [
    "AuthorizationDenied",
    "ClaimsBundle",
    "ConfigurationError",
    "HttpMethod",
    "Principal",
    "RequestAuthorizationGate",
    "RoleRuleSet",
    "authorize_request",
    "extract_authorities",
    "get_current_principal",
]
