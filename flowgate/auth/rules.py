"""HTTP method → role authorization rules.

Built once at startup from ``AUTH_ROLES``::

    rules = RoleRuleSet.from_config({"GET": ["viewer", "admin"], "POST": ["admin"]})
    rules.required_roles("get")   # frozenset({"viewer", "admin"})
    rules.required_roles("PUT")   # None (no rule)
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

logger = logging.getLogger("flowgate.auth")


class ConfigurationError(ValueError):
    """Raised at startup when security configuration is unusable."""


class HttpMethod(str, enum.Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"

    @classmethod
    def parse(cls, name: str) -> "HttpMethod":
        """Parse *name* case-insensitively.  Raises ``ConfigurationError``."""
        try:
            return cls(str(name).strip().upper())
        except ValueError:
            raise ConfigurationError(
                f"Unknown HTTP method {name!r}; expected one of {[m.value for m in cls]}"
            ) from None


class RoleRuleSet:
    """Immutable mapping of :class:`HttpMethod` to the roles allowed to use it."""

    __slots__ = ("_rules",)

    def __init__(self, rules: Mapping[HttpMethod, Iterable[str]] | None = None) -> None:
        self._rules: Mapping[HttpMethod, frozenset[str]] = MappingProxyType(
            {method: frozenset(roles) for method, roles in (rules or {}).items()}
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Iterable[str]] | None) -> "RoleRuleSet":
        rules: dict[HttpMethod, set[str]] = {}
        for name, roles in (config or {}).items():
            if isinstance(roles, str):
                raise ConfigurationError(
                    f"Roles for {name!r} must be a list of role names, got a string"
                )
            method = HttpMethod.parse(name)
            # "get" and "GET" may both appear after env merging; union them.
            rules.setdefault(method, set()).update(roles)
        rule_set = cls(rules)
        logger.info("Loaded role rules: %s", rule_set.describe())
        return rule_set

    def required_roles(self, method: str | HttpMethod) -> frozenset[str] | None:
        """Roles allowed for *method*, or ``None`` when no rule is configured."""
        try:
            key = method if isinstance(method, HttpMethod) else HttpMethod(str(method).upper())
        except ValueError:
            return None
        return self._rules.get(key)

    def describe(self) -> dict[str, list[str]]:
        return {method.value: sorted(roles) for method, roles in self._rules.items()}

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, method: object) -> bool:
        return self.required_roles(method) is not None  # type: ignore[arg-type]
