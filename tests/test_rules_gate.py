"""Tests for the role rule set and the request authorization gate."""

from __future__ import annotations

import pytest

from flowgate.auth.gate import ANONYMOUS, AuthorizationDenied, Principal, RequestAuthorizationGate
from flowgate.auth.rules import ConfigurationError, HttpMethod, RoleRuleSet


def _principal(*authorities: str) -> Principal:
    return Principal(identity="alice", authorities=frozenset(authorities))


class TestRoleRuleSet:
    def test_from_config(self):
        rules = RoleRuleSet.from_config({"GET": ["viewer", "admin"], "post": ["admin"]})
        assert rules.required_roles("GET") == frozenset({"viewer", "admin"})
        assert rules.required_roles("get") == frozenset({"viewer", "admin"})
        assert rules.required_roles(HttpMethod.POST) == frozenset({"admin"})
        assert rules.required_roles("PUT") is None
        assert len(rules) == 2

    def test_unknown_method_fails_fast(self):
        with pytest.raises(ConfigurationError, match="FETCH"):
            RoleRuleSet.from_config({"FETCH": ["viewer"]})

    def test_string_roles_rejected(self):
        with pytest.raises(ConfigurationError):
            RoleRuleSet.from_config({"GET": "viewer"})

    def test_case_variants_merge(self):
        rules = RoleRuleSet.from_config({"GET": ["viewer"], " get ": ["admin"]})
        assert rules.required_roles("GET") == frozenset({"viewer", "admin"})

    def test_empty_config(self):
        rules = RoleRuleSet.from_config(None)
        assert len(rules) == 0
        assert rules.required_roles("GET") is None

    def test_unparseable_request_method_has_no_rule(self):
        rules = RoleRuleSet.from_config({"GET": ["viewer"]})
        assert rules.required_roles("PROPFIND") is None

    def test_describe(self):
        rules = RoleRuleSet.from_config({"get": ["b", "a"]})
        assert rules.describe() == {"GET": ["a", "b"]}


class TestGate:
    @pytest.fixture
    def gate(self) -> RequestAuthorizationGate:
        return RequestAuthorizationGate(RoleRuleSet.from_config({"GET": ["viewer"]}))

    def test_role_holder_permitted(self, gate):
        assert gate.evaluate("GET", _principal("viewer")) is True

    def test_missing_role_denied(self, gate):
        assert gate.evaluate("GET", _principal()) is False
        assert gate.evaluate("GET", _principal("admin")) is False

    def test_unmatched_method_requires_authentication(self, gate):
        assert gate.evaluate("POST", _principal("viewer")) is True
        assert gate.evaluate("POST", _principal()) is True
        assert gate.evaluate("POST", ANONYMOUS) is False

    def test_open_fallback(self):
        gate = RequestAuthorizationGate(
            RoleRuleSet.from_config({"GET": ["viewer"]}), open_fallback=True
        )
        assert gate.evaluate("POST", ANONYMOUS) is True
        # Configured methods stay restricted.
        assert gate.evaluate("GET", ANONYMOUS) is False

    def test_anonymous_never_matches_rule(self):
        gate = RequestAuthorizationGate(RoleRuleSet.from_config({"GET": ["viewer"]}))
        anon_with_role = Principal(
            identity="anonymous", authorities=frozenset({"viewer"}), authenticated=False
        )
        assert gate.evaluate("GET", anon_with_role) is False

    def test_disabled_permits_everything(self):
        gate = RequestAuthorizationGate(
            RoleRuleSet.from_config({"GET": ["viewer"]}), enabled=False
        )
        assert gate.evaluate("GET", ANONYMOUS) is True
        assert gate.evaluate("DELETE", _principal()) is True

    def test_empty_role_list_denies_all(self):
        gate = RequestAuthorizationGate(RoleRuleSet.from_config({"DELETE": []}))
        assert gate.evaluate("DELETE", _principal("admin")) is False

    def test_authorize_returns_principal(self, gate):
        p = _principal("viewer")
        assert gate.authorize("GET", p) is p

    def test_authorize_raises(self, gate):
        with pytest.raises(AuthorizationDenied) as excinfo:
            gate.authorize("get", _principal("admin"))
        assert excinfo.value.method == "GET"
        assert excinfo.value.required == frozenset({"viewer"})
        assert "viewer" in str(excinfo.value)

    def test_authorize_anonymous_unmatched(self, gate):
        with pytest.raises(AuthorizationDenied, match="Authentication required"):
            gate.authorize(HttpMethod.PUT, ANONYMOUS)

    def test_denial_is_logged(self, gate, caplog):
        with caplog.at_level("WARNING", logger="flowgate.auth"):
            with pytest.raises(AuthorizationDenied):
                gate.authorize("GET", _principal("admin"))
        message = caplog.records[-1].getMessage()
        assert message.startswith("Access denied: ")
        assert "GET needs one of ['viewer']" in message
