"""Tests for claims handling and authority extraction."""

from __future__ import annotations

import pytest

from flowgate.auth.claims import ClaimsBundle, base_authorities_from, extract_authorities


BASE = frozenset({"SCOPE_openid"})


class TestEmptyClaims:
    @pytest.mark.parametrize(
        "claims",
        [
            {},
            {"realm_access": {}},
            {"resource_access": {}},
            {"realm_access": {}, "resource_access": {}},
            {"realm_access": {"roles": []}, "resource_access": {}},
            {"realm_access": None, "resource_access": None},
        ],
    )
    def test_returns_base_unchanged(self, claims):
        assert extract_authorities(ClaimsBundle(claims), BASE) == BASE

    def test_no_base_no_claims(self):
        assert extract_authorities(ClaimsBundle()) == frozenset()


class TestRealmRoles:
    def test_realm_roles_added_verbatim(self):
        claims = ClaimsBundle({"realm_access": {"roles": ["admin", "ops"]}})
        result = extract_authorities(claims, BASE)
        assert {"admin", "ops"} <= result
        assert BASE <= result

    def test_duplicates_collapse(self):
        claims = ClaimsBundle({"realm_access": {"roles": ["admin", "admin"]}})
        assert extract_authorities(claims, {"admin"}) == frozenset({"admin"})


class TestResourceRoles:
    def test_resource_role_is_scoped(self):
        claims = ClaimsBundle({"resource_access": {"billing": {"roles": ["viewer"]}}})
        result = extract_authorities(claims)
        assert "billing_viewer" in result
        assert "viewer" not in result

    def test_resource_without_roles_is_skipped(self):
        claims = ClaimsBundle(
            {
                "resource_access": {
                    "account": {},
                    "broker": {"other": ["x"]},
                    "billing": {"roles": ["viewer"]},
                }
            }
        )
        assert extract_authorities(claims) == frozenset({"billing_viewer"})

    def test_full_keycloak_token(self, keycloak_claims):
        claims = ClaimsBundle(keycloak_claims)
        result = extract_authorities(claims, base_authorities_from(claims))
        assert result == frozenset(
            {
                "SCOPE_openid",
                "SCOPE_profile",
                "admin",
                "ops",
                "billing_viewer",
                "account_manage-account",
                "account_view-profile",
            }
        )


class TestShapeAnomalies:
    @pytest.mark.parametrize(
        "claims",
        [
            {"realm_access": ["admin"]},
            {"realm_access": {"roles": "admin"}},
            {"realm_access": "admin"},
            {"resource_access": ["billing"]},
            {"resource_access": {"billing": "viewer"}},
            {"resource_access": {"billing": {"roles": {"viewer": True}}}},
        ],
    )
    def test_wrong_shapes_contribute_nothing(self, claims):
        assert extract_authorities(ClaimsBundle(claims), BASE) == BASE

    def test_non_string_roles_ignored(self):
        claims = ClaimsBundle({"realm_access": {"roles": ["admin", 7, None, {"x": 1}]}})
        assert extract_authorities(claims) == frozenset({"admin"})


class TestPurity:
    def test_caller_set_not_mutated(self):
        base = {"SCOPE_openid"}
        extract_authorities(ClaimsBundle({"realm_access": {"roles": ["admin"]}}), base)
        assert base == {"SCOPE_openid"}

    def test_idempotent(self, keycloak_claims):
        claims = ClaimsBundle(keycloak_claims)
        assert extract_authorities(claims, BASE) == extract_authorities(claims, BASE)

    def test_bundle_is_detached_from_source(self, keycloak_claims):
        claims = ClaimsBundle(keycloak_claims)
        keycloak_claims["realm_access"]["roles"].append("root")
        assert "root" not in extract_authorities(claims)

    def test_bundle_is_read_only(self, keycloak_claims):
        realm = ClaimsBundle(keycloak_claims).mapping("realm_access")
        with pytest.raises(TypeError):
            realm["roles"] = ("root",)  # type: ignore[index]

    def test_equal_bundles(self, keycloak_claims):
        assert ClaimsBundle(keycloak_claims) == ClaimsBundle(dict(keycloak_claims))


class TestBaseAuthorities:
    def test_space_delimited_scope(self):
        claims = ClaimsBundle({"scope": "read write"})
        assert base_authorities_from(claims) == frozenset({"SCOPE_read", "SCOPE_write"})

    def test_scp_list(self):
        claims = ClaimsBundle({"scp": ["read", "write"]})
        assert base_authorities_from(claims) == frozenset({"SCOPE_read", "SCOPE_write"})

    def test_no_scope(self):
        assert base_authorities_from(ClaimsBundle({"sub": "x"})) == frozenset()
