"""Shared fixtures for flowgate tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt
import pytest

from flowgate.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Mint an HS256 JWT signed with ``TEST_SECRET``."""

    def _make(sub: str = "alice", **claims: Any) -> str:
        now = datetime.now(timezone.utc)
        payload = {"sub": sub, "iat": now, "exp": now + timedelta(minutes=5), **claims}
        return jwt.encode(payload, TEST_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def keycloak_claims() -> dict:
    """Claims shaped the way Keycloak issues them."""
    return {
        "sub": "b2f1c1a0-0000-4000-8000-000000000001",
        "preferred_username": "alice",
        "scope": "openid profile",
        "realm_access": {"roles": ["admin", "ops"]},
        "resource_access": {
            "billing": {"roles": ["viewer"]},
            "account": {"roles": ["manage-account", "view-profile"]},
        },
    }


@pytest.fixture
def make_settings():
    """Build ``Settings`` that verify tokens minted by ``make_token``."""

    def _make(**overrides: Any) -> Settings:
        fields: dict[str, Any] = {"AUTH_SECRET_KEY": TEST_SECRET}
        fields.update(overrides)
        return Settings(**fields)

    return _make
