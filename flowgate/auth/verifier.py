"""Bearer token verification, delegated to PyJWT."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import jwt

from flowgate.auth.claims import ClaimsBundle, base_authorities_from, extract_authorities
from flowgate.auth.gate import Principal

logger = logging.getLogger("flowgate.auth")


class InvalidTokenError(Exception):
    pass


class JwtTokenVerifier:
    """Verify a JWT and turn it into a :class:`Principal`."""

    def __init__(
        self,
        key: str,
        algorithms: Sequence[str] = ("HS256",),
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        self.key = key
        self.algorithms = list(algorithms)
        self.audience = audience
        self.issuer = issuer

    def verify(self, token: str) -> tuple[ClaimsBundle, frozenset[str]]:
        """Return the verified claims and their base (``SCOPE_*``) authorities."""
        options = {"verify_aud": self.audience is not None}
        try:
            payload = jwt.decode(
                token,
                self.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except jwt.PyJWTError as exc:
            logger.debug("JWT decode failed: %s", exc)
            raise InvalidTokenError(str(exc)) from exc
        claims = ClaimsBundle(payload)
        return claims, base_authorities_from(claims)

    def principal(self, token: str) -> Principal:
        claims, base = self.verify(token)
        identity = claims.string("preferred_username") or claims.string("sub") or "unknown"
        return Principal(
            identity=identity,
            authorities=extract_authorities(claims, base),
            claims=claims,
        )
