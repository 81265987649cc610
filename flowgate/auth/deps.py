"""FastAPI dependencies: ``get_current_principal`` and ``authorize_request``.

- No ``Authorization`` header → anonymous principal.
- ``Authorization: Bearer <jwt>`` → principal whose authorities come from
  the token's scopes, realm roles and client roles.

``authorize_request`` then asks the gate on ``app.state`` for a decision:
401 for anonymous callers that are refused, 403 for authenticated ones.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request, status

from flowgate.auth.gate import ANONYMOUS, AuthorizationDenied, Principal, RequestAuthorizationGate
from flowgate.auth.verifier import InvalidTokenError, JwtTokenVerifier

logger = logging.getLogger("flowgate.auth")


def _gate(request: Request) -> RequestAuthorizationGate:
    return request.app.state.gate


def _verifier(request: Request) -> JwtTokenVerifier:
    return request.app.state.verifier


async def get_current_principal(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    """Return the :class:`Principal` for this request."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return ANONYMOUS

    token = authorization.split(" ", 1)[1].strip()
    try:
        return _verifier(request).principal(token)
    except InvalidTokenError as exc:
        if not _gate(request).enabled:
            # Security is off; a bad token just means an anonymous caller.
            return ANONYMOUS
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def authorize_request(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Router-level dependency enforcing the method → role rules."""
    try:
        return _gate(request).authorize(request.method, principal)
    except AuthorizationDenied as exc:
        if not principal.authenticated:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            ) from exc
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
