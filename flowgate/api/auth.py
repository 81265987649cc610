"""Authentication API: identity endpoint.

Endpoints
---------
GET  /api/auth/me          current principal and its flattened authorities
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from flowgate.auth.deps import get_current_principal
from flowgate.auth.gate import Principal

router = APIRouter()


class MeResponse(BaseModel):
    identity: str
    authenticated: bool
    authorities: list[str]


@router.get("/me", response_model=MeResponse, summary="Current identity")
async def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    return MeResponse(
        identity=principal.identity,
        authenticated=principal.authenticated,
        authorities=sorted(principal.authorities),
    )
