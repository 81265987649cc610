"""OAuth2 client-credentials token provider for outbound calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Generator, Mapping
from dataclasses import dataclass

import httpx

from flowgate.config import ClientRegistration

logger = logging.getLogger("flowgate.connectors.oauth")

DEFAULT_EXPIRES_IN = 3600


class TokenAcquisitionError(Exception):
    def __init__(self, registration_id: str, message: str):
        self.registration_id = registration_id
        super().__init__(f"Token acquisition for '{registration_id}' failed: {message}")


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float
    token_type: str = "Bearer"
    scope: tuple[str, ...] = ()
    issued_at: float | None = None

    def is_expired(self, now: float, clock_skew: float = 0.0) -> bool:
        # Short-lived tokens stay usable for at least half their lifetime.
        if self.issued_at is not None:
            clock_skew = min(clock_skew, (self.expires_at - self.issued_at) / 2)
        return now >= self.expires_at - clock_skew

    def __repr__(self) -> str:
        return f"AccessToken(expires_at={self.expires_at!r}, scope={self.scope!r})"


class OutboundTokenProvider:
    """Caches one client-credentials token per client registration.

    Concurrent callers for the same registration share a single in-flight
    exchange.  Different registrations refresh independently.
    """

    def __init__(
        self,
        registrations: Mapping[str, ClientRegistration],
        clock_skew: float = 60.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registrations = dict(registrations)
        self.clock_skew = clock_skew
        self._clock = clock
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._tokens: dict[str, AccessToken] = {}
        self._inflight: dict[str, asyncio.Task[AccessToken]] = {}

    async def get_token(self, registration_id: str) -> AccessToken:
        """Return a valid token for *registration_id*, refreshing it if needed."""
        # Fast path
        token = self._tokens.get(registration_id)
        if token is not None and not token.is_expired(self._clock(), self.clock_skew):
            return token

        refresh = self._inflight.get(registration_id)
        if refresh is None:
            refresh = asyncio.ensure_future(self._refresh(registration_id))
            refresh.add_done_callback(_retrieve_failure)
            self._inflight[registration_id] = refresh
        # A cancelled waiter must not cancel the exchange other callers share.
        return await asyncio.shield(refresh)

    def invalidate(self, registration_id: str, token: AccessToken | None = None) -> None:
        """Drop the cached token (only if it is still *token*, when given)."""
        cached = self._tokens.get(registration_id)
        if cached is not None and (token is None or cached == token):
            del self._tokens[registration_id]
            logger.info("Invalidated cached token for registration '%s'", registration_id)

    async def _refresh(self, registration_id: str) -> AccessToken:
        try:
            token = await self._fetch_token(registration_id)
            self._tokens[registration_id] = token
            return token
        finally:
            self._inflight.pop(registration_id, None)

    async def _fetch_token(self, registration_id: str) -> AccessToken:
        """Perform the client_credentials grant against the registration's token endpoint."""
        registration = self.registrations.get(registration_id)
        if registration is None:
            raise TokenAcquisitionError(registration_id, "unknown client registration")

        data = {"grant_type": "client_credentials"}
        if registration.scope:
            data["scope"] = " ".join(registration.scope)
        if registration.audience:
            data["audience"] = registration.audience

        auth = None
        if registration.auth_method == "client_secret_basic":
            auth = httpx.BasicAuth(registration.client_id, registration.client_secret or "")
        else:
            data["client_id"] = registration.client_id
            if registration.client_secret:
                data["client_secret"] = registration.client_secret

        logger.info("Requesting client_credentials token for registration '%s'", registration_id)
        try:
            resp = await self._client.post(
                registration.token_uri,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Token endpoint HTTP error for '%s': %s - %s",
                registration_id, exc.response.status_code, exc.response.text,
            )
            raise TokenAcquisitionError(
                registration_id, f"HTTP {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Token endpoint unreachable for '%s': %s", registration_id, exc)
            raise TokenAcquisitionError(registration_id, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise TokenAcquisitionError(registration_id, "token response is not JSON") from exc

        value = payload.get("access_token") if isinstance(payload, dict) else None
        if not value:
            raise TokenAcquisitionError(registration_id, "token response missing access_token")

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        scope = payload.get("scope")
        granted = tuple(scope.split()) if isinstance(scope, str) else tuple(registration.scope)

        logger.debug("Acquired token for '%s' (expires in %ds)", registration_id, expires_in)
        issued_at = self._clock()
        return AccessToken(
            value=value,
            expires_at=issued_at + expires_in,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=granted,
            issued_at=issued_at,
        )

    async def aclose(self) -> None:
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._client.aclose()


def _retrieve_failure(task: asyncio.Task) -> None:
    # Marks the error as retrieved when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


class ClientCredentialsAuth(httpx.Auth):
    """httpx auth flow that attaches a bearer token from the provider.

    A 401 from the remote drops the cached token so the next call
    re-acquires one.
    """

    def __init__(self, provider: OutboundTokenProvider, registration_id: str) -> None:
        self.provider = provider
        self.registration_id = registration_id

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("ClientCredentialsAuth requires an httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request):
        token = await self.provider.get_token(self.registration_id)
        request.headers["Authorization"] = f"Bearer {token.value}"
        response = yield request
        if response.status_code == 401:
            self.provider.invalidate(self.registration_id, token)
