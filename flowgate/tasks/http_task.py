"""HTTP task: call an external endpoint on behalf of a workflow.

Outcomes of :meth:`HttpTaskExecutor.execute`:

- remote answered 2xx → ``NormalizedResponse(status_code=200, body=<parsed>)``
- remote answered non-2xx → ``NormalizedResponse(status_code=<actual>,
  body=<message>, error=RemoteHttpError(...))``; nothing is raised
- remote could not be reached (refused, DNS, timeout) → ``TransportError``

A remote 404 and an unreachable host are therefore never confused.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from flowgate.auth.rules import HttpMethod
from flowgate.connectors.token_provider import TokenAcquisitionError
from flowgate.utils.logger import ctx_task_id, ctx_workflow_id

logger = logging.getLogger("flowgate.tasks.http")

DEFAULT_MAX_IN_MEMORY_SIZE = 2 * 1024 * 1024


# ── Errors ────────────────────────────────────────────────────────────────────


class HttpTaskError(Exception):
    pass


class TransportError(HttpTaskError):
    """The call never produced an HTTP response.  Carries no status code."""

    def __init__(self, method: str, uri: str, message: str):
        self.method = method
        self.uri = uri
        super().__init__(f"{method} {uri} failed: {message}")


class ResponseTooLargeError(HttpTaskError):
    def __init__(self, uri: str, limit: int):
        self.uri = uri
        self.limit = limit
        super().__init__(f"Response from {uri} exceeds the {limit}-byte buffer limit")


# ── Models ────────────────────────────────────────────────────────────────────


class HttpRequestDescription(BaseModel):
    """Fully-resolved outbound request, built once per task execution.

    Field aliases accept the camelCase keys workflow definitions use
    (``contentType``, ``readTimeOut``, ``connectionTimeOut``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    method: str = "GET"
    uri: str
    headers: dict[str, Any] = {}
    body: Any = None
    content_type: str | None = Field(default=None, alias="contentType")
    accept: str | None = None
    read_timeout_ms: int | None = Field(default=None, alias="readTimeOut", gt=0)
    connection_timeout_ms: int | None = Field(default=None, alias="connectionTimeOut", gt=0)

    @field_validator("method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        return HttpMethod.parse(value).value

    @field_validator("uri")
    @classmethod
    def _absolute_uri(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"uri must be an absolute http(s) URL, got {value!r}")
        try:
            httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"uri is not a valid URL: {exc}") from None
        return value

    @field_validator("headers")
    @classmethod
    def _ascii_headers(cls, value: dict[str, Any]) -> dict[str, Any]:
        for key, item in value.items():
            if item is None:
                continue
            if not (key.isascii() and str(item).isascii()):
                raise ValueError(f"header {key!r} must be ASCII")
        return value

    @field_validator("content_type", "accept")
    @classmethod
    def _ascii_media_type(cls, value: str | None) -> str | None:
        if value is not None and not value.isascii():
            raise ValueError(f"media type {value!r} must be ASCII")
        return value


class RemoteHttpError(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int
    message: str


class NormalizedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status_code: int
    body: Any = None
    headers: dict[str, str] = {}
    error: RemoteHttpError | None = None

    @property
    def is_remote_error(self) -> bool:
        return self.error is not None


# ── Executor ──────────────────────────────────────────────────────────────────


class HttpTaskExecutor:
    """Performs one outbound call per :meth:`execute`.

    The underlying ``httpx.AsyncClient`` only pools connections; every call
    owns its request and response.
    """

    def __init__(
        self,
        max_in_memory_size: int = DEFAULT_MAX_IN_MEMORY_SIZE,
        connect_timeout: float = 10.0,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.max_in_memory_size = max_in_memory_size
        self._auth = auth
        # No read timeout unless the caller supplies one.
        self._timeout = httpx.Timeout(connect_timeout, read=None)
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)

    def _timeout_for(self, description: HttpRequestDescription) -> httpx.Timeout:
        read = self._timeout.read
        connect = self._timeout.connect
        if description.read_timeout_ms is not None:
            read = description.read_timeout_ms / 1000
        if description.connection_timeout_ms is not None:
            connect = description.connection_timeout_ms / 1000
        return httpx.Timeout(
            connect=connect, read=read, write=self._timeout.write, pool=self._timeout.pool
        )

    def _build_request(self, description: HttpRequestDescription) -> httpx.Request:
        headers = {
            key: str(value) for key, value in description.headers.items() if value is not None
        }
        if description.content_type:
            headers["Content-Type"] = description.content_type
        if description.accept:
            headers["Accept"] = description.accept

        content: str | bytes | None = None
        payload: Any = None
        body = description.body
        if isinstance(body, (str, bytes)):
            content = body
        elif body is not None:
            payload = body

        return self._client.build_request(
            description.method,
            description.uri,
            headers=headers,
            content=content,
            json=payload,
            timeout=self._timeout_for(description),
        )

    async def _read_body(self, response: httpx.Response, uri: str) -> bytes:
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_in_memory_size:
            raise ResponseTooLargeError(uri, self.max_in_memory_size)

        buf = bytearray()
        async for chunk in response.aiter_bytes():
            buf.extend(chunk)
            if len(buf) > self.max_in_memory_size:
                raise ResponseTooLargeError(uri, self.max_in_memory_size)
        return bytes(buf)

    async def execute(self, description: HttpRequestDescription) -> NormalizedResponse:
        """Issue the call and return its normalized outcome.

        Raises ``TransportError`` when no response was received,
        ``TokenAcquisitionError`` when outbound auth cannot obtain a token.
        """
        method, uri = description.method, description.uri
        request = self._build_request(description)
        logger.info("HTTP task call: %s %s", method, uri)

        try:
            response = await self._client.send(request, auth=self._auth, stream=True)
        except httpx.RequestError as exc:
            logger.warning("HTTP task transport failure: %s %s: %r", method, uri, exc)
            raise TransportError(method, uri, str(exc) or type(exc).__name__) from exc

        try:
            content = await self._read_body(response, uri)
        except httpx.RequestError as exc:
            logger.warning("HTTP task transport failure reading body: %s %s: %r", method, uri, exc)
            raise TransportError(method, uri, str(exc) or type(exc).__name__) from exc
        finally:
            await response.aclose()

        text = content.decode(response.encoding or "utf-8", errors="replace")
        headers = dict(response.headers)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            status_code = response.status_code
            message = text.strip() or f"{status_code} {response.reason_phrase} from {method} {uri}"
            logger.info("HTTP task remote error: %s %s -> %d", method, uri, status_code)
            return NormalizedResponse(
                status_code=status_code,
                body=message,
                headers=headers,
                error=RemoteHttpError(status_code=status_code, message=message),
            )

        return NormalizedResponse(status_code=200, body=_parse_body(text), headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


# ── Workflow task adapter ─────────────────────────────────────────────────────


class TaskResult(BaseModel):
    status: Literal["COMPLETED", "FAILED"]
    output: dict[str, Any] = {}
    reason_for_incompletion: str | None = None
    # True when the engine's retry policy may re-run the task.
    retryable: bool = False


class HttpTask:
    """Runs an HTTP call from a workflow task's input.

    The task input carries the request under ``http_request``::

        {"http_request": {"uri": "https://svc/items", "method": "POST",
                          "body": {...}, "readTimeOut": 5000}}
    """

    REQUEST_PARAMETER_NAME = "http_request"

    def __init__(self, executor: HttpTaskExecutor) -> None:
        self.executor = executor

    async def start(
        self,
        task_input: Mapping[str, Any],
        workflow_id: str | None = None,
        task_id: str | None = None,
    ) -> TaskResult:
        wf_token = ctx_workflow_id.set(workflow_id)
        task_token = ctx_task_id.set(task_id)
        try:
            return await self._run(task_input)
        finally:
            ctx_task_id.reset(task_token)
            ctx_workflow_id.reset(wf_token)

    async def _run(self, task_input: Mapping[str, Any]) -> TaskResult:
        raw = task_input.get(self.REQUEST_PARAMETER_NAME)
        if not isinstance(raw, Mapping):
            return TaskResult(
                status="FAILED",
                reason_for_incompletion=(
                    f"Missing HTTP request. Task input MUST have a "
                    f"'{self.REQUEST_PARAMETER_NAME}' key with an HTTP request object"
                ),
            )
        try:
            description = HttpRequestDescription.model_validate(raw)
        except ValidationError as exc:
            return TaskResult(
                status="FAILED",
                reason_for_incompletion=f"Invalid HTTP request: {exc.errors()[0].get('msg', 'validation error')}",
            )

        try:
            response = await self.executor.execute(description)
        except (TransportError, TokenAcquisitionError) as exc:
            logger.warning("HTTP task failed, retryable: %s", exc)
            return TaskResult(
                status="FAILED",
                reason_for_incompletion=f"Failed to invoke HTTP task due to: {exc}",
                retryable=True,
            )
        except ResponseTooLargeError as exc:
            return TaskResult(status="FAILED", reason_for_incompletion=str(exc))
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            return TaskResult(
                status="FAILED",
                reason_for_incompletion=f"Invalid HTTP request: {exc}",
            )

        output = {"response": response.model_dump(exclude={"error"})}
        if response.is_remote_error:
            return TaskResult(
                status="FAILED",
                output=output,
                reason_for_incompletion=response.error.message,
            )
        return TaskResult(status="COMPLETED", output=output)
