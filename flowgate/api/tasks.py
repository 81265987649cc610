"""Task API: run an HTTP task on behalf of a workflow.

POST /api/tasks/http
    Body: {"workflow_id": "...", "task_id": "...", "input": {"http_request": {...}}}
    Returns the task result; remote error statuses come back as a FAILED
    result with the remote response recorded, not as an API error.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from flowgate.tasks.http_task import HttpTask, TaskResult

logger = logging.getLogger("flowgate.api.tasks")
router = APIRouter()


class HttpTaskRequest(BaseModel):
    workflow_id: str | None = None
    task_id: str | None = None
    input: dict[str, Any] = {}


@router.post("/http", response_model=TaskResult)
async def run_http_task(body: HttpTaskRequest, request: Request) -> TaskResult:
    task: HttpTask = request.app.state.http_task
    result = await task.start(body.input, workflow_id=body.workflow_id, task_id=body.task_id)
    logger.info(
        "HTTP task %s (workflow=%s) finished: %s",
        body.task_id, body.workflow_id, result.status,
    )
    return result
