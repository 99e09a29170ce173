"""Task runner endpoints.

The runner that actually executes automation tasks lives outside this
service. It asks which tasks are due, runs them, and reports each run back so
the next eligible time can be computed.
"""

from typing import Dict

from fastapi import APIRouter, Request, HTTPException

from pacer.admin import read_object_body
from pacer.dashboard import current_schedule, format_entry
from pacer.models import format_instant

runner_router = APIRouter(prefix="/runner", tags=["runner"])


@runner_router.get("/due")
async def get_due_tasks(request: Request) -> Dict[str, object]:
    """Interval-scheduled tasks that may run now."""
    due = current_schedule(request, due_only=True)
    return {"tasks": [format_entry(entry) for entry in due]}


@runner_router.post("/report-run")
async def report_run(request: Request) -> Dict[str, object]:
    """Record that a task was executed.

    Body: {"task": "Lint Check"}
    """
    body = await read_object_body(request)
    task_name = body.get("task")

    if not task_name:
        raise HTTPException(status_code=400, detail="task is required")

    if task_name not in request.app.state.registry.tasks:
        raise HTTPException(status_code=404, detail=f"Task {task_name} not found")

    run_state = request.app.state.task_runs.record_run(task_name)
    return {"status": "recorded", "last_run": format_instant(run_state.last_run)}
