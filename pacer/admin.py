"""Admin endpoints: snapshot ingestion, control cycles and key rotation."""

from typing import Dict

from fastapi import APIRouter, Request, HTTPException
from starlette.responses import JSONResponse

from pacer.dashboard import format_cooldowns, format_trajectory
from pacer.snapshot_store import parse_key_reading, parse_snapshot

admin_router = APIRouter(prefix="/admin", tags=["admin"])


async def read_object_body(request: Request) -> Dict[str, object]:
    """Return the JSON request body, rejecting anything but an object."""
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


@admin_router.post("/snapshots")
async def ingest_snapshot(request: Request) -> JSONResponse:
    """Store one collector snapshot ``{"ts": ..., "keys": {...}}``."""
    body = await request.json()
    snapshot = parse_snapshot(body)
    if snapshot is None:
        raise HTTPException(
            status_code=400, detail="Snapshot needs a numeric ts and a keys object"
        )

    accepted = request.app.state.snapshot_store.append(snapshot)
    return JSONResponse(
        content={"accepted": accepted, "keys": len(snapshot.keys)},
        status_code=201 if accepted else 202,
    )


@admin_router.post("/cycle")
async def run_cycle(request: Request) -> Dict[str, object]:
    """Run one control cycle immediately."""
    result = request.app.state.control_loop.run_once()
    return {
        "adjusted": result.adjusted,
        "trajectory": format_trajectory(result.trajectory),
        "cooldowns": (
            format_cooldowns(result.adjustment) if result.adjustment else None
        ),
    }


@admin_router.post("/keys")
async def observe_key(request: Request) -> JSONResponse:
    """Start tracking a credential key."""
    key_manager = request.app.state.key_manager
    body = await read_object_body(request)
    key_id = body.get("key_id")
    if not key_id or not isinstance(key_id, str):
        raise HTTPException(status_code=400, detail="key_id is required")
    subscription_type = body.get("subscription_type", "unknown")
    if not isinstance(subscription_type, str):
        raise HTTPException(status_code=400, detail="subscription_type must be a string")

    record = await key_manager.observe_key(key_id, subscription_type)
    return JSONResponse(
        content={"key_id": record.key_prefix(), "status": record.status},
        status_code=201,
    )


@admin_router.post("/keys/{key_id}/rotate")
async def rotate_key(request: Request, key_id: str) -> Dict[str, object]:
    """Make a tracked key the active one."""
    key_manager = request.app.state.key_manager
    try:
        switched = await key_manager.record_rotation(key_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"switched": switched}


@admin_router.post("/keys/{key_id}/status")
async def set_key_status(request: Request, key_id: str) -> Dict[str, object]:
    """Report a status change for a key (exhausted, invalid, expired, active)."""
    key_manager = request.app.state.key_manager
    body = await read_object_body(request)
    status = body.get("status")
    if not status:
        raise HTTPException(status_code=400, detail="status is required")
    if key_id not in key_manager.state.keys:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")
    try:
        record = await key_manager.mark_status(key_id, status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "key_id": record.key_prefix(),
        "status": record.status,
        "active_key": key_manager.get_status()["current_key_id"],
    }


@admin_router.post("/keys/{key_id}/usage")
async def report_key_usage(request: Request, key_id: str) -> Dict[str, str]:
    """Report the latest quota reading of a key.

    Body: {"5h": 42.0, "7d": 17.5}
    """
    key_manager = request.app.state.key_manager
    body = await request.json()
    reading = parse_key_reading(body)
    if reading is None:
        raise HTTPException(status_code=400, detail="5h and 7d percentages are required")
    if key_id not in key_manager.state.keys:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")

    await key_manager.record_usage(key_id, reading)
    return {"status": "recorded"}
