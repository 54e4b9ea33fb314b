"""
Sync-state endpoints for incremental sync workers.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from app.deps import get_db_session
from app.routes.messages import read_json_body
from core.errors import NotFound, ValidationIssue
from core.services.sync_state import get_sync_state, upsert_sync_state


router = APIRouter()


@router.get("/sync-state")
def read_sync_state(
    platform: Optional[str] = None,
    group_id: Optional[str] = Query(None, alias="groupId"),
    db=Depends(get_db_session),
):
    if not platform or not group_id:
        raise ValidationIssue("platform and groupId required", field="groupId", error_type="required")
    state = get_sync_state(db, platform, group_id)
    if state is None:
        raise NotFound("sync state not found", field="groupId")
    return state


@router.put("/sync-state")
async def write_sync_state(request: Request, db=Depends(get_db_session)):
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise ValidationIssue("body must be a JSON object", field="body", error_type="invalid_type")
    for field in ("platform", "groupId", "lastTimestamp"):
        if field not in body:
            raise ValidationIssue(f"Missing required field: {field}", field=field, error_type="required")
    return await run_in_threadpool(
        upsert_sync_state,
        db,
        body["platform"],
        body["groupId"],
        body["lastTimestamp"],
        body.get("lastMessageId"),
        body.get("lastSyncAt"),
    )
