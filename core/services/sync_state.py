"""
Per-(platform, group) sync bookkeeping for incremental sync collaborators.
"""

from __future__ import annotations

import time
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.models import SyncState
from core.validators import validate_optional_string, validate_string, validate_timestamp


def _find(db, platform: str, group_id: str) -> Optional[SyncState]:
    return (
        db.query(SyncState)
        .filter(SyncState.platform == platform, SyncState.group_id == group_id)
        .first()
    )


def serialize_sync_state(state: SyncState) -> dict:
    return {
        "platform": state.platform,
        "groupId": state.group_id,
        "lastMessageId": state.last_message_id,
        "lastTimestamp": state.last_timestamp,
        "lastSyncAt": state.last_sync_at,
    }


def get_sync_state(db, platform: str, group_id: str) -> Optional[dict]:
    state = _find(db, platform, group_id)
    return serialize_sync_state(state) if state else None


def upsert_sync_state(
    db,
    platform: str,
    group_id: str,
    last_timestamp: int,
    last_message_id: Optional[str] = None,
    last_sync_at: Optional[int] = None,
) -> dict:
    """Create or update the sync state for (platform, group_id)."""
    validate_string(platform, "platform")
    validate_string(group_id, "groupId")
    validate_timestamp(last_timestamp, "lastTimestamp")
    validate_optional_string(last_message_id, "lastMessageId")
    if last_sync_at is None:
        last_sync_at = int(time.time() * 1000)
    else:
        validate_timestamp(last_sync_at, "lastSyncAt")

    values = {
        "last_message_id": last_message_id,
        "last_timestamp": last_timestamp,
        "last_sync_at": last_sync_at,
    }
    state = _find(db, platform, group_id)
    if state is None:
        state = SyncState(platform=platform, group_id=group_id, **values)
        db.add(state)
        try:
            db.commit()
        except IntegrityError:
            # lost a create race; update the winner's row instead
            db.rollback()
            state = _find(db, platform, group_id)
            if state is None:
                raise
            for key, value in values.items():
                setattr(state, key, value)
            db.commit()
    else:
        for key, value in values.items():
            setattr(state, key, value)
        db.commit()
    db.refresh(state)
    return serialize_sync_state(state)
