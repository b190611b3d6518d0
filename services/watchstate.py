# services/watchstate.py
# Remote "watched" -> local user data. Only ever moves unwatched -> watched.
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from _logging import log as _root_log
from sync_platform.host import UserDataStore
from sync_platform.models import LocalMediaItem, SaveReason, UserData

log = _root_log.child("PULL")


def watched_state(current: UserData, watched_at: Optional[datetime] = None) -> Optional[UserData]:
    """New state for a watched signal, or None when nothing changes."""
    if current.played:
        return None
    return replace(
        current,
        played=True,
        play_count=max(int(current.play_count or 0), 1),
        last_played=watched_at if watched_at is not None else current.last_played,
    )


def apply_watched(
    store: UserDataStore,
    user_id: str,
    item: LocalMediaItem,
    watched_at: Optional[datetime] = None,
) -> bool:
    """
    Mark item watched for user_id. Returns True when user data was written.
    Writes are tagged Import so the change handlers do not echo them back.
    """
    current = store.get_user_data(user_id, item)
    if current is None:
        return False
    nxt = watched_state(current, watched_at)
    if nxt is None:
        return False
    store.save_user_data(user_id, item, nxt, SaveReason.IMPORT)
    log.debug(f"marked {item.label()} watched for {user_id}")
    return True
