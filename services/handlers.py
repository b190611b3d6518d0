# services/handlers.py
# Real-time change handlers: playback/user-data events per user, catalog events globally.
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from _logging import Logger, log as _root_log, mask_token
from sync_platform.config_base import ConfigStore
from sync_platform.errors import InvalidTokenError, SIMKLError
from sync_platform.models import (
    IGNORED_REASONS,
    LibraryAction,
    LibraryEvent,
    LocalMediaItem,
    PendingChange,
    UserDataEvent,
)

from .debounce import Debouncer, TimerFactory
from .matcher import FileMatcher
from .pipeline import BatchPushPipeline

USERDATA_KINDS = ("movie", "episode")
LIBRARY_KINDS = ("movie", "series", "episode")
LIBRARY_KEY = "library"


def _eligible(item: Optional[LocalMediaItem], kinds: tuple[str, ...]) -> bool:
    return item is not None and item.kind in kinds and item.has_required_ids()


def _invalidate(config: ConfigStore, token: str, logger: Logger) -> None:
    if config.invalidate_token(token):
        logger.error(f"SIMKL rejected token {mask_token(token)}; removed from settings")
    else:
        logger.error(f"SIMKL rejected token {mask_token(token)}")


# ──────────────────────────────────────────────────────────────────────────────
# user data (playback, played toggles)

class UserDataChangeHandler:
    def __init__(
        self,
        config: ConfigStore,
        pipeline: BatchPushPipeline,
        file_matcher: FileMatcher,
        *,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self.config = config
        self.pipeline = pipeline
        self.file_matcher = file_matcher
        self.log = _root_log.child("USERDATA")
        self.queue: Debouncer[str, PendingChange] = Debouncer(
            "USERDATA",
            self._flush,
            delay=self._delay,
            timer_factory=timer_factory,
        )

    def _delay(self, user_id: str) -> float:
        u = self.config.get_user(user_id)
        return float(u.user_data_sync_delay) if u is not None else 10.0

    def on_user_data_saved(self, event: UserDataEvent) -> bool:
        """Queue a playback-driven change. Returns False when the event is filtered out."""
        if event.reason in IGNORED_REASONS:
            return False
        user = self.config.get_user(event.user_id)
        if user is None or not user.has_token or not user.sync_user_data_changes:
            return False
        item = event.item
        if item is None or not _eligible(item, USERDATA_KINDS):
            return False
        self.queue.submit(
            event.user_id,
            PendingChange(item=item, played=event.played, timestamp=event.last_played),
        )
        return True

    @staticmethod
    def net_changes(changes: List[PendingChange]) -> List[PendingChange]:
        """Latest change per item, in order of first appearance."""
        out: "OrderedDict[str, PendingChange]" = OrderedDict()
        for ch in changes:
            out[ch.item.id] = ch
        return list(out.values())

    def _flush(self, user_id: str, changes: List[PendingChange]) -> None:
        net = self.net_changes(changes)
        user = self.config.get_user(user_id)
        token = user.user_token if user is not None and user.has_token else ""
        if not token:
            self.log.warn(f"{user_id}: no SIMKL token anymore, dropping {len(net)} change(s)")
            return

        played = [c for c in net if c.played]
        unplayed = [c for c in net if not c.played]
        self.log.info(f"{user_id}: {len(played)} watched, {len(unplayed)} unwatched")
        try:
            if len(played) == 1:
                ch = played[0]
                ok, item = self.file_matcher.mark_as_watched(ch.item, token, ch.timestamp)
                if not ok:
                    self.log.warn(f"{user_id}: {item.label()} not recorded on SIMKL")
            elif played:
                stamps: Dict[str, datetime] = {c.item.id: c.timestamp for c in played if c.timestamp is not None}
                self.pipeline.push([c.item for c in played], "history-add", token, watched_at=stamps)
            if unplayed:
                self.pipeline.push([c.item for c in unplayed], "history-remove", token)
        except InvalidTokenError:
            _invalidate(self.config, token, self.log)
        except SIMKLError as e:
            self.log.error(f"{user_id}: push failed: {e}")

    def stop(self, *, flush: bool = False) -> None:
        self.queue.stop(flush=flush)


# ──────────────────────────────────────────────────────────────────────────────
# library (catalog add/remove), fanned out to every subscribed user

@dataclass(frozen=True)
class LibraryChange:
    item: LocalMediaItem
    action: LibraryAction
    user_id: str
    user_token: str


class LibraryChangeHandler:
    def __init__(
        self,
        config: ConfigStore,
        pipeline: BatchPushPipeline,
        *,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self.config = config
        self.pipeline = pipeline
        self.log = _root_log.child("LIBRARY")
        self.queue: Debouncer[str, LibraryChange] = Debouncer(
            "LIBRARY",
            self._flush,
            delay=lambda _key: float(self.config.library_sync_delay()),
            timer_factory=timer_factory,
        )

    def on_library_changed(self, event: LibraryEvent) -> int:
        """Queue the change once per subscribed user. Returns how many users got it."""
        item = event.item
        if item is None or not _eligible(item, LIBRARY_KINDS):
            return 0
        users = self.config.users_with_token("sync_library_changes")
        for u in users:
            self.queue.submit(LIBRARY_KEY, LibraryChange(item, event.action, u.id, u.user_token))
        return len(users)

    def on_item_added(self, item: Optional[LocalMediaItem]) -> int:
        return self.on_library_changed(LibraryEvent(item, "added"))

    def on_item_removed(self, item: Optional[LocalMediaItem]) -> int:
        return self.on_library_changed(LibraryEvent(item, "removed"))

    def _flush(self, _key: str, changes: List[LibraryChange]) -> None:
        added: "OrderedDict[str, List[LocalMediaItem]]" = OrderedDict()
        removed: Dict[str, int] = {}
        for ch in changes:
            if ch.action == "added":
                added.setdefault(ch.user_token, []).append(ch.item)
            else:
                removed[ch.user_token] = removed.get(ch.user_token, 0) + 1

        for token, items in added.items():
            try:
                self.pipeline.push(items, "collection-add", token)
            except InvalidTokenError:
                _invalidate(self.config, token, self.log)
            except SIMKLError as e:
                self.log.error(f"library additions for {mask_token(token)} failed: {e}")
            except Exception as e:
                self.log.error(f"library additions for {mask_token(token)} crashed: {e}")

        for token, n in removed.items():
            self.log.info(f"{n} library item(s) removed for {mask_token(token)}; SIMKL lists have no removal call, skipped")

    def stop(self, *, flush: bool = False) -> None:
        self.queue.stop(flush=flush)
