# services/pull.py
# Incremental import from SIMKL: activity checkpoint -> all-items -> local watched state.
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from _logging import log as _root_log, mask_token
from providers.simkl._common import STATUS_COMPLETED
from providers.simkl.client import SimklClient
from providers.simkl.models import SyncAllItemsResponse, SyncMovieItem, SyncShowItem
from sync_platform.config_base import ConfigStore, UserConfig
from sync_platform.errors import InvalidTokenError, SIMKLError
from sync_platform.host import LibraryQuery, UserDataStore
from sync_platform.models import LocalMediaItem

from .matcher import EntityMatcher
from .watchstate import apply_watched

log = _root_log.child("PULL")


def needs_pull(checkpoint: Optional[datetime], remote_all: Optional[datetime]) -> bool:
    """No checkpoint yet, or SIMKL reports activity strictly after it."""
    if checkpoint is None:
        return True
    if remote_all is None:
        return False
    return remote_all > checkpoint


def _completed(status: Optional[str]) -> bool:
    return (status or "").strip().lower() == STATUS_COMPLETED


@dataclass
class PullReport:
    user_id: str
    needed: bool = False
    movies_marked: int = 0
    episodes_marked: int = 0
    failed: int = 0
    cancelled: bool = False
    checkpoint: Optional[datetime] = None
    advanced: bool = False

    @property
    def marked(self) -> int:
        return self.movies_marked + self.episodes_marked


class IncrementalPullEngine:
    def __init__(
        self,
        config: ConfigStore,
        client: SimklClient,
        library: LibraryQuery,
        store: UserDataStore,
        *,
        matcher: Optional[EntityMatcher] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.library = library
        self.store = store
        self.matcher = matcher or EntityMatcher(library)

    def run_for_user(self, user: UserConfig, cancel: Optional[threading.Event] = None) -> PullReport:
        """
        One import cycle for one user.

        The checkpoint moves to SIMKL's "all" timestamp only after every item
        was processed without error and without cancellation, so an interrupted
        cycle repeats the same window next time. InvalidTokenError propagates.
        """
        rep = PullReport(user_id=user.id, checkpoint=user.last_sync_activities)
        token = user.user_token
        acts = self.client.get_activities(token)
        if not needs_pull(user.last_sync_activities, acts.all):
            log.info(f"{user.id}: no SIMKL activity since {user.last_sync_activities}, skipping")
            return rep

        rep.needed = True
        log.info(f"{user.id}: pulling SIMKL library (token {mask_token(token)})")
        catalog: SyncAllItemsResponse = self.client.get_all_items(token)

        movies = self.matcher.movies(user.id)
        series = self.matcher.series(user.id)

        self._movies(user.id, catalog.movies, movies, rep, cancel)
        self._shows(user.id, catalog.shows, series, rep, cancel)
        self._shows(user.id, catalog.anime, series, rep, cancel)

        if rep.cancelled:
            log.info(f"{user.id}: cancelled, checkpoint kept at {user.last_sync_activities}")
        elif rep.failed:
            log.warn(f"{user.id}: {rep.failed} item(s) failed, checkpoint kept")
        else:
            self.config.save_checkpoint(user.id, acts.all)
            rep.checkpoint, rep.advanced = acts.all, True
        log.info(f"{user.id}: marked movies={rep.movies_marked} episodes={rep.episodes_marked}")
        return rep

    def _cancelled(self, cancel: Optional[threading.Event], rep: PullReport) -> bool:
        if cancel is not None and cancel.is_set():
            rep.cancelled = True
        return rep.cancelled

    def _movies(
        self,
        user_id: str,
        remote: Iterable[SyncMovieItem],
        local: List[LocalMediaItem],
        rep: PullReport,
        cancel: Optional[threading.Event],
    ) -> None:
        rows = list(remote or [])
        if rows:
            log.info(f"{user_id}: processing {len(rows)} movie(s) from SIMKL")
        for row in rows:
            if self._cancelled(cancel, rep):
                return
            if not _completed(row.status) or row.movie is None:
                continue
            try:
                hit = self.matcher.find_movie(user_id, row.movie.ids, local)
                if hit is not None and apply_watched(self.store, user_id, hit, row.last_watched_at):
                    rep.movies_marked += 1
            except Exception as e:
                rep.failed += 1
                log.error(f"{user_id}: movie {row.movie.title or '?'} failed: {e}")

    def _shows(
        self,
        user_id: str,
        remote: Iterable[SyncShowItem],
        local: List[LocalMediaItem],
        rep: PullReport,
        cancel: Optional[threading.Event],
    ) -> None:
        rows = list(remote or [])
        if rows:
            log.info(f"{user_id}: processing {len(rows)} show(s) from SIMKL")
        for row in rows:
            if self._cancelled(cancel, rep):
                return
            if not _completed(row.status) or not row.seasons or row.show is None:
                continue
            try:
                for season in row.seasons:
                    for ep in season.episodes or []:
                        hit = self.matcher.find_episode(user_id, row.show.ids, season.number, ep.number, local)
                        if hit is not None and apply_watched(self.store, user_id, hit, ep.watched_at):
                            rep.episodes_marked += 1
            except Exception as e:
                rep.failed += 1
                log.error(f"{user_id}: show {row.show.title or '?'} failed: {e}")


def run_pull(engine: IncrementalPullEngine, users: Iterable[UserConfig], cancel: Optional[threading.Event] = None) -> List[PullReport]:
    """Pull for several users; any failure (rejected token, remote or host error) only stops that user."""
    out: List[PullReport] = []
    for u in users:
        if cancel is not None and cancel.is_set():
            break
        try:
            out.append(engine.run_for_user(u, cancel))
        except InvalidTokenError:
            engine.config.invalidate_token(u.user_token)
            log.error(f"{u.id}: SIMKL rejected token {mask_token(u.user_token)}; removed from settings")
        except SIMKLError as e:
            log.error(f"{u.id}: pull failed: {e}")
        except Exception as e:
            log.error(f"{u.id}: pull crashed: {e}")
    return out
