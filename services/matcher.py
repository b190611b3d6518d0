# services/matcher.py
# Entity matching: remote id sets -> local library items, plus the file-search
# fallback used when SIMKL cannot resolve a real-time scrobble by ids.
from __future__ import annotations

import ntpath
import posixpath
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from _logging import log as _root_log
from providers.simkl import payloads
from providers.simkl._common import iso_z
from providers.simkl.client import SimklClient
from providers.simkl.models import SearchFileResponse, SyncIds
from sync_platform.errors import NoMatchError
from sync_platform.host import LibraryQuery
from sync_platform.id_map import MATCH_PRIORITY, match_key
from sync_platform.models import LocalMediaItem

log = _root_log.child("MATCH")


def _ids(remote: SyncIds | Mapping[str, Any] | None) -> dict[str, Any]:
    if remote is None:
        return {}
    if isinstance(remote, SyncIds):
        return remote.as_dict()
    return dict(remote)


def find_match(
    candidates: Iterable[LocalMediaItem],
    remote_ids: SyncIds | Mapping[str, Any] | None,
    priority: Sequence[str] = MATCH_PRIORITY,
) -> Optional[LocalMediaItem]:
    """First candidate (in enumeration order) agreeing with remote_ids on a priority id."""
    ids = _ids(remote_ids)
    if not ids:
        return None
    for cand in candidates:
        if match_key(cand.ids, ids, priority):
            return cand
    return None


class EntityMatcher:
    """Library-backed lookups for one user. Candidate lists can be passed in to avoid requerying."""

    def __init__(self, library: LibraryQuery) -> None:
        self.library = library

    def movies(self, user_id: str) -> list[LocalMediaItem]:
        return list(self.library.get_items(user_id, "movie"))

    def series(self, user_id: str) -> list[LocalMediaItem]:
        return list(self.library.get_items(user_id, "series"))

    def find_movie(
        self,
        user_id: str,
        remote_ids: SyncIds | Mapping[str, Any] | None,
        movies: Optional[Sequence[LocalMediaItem]] = None,
    ) -> Optional[LocalMediaItem]:
        return find_match(movies if movies is not None else self.movies(user_id), remote_ids)

    def find_series(
        self,
        user_id: str,
        remote_ids: SyncIds | Mapping[str, Any] | None,
        series: Optional[Sequence[LocalMediaItem]] = None,
    ) -> Optional[LocalMediaItem]:
        return find_match(series if series is not None else self.series(user_id), remote_ids)

    def find_episode(
        self,
        user_id: str,
        show_ids: SyncIds | Mapping[str, Any] | None,
        season: Optional[int],
        episode: Optional[int],
        series: Optional[Sequence[LocalMediaItem]] = None,
    ) -> Optional[LocalMediaItem]:
        """
        Episode by show ids + season/episode index. Every local show agreeing on
        an id is tried in order; the first one holding that episode wins.
        """
        ids = _ids(show_ids)
        if not ids or season is None or episode is None:
            return None
        for show in (series if series is not None else self.series(user_id)):
            if not match_key(show.ids, ids):
                continue
            found = self.library.get_items(
                user_id, "episode",
                ancestor_id=show.id, season=int(season), episode=int(episode),
            )
            for ep in found:
                if ep.series is None:
                    ep = replace(ep, series=show, series_name=ep.series_name or show.name)
                return ep
        return None


# --- file-search fallback ----------------------------------------------------

def _base_name(path: str) -> str:
    """File name without directories, for either path flavour."""
    if "\\" in path and "/" not in path:
        return ntpath.basename(path)
    return posixpath.basename(path)


class FileMatcher:
    def __init__(self, client: SimklClient) -> None:
        self.client = client

    def search(
        self,
        item: LocalMediaItem,
        *,
        full_path: bool = True,
        watched_at: Optional[datetime] = None,
    ) -> Tuple[dict[str, Any], LocalMediaItem]:
        """
        Ask SIMKL to identify the item's file. Returns a fresh history body and
        the item enriched with what SIMKL reported. Raises NoMatchError when the
        response is empty or its type disagrees with the item kind.
        """
        if not item.path:
            raise NoMatchError(f"no file path for {item.label()}")
        query = item.path if full_path else _base_name(item.path)
        mo = self.client.search_by_file(query)
        if mo is None:
            raise NoMatchError("search file response is null")
        return self._history_from(mo, item, watched_at)

    @staticmethod
    def _history_from(
        mo: SearchFileResponse,
        item: LocalMediaItem,
        watched_at: Optional[datetime],
    ) -> Tuple[dict[str, Any], LocalMediaItem]:
        kind = (mo.type or "").strip().lower()
        stamp = {"watched_at": iso_z(watched_at)} if watched_at is not None else {}

        if item.is_movie and mo.movie is not None:
            if kind != "movie":
                raise NoMatchError(f"type != movie ({mo.type})")
            enriched = replace(item, name=mo.movie.title or item.name, year=mo.movie.year or item.year)
            entry: dict[str, Any] = {"ids": _ids(mo.movie.ids), **stamp}
            if mo.movie.title:
                entry["title"] = mo.movie.title
            if mo.movie.year:
                entry["year"] = mo.movie.year
            return payloads.build_body(movies=[entry]), enriched

        if (item.is_episode or item.is_series) and mo.episode is not None and mo.show is not None:
            if kind != "episode":
                raise NoMatchError(f"type != episode ({mo.type})")
            enriched = replace(
                item,
                name=mo.episode.title or item.name,
                series_name=mo.show.title or item.series_name,
                season=mo.episode.season if mo.episode.season is not None else item.season,
                episode=mo.episode.episode if mo.episode.episode is not None else item.episode,
                year=mo.show.year or item.year,
            )
            body = {"episodes": [{"ids": _ids(mo.episode.ids), **stamp}]}
            return body, enriched

        raise NoMatchError(f"nothing usable in search response (type={mo.type})")

    def mark_as_watched(
        self,
        item: LocalMediaItem,
        token: str,
        watched_at: Optional[datetime] = None,
    ) -> Tuple[bool, LocalMediaItem]:
        """
        Single-item scrobble. Submit by ids; if SIMKL does not confirm every
        entry, identify the file by full path, then by bare file name, and
        submit what the search returned. InvalidTokenError/TransientError propagate.
        """
        body = history_body(item, watched_at)
        resp = self.client.sync_history_add(body, token)
        if payloads.counts_match(body, resp):
            log.info(f"scrobbled {item.label()} by ids")
            return True, item

        log.debug(f"ids not confirmed for {item.label()} ({payloads.item_ids_for_log(item)}); trying file search")
        try:
            body, item = self.search(item, full_path=True, watched_at=watched_at)
        except NoMatchError as e:
            log.debug(f"full path search failed ({e}); trying file name")
            try:
                body, item = self.search(item, full_path=False, watched_at=watched_at)
            except NoMatchError as e2:
                log.warn(f"no SIMKL match for {item.label()}: {e2}")
                return False, item

        resp = self.client.sync_history_add(body, token)
        ok = payloads.counts_match(body, resp)
        if ok:
            log.info(f"scrobbled {item.label()} by file")
        else:
            log.warn(f"SIMKL did not accept {item.label()} after file search")
        return ok, item


def history_body(item: LocalMediaItem, watched_at: Optional[datetime] = None) -> dict[str, Any]:
    if item.is_movie:
        return payloads.build_body(movies=[payloads.movie_entry(item, watched_at=watched_at)])
    if item.is_series:
        return payloads.build_body(shows=[payloads.show_entry(item)])
    stamps = {item.id: watched_at} if watched_at is not None else None
    groups = payloads.group_episodes([item], watched_at=stamps)
    return payloads.build_body(shows=list(groups.values()))
