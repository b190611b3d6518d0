# services/plantowatch.py
# Which local unwatched movies still need a "plan to watch" entry on SIMKL.
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from providers.simkl._common import STATUS_COMPLETED, STATUS_PLAN_TO_WATCH
from providers.simkl.models import SyncMovieItem
from sync_platform.id_map import normalize_id, project_ids
from sync_platform.models import LocalMediaItem

# Remote statuses that already cover the movie; anything else (or no record) gets pushed.
SKIP_STATUSES = frozenset({STATUS_COMPLETED, STATUS_PLAN_TO_WATCH})
PLAN_ID_KEYS = ("imdb", "tmdb")


def build_status_map(movies: Optional[Iterable[SyncMovieItem]]) -> Dict[str, str]:
    """{'imdb:tt…': status, 'tmdb:123': status} for every remote movie with a status."""
    out: Dict[str, str] = {}
    for row in movies or []:
        if row.movie is None or row.movie.ids is None or not row.status:
            continue
        status = row.status.strip().lower()
        for k in PLAN_ID_KEYS:
            v = normalize_id(k, getattr(row.movie.ids, k, None))
            if v:
                out[f"{k}:{v}"] = status
    return out


def should_add_to_plan_to_watch(item: LocalMediaItem, statuses: Dict[str, str]) -> bool:
    for k in PLAN_ID_KEYS:
        v = item.ids.get(k)
        if v and statuses.get(f"{k}:{v}") in SKIP_STATUSES:
            return False
    return True


def has_plan_ids(item: LocalMediaItem) -> bool:
    return any(item.ids.get(k) for k in PLAN_ID_KEYS)


def filter_plan_to_watch(
    unwatched: Iterable[LocalMediaItem],
    remote_movies: Optional[Iterable[SyncMovieItem]],
) -> List[LocalMediaItem]:
    """
    Local unwatched movies to push to the plantowatch list, trimmed to their
    imdb/tmdb ids. Movies without either id never qualify.
    """
    statuses = build_status_map(remote_movies)
    out: List[LocalMediaItem] = []
    for it in unwatched:
        if not it.is_movie or not has_plan_ids(it):
            continue
        if should_add_to_plan_to_watch(it, statuses):
            out.append(replace(it, ids=project_ids(it.ids, PLAN_ID_KEYS)))
    return out
