# providers/simkl/payloads.py
# Local items -> SIMKL history / add-to-list bodies.
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sync_platform.id_map import ID_KEYS, canonical_key, project_ids
from sync_platform.models import LocalMediaItem

from ._common import iso_z
from .models import SyncHistoryResponse

# Keys sent to SIMKL; simkl ids are only present after a file search.
PAYLOAD_ID_KEYS: Tuple[str, ...] = ("simkl", "imdb", "tmdb", "tvdb", "mal", "anidb")


def _ids(item: LocalMediaItem) -> Dict[str, str]:
    return project_ids(item.ids, PAYLOAD_ID_KEYS)


def _head(item: LocalMediaItem) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ids": _ids(item)}
    if item.name:
        out["title"] = item.name
    if item.year:
        out["year"] = item.year
    return out


def movie_entry(item: LocalMediaItem, *, watched_at: Optional[datetime] = None, to: Optional[str] = None) -> Dict[str, Any]:
    out = _head(item)
    if watched_at is not None:
        out["watched_at"] = iso_z(watched_at)
    if to:
        out["to"] = to
    return out


def show_key(item: LocalMediaItem) -> str:
    """Grouping key of the show an item belongs to (itself for series)."""
    src = item.identity_source()
    return canonical_key(src.ids) or f"local:{src.id or item.series_name or item.id}"


def group_episodes(
    episodes: Iterable[LocalMediaItem],
    *,
    watched_at: Optional[Mapping[str, datetime]] = None,
    to: Optional[str] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Fold episodes into one show entry per parent show:
      {show_key: {"ids", "title", "year", "seasons": [{"number", "episodes": [{"number", "watched_at"?}]}]}}
    Duplicate season/episode pairs collapse into one entry. Insertion order is kept.
    """
    when = watched_at or {}
    groups: Dict[str, Dict[str, Any]] = {}
    for ep in episodes:
        if ep.season is None or ep.episode is None:
            continue
        show = ep.identity_source()
        key = show_key(ep)
        group = groups.get(key)
        if group is None:
            group = _head(show)
            if not group.get("title") and ep.series_name:
                group["title"] = ep.series_name
            group["seasons"] = []
            if to:
                group["to"] = to
            groups[key] = group
        s_num, e_num = int(ep.season), int(ep.episode)
        season = next((s for s in group["seasons"] if s.get("number") == s_num), None)
        if season is None:
            season = {"number": s_num, "episodes": []}
            group["seasons"].append(season)
        if any(e.get("number") == e_num for e in season["episodes"]):
            continue
        row: Dict[str, Any] = {"number": e_num}
        ts = when.get(ep.id)
        if ts is not None:
            row["watched_at"] = iso_z(ts)
        season["episodes"].append(row)
    return groups


def show_entry(item: LocalMediaItem, *, to: Optional[str] = None) -> Dict[str, Any]:
    out = _head(item)
    if to:
        out["to"] = to
    return out


def build_body(movies: List[Dict[str, Any]] | None = None, shows: List[Dict[str, Any]] | None = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if movies:
        body["movies"] = list(movies)
    if shows:
        body["shows"] = list(shows)
    return body


def submitted_counts(body: Mapping[str, Any]) -> Dict[str, int]:
    """Per-category counts as SIMKL reports them back (episodes nested under shows count as episodes)."""
    movies = len(body.get("movies") or [])
    shows = 0
    episodes = len(body.get("episodes") or [])
    for show in body.get("shows") or []:
        seasons = show.get("seasons") or []
        eps = sum(len(s.get("episodes") or []) for s in seasons)
        if eps:
            episodes += eps
        else:
            shows += 1
    return {"movies": movies, "shows": shows, "episodes": episodes}


def accepted_counts(resp: SyncHistoryResponse, *, removed: bool = False) -> Dict[str, int]:
    c = resp.deleted if removed else resp.added
    return {"movies": c.movies, "shows": c.shows, "episodes": c.episodes}


def counts_match(body: Mapping[str, Any], resp: SyncHistoryResponse, *, removed: bool = False) -> bool:
    """True when SIMKL accepted exactly what was submitted, category by category."""
    return submitted_counts(body) == accepted_counts(resp, removed=removed)


def item_ids_for_log(item: LocalMediaItem) -> str:
    ids = project_ids(item.identity_source().ids, ID_KEYS)
    return ",".join(f"{k}:{v}" for k, v in ids.items()) or "-"
