# sync_platform/id_map.py
# Common ID handling for movies/shows/episodes.
# - Normalize/clean IDs coming from the host library and from SIMKL.
# - Map host provider-id dicts (Imdb/Tmdb/Tvdb/MyAnimeList/AniDB) to our keys.
# - Identity check: an item takes part in sync only with an imdb/tmdb/tvdb id.
# - Priority matching: imdb > tmdb > tvdb, first agreeing id wins.

from __future__ import annotations
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

# Public policy: use these everywhere (payloads, matching, logging).
ID_KEYS: Tuple[str, ...]         = ("imdb", "tmdb", "tvdb", "mal", "anidb", "simkl")
MATCH_PRIORITY: Tuple[str, ...]  = ("imdb", "tmdb", "tvdb")
IDENTITY_KEYS: Tuple[str, ...]   = MATCH_PRIORITY

__all__ = [
    "ID_KEYS", "MATCH_PRIORITY", "IDENTITY_KEYS",
    "ids_from_provider_ids", "coalesce_ids",
    "has_external_ids", "match_key", "ids_match",
    "canonical_key", "project_ids", "normalize_id",
]

# --- tiny utils ---------------------------------------------------------------

_CLEAN_SENTINELS = {"none", "null", "nan", "undefined", "unknown", "0", ""}

def _norm_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None

def _normalize_id(key: str, val: Any) -> Optional[str]:
    """Normalize provider IDs so local and remote values compare equal."""
    k = (key or "").lower().strip()
    s = _norm_str(val)
    if not s or s.lower() in _CLEAN_SENTINELS:
        return None

    if k in ("tmdb", "tvdb", "simkl", "mal", "anidb"):
        digits = re.sub(r"\D+", "", s)
        return digits or None

    if k == "imdb":
        s = s.lower()
        m = re.search(r"(tt\d+)", s)
        if m:
            return m.group(1)
        digits = re.sub(r"\D+", "", s)
        return f"tt{digits}" if digits else None

    return s

normalize_id = _normalize_id

# --- host ProviderIds → ids ---------------------------------------------------

_HOST_MAP = {
    "imdb": "imdb",
    "tmdb": "tmdb",
    "tvdb": "tvdb",
    "myanimelist": "mal",
    "mal": "mal",
    "anidb": "anidb",
    "simkl": "simkl",
}

def ids_from_provider_ids(pids: Mapping[str, Any] | None) -> Dict[str, str]:
    out: Dict[str, str] = {}
    if not isinstance(pids, Mapping):
        return out
    for k, v in pids.items():
        dst = _HOST_MAP.get(str(k).strip().lower())
        if not dst:
            continue
        n = _normalize_id(dst, v)
        if n:
            out[dst] = n
    return out

def coalesce_ids(*many: Mapping[str, Any] | None) -> Dict[str, str]:
    """Merge several id maps; earlier maps win."""
    out: Dict[str, str] = {}
    for ids in many:
        if not isinstance(ids, Mapping):
            continue
        for k in ID_KEYS:
            if k in out:
                continue
            n = _normalize_id(k, ids.get(k))
            if n:
                out[k] = n
    return out

# --- identity & matching ------------------------------------------------------

def has_external_ids(ids: Mapping[str, Any] | None) -> bool:
    if not isinstance(ids, Mapping):
        return False
    return any(_normalize_id(k, ids.get(k)) for k in IDENTITY_KEYS)

def match_key(
    local: Mapping[str, Any] | None,
    remote: Mapping[str, Any] | None,
    priority: Iterable[str] = MATCH_PRIORITY,
) -> Optional[str]:
    """Return the first id key (in priority order) on which both sides agree."""
    if not isinstance(local, Mapping) or not isinstance(remote, Mapping):
        return None
    for k in priority:
        r = _normalize_id(k, remote.get(k))
        if not r:
            continue
        if _normalize_id(k, local.get(k)) == r:
            return k
    return None

def ids_match(local: Mapping[str, Any] | None, remote: Mapping[str, Any] | None) -> bool:
    return match_key(local, remote) is not None

def canonical_key(ids: Mapping[str, Any] | None) -> Optional[str]:
    """'imdb:tt…' for the best id present, used to dedupe payload groups."""
    if not isinstance(ids, Mapping):
        return None
    for k in ID_KEYS:
        n = _normalize_id(k, ids.get(k))
        if n:
            return f"{k}:{n}"
    return None

def project_ids(ids: Mapping[str, Any] | None, keys: Iterable[str] = ID_KEYS) -> Dict[str, str]:
    """Trim an id map to the given keys, dropping empties (payload shape)."""
    if not isinstance(ids, Mapping):
        return {}
    out: Dict[str, str] = {}
    for k in keys:
        n = _normalize_id(k, ids.get(k))
        if n:
            out[k] = n
    return out
