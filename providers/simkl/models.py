# providers/simkl/models.py
# SIMKL response shapes. Unknown fields are ignored; ids and counts are coerced.
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def _as_utc(v: datetime) -> datetime:
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)


# SIMKL sometimes drops the offset; stored checkpoints are always aware.
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SyncIds(_Model):
    simkl: Optional[int] = None
    imdb: Optional[str] = None
    tmdb: Optional[str] = None
    tvdb: Optional[str] = None
    mal: Optional[str] = None
    anidb: Optional[str] = None

    @field_validator("imdb", "tmdb", "tvdb", "mal", "anidb", mode="before")
    @classmethod
    def _as_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @field_validator("simkl", mode="before")
    @classmethod
    def _as_int(cls, v: Any) -> Optional[int]:
        try:
            return int(v) if v not in (None, "") else None
        except (TypeError, ValueError):
            return None

    def as_dict(self) -> dict[str, str]:
        return {k: str(v) for k, v in self.model_dump().items() if v not in (None, "")}


# --- activities -----------------------------------------------------------

class MediaActivities(_Model):
    all: Optional[UtcDatetime] = None
    rated_at: Optional[UtcDatetime] = None
    plantowatch: Optional[UtcDatetime] = None
    watching: Optional[UtcDatetime] = None
    completed: Optional[UtcDatetime] = None
    hold: Optional[UtcDatetime] = None
    dropped: Optional[UtcDatetime] = None
    removed_from_list: Optional[UtcDatetime] = None


class SyncActivitiesResponse(_Model):
    all: Optional[UtcDatetime] = None
    tv_shows: Optional[MediaActivities] = None
    anime: Optional[MediaActivities] = None
    movies: Optional[MediaActivities] = None


# --- all-items ------------------------------------------------------------

class SyncMovieInfo(_Model):
    title: Optional[str] = None
    year: Optional[int] = None
    ids: Optional[SyncIds] = None


class SyncMovieItem(_Model):
    last_watched_at: Optional[UtcDatetime] = None
    user_rating: Optional[int] = None
    status: Optional[str] = None
    movie: Optional[SyncMovieInfo] = None


class SyncEpisodeInfo(_Model):
    number: Optional[int] = None
    watched_at: Optional[UtcDatetime] = None


class SyncSeasonInfo(_Model):
    number: Optional[int] = None
    episodes: Optional[list[SyncEpisodeInfo]] = None


class SyncShowInfo(_Model):
    title: Optional[str] = None
    year: Optional[int] = None
    ids: Optional[SyncIds] = None


class SyncShowItem(_Model):
    last_watched_at: Optional[UtcDatetime] = None
    user_rating: Optional[int] = None
    status: Optional[str] = None
    last_watched: Optional[str] = None
    next_to_watch: Optional[str] = None
    watched_episodes_count: Optional[int] = None
    total_episodes_count: Optional[int] = None
    show: Optional[SyncShowInfo] = None
    seasons: Optional[list[SyncSeasonInfo]] = None


class SyncAllItemsResponse(_Model):
    movies: list[SyncMovieItem] = Field(default_factory=list)
    shows: list[SyncShowItem] = Field(default_factory=list)
    anime: list[SyncShowItem] = Field(default_factory=list)

    @field_validator("movies", "shows", "anime", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [x for x in v if isinstance(x, dict)]
        return v


# --- write responses -----------------------------------------------------

def _count(v: Any) -> int:
    """SIMKL reports either a number or the list of affected entries."""
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, int):
        return v
    if isinstance(v, (list, tuple)):
        return sum(1 for x in v if x is not None)
    try:
        return int(v)
    except (TypeError, ValueError):
        return 0


class SyncHistoryResponseCount(_Model):
    movies: int = 0
    shows: int = 0
    episodes: int = 0

    @field_validator("movies", "shows", "episodes", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> int:
        return _count(v)


class SyncHistoryResponse(_Model):
    added: SyncHistoryResponseCount = Field(default_factory=SyncHistoryResponseCount)
    deleted: SyncHistoryResponseCount = Field(default_factory=SyncHistoryResponseCount)
    not_found: SyncHistoryResponseCount = Field(default_factory=SyncHistoryResponseCount)

    @field_validator("added", "deleted", "not_found", mode="before")
    @classmethod
    def _none_is_zero(cls, v: Any) -> Any:
        return {} if v is None else v


# --- file search ---------------------------------------------------------

class SearchEpisode(_Model):
    title: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    multipart: Optional[bool] = None
    ids: Optional[SyncIds] = None


class SearchFileResponse(_Model):
    type: Optional[str] = None
    movie: Optional[SyncMovieInfo] = None
    show: Optional[SyncShowInfo] = None
    episode: Optional[SearchEpisode] = None


class UserSettings(_Model):
    error: Optional[str] = None
    user: Optional[dict[str, Any]] = None
    account: Optional[dict[str, Any]] = None
