# sync_platform/models.py
# Local-side data model: library items, per-user watch state, queued changes, host events.
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping

from .id_map import has_external_ids, ids_from_provider_ids

ItemKind = Literal["movie", "series", "episode"]
LibraryAction = Literal["added", "removed"]


class SaveReason(str, Enum):
    PLAYBACK_START = "PlaybackStart"
    PLAYBACK_PROGRESS = "PlaybackProgress"
    PLAYBACK_FINISHED = "PlaybackFinished"
    TOGGLE_PLAYED = "TogglePlayed"
    IMPORT = "Import"
    UPDATE_USER_DATA = "UpdateUserData"


# Reasons that never reach the outbound queue (scans, metadata refreshes, our own imports).
IGNORED_REASONS = frozenset({SaveReason.IMPORT, SaveReason.UPDATE_USER_DATA})


@dataclass
class LocalMediaItem:
    id: str
    kind: ItemKind
    name: str | None = None
    year: int | None = None
    ids: dict[str, str] = field(default_factory=dict)
    path: str | None = None
    season: int | None = None
    episode: int | None = None
    series: "LocalMediaItem | None" = None
    series_name: str | None = None

    def __post_init__(self) -> None:
        self.ids = ids_from_provider_ids(self.ids)

    @property
    def is_movie(self) -> bool:
        return self.kind == "movie"

    @property
    def is_series(self) -> bool:
        return self.kind == "series"

    @property
    def is_episode(self) -> bool:
        return self.kind == "episode"

    def identity_source(self) -> "LocalMediaItem":
        """Episodes are identified through their show."""
        if self.is_episode and self.series is not None:
            return self.series
        return self

    def has_required_ids(self) -> bool:
        return has_external_ids(self.identity_source().ids)

    def label(self) -> str:
        if self.is_episode:
            show = self.series.name if self.series is not None else self.series_name
            try:
                return f"{show or '?'} S{int(self.season or 0):02d}E{int(self.episode or 0):02d}"
            except (TypeError, ValueError):
                return f"{show or '?'}"
        return f"{self.name or '?'} ({self.year or '?'})"


@dataclass
class UserData:
    played: bool = False
    play_count: int = 0
    last_played: datetime | None = None


@dataclass(frozen=True)
class PendingChange:
    item: LocalMediaItem
    played: bool
    timestamp: datetime | None = None


@dataclass(frozen=True)
class UserDataEvent:
    user_id: str
    item: LocalMediaItem | None
    played: bool
    reason: SaveReason
    last_played: datetime | None = None


@dataclass(frozen=True)
class LibraryEvent:
    item: LocalMediaItem | None
    action: LibraryAction


def item_from_mapping(obj: Mapping[str, Any], *, series: LocalMediaItem | None = None) -> LocalMediaItem:
    """Build an item from a host DTO-like dict (Id/Type/Name/ProviderIds/...)."""
    raw_kind = str(obj.get("Type") or obj.get("kind") or "").strip().lower()
    kind: ItemKind = "episode" if raw_kind == "episode" else "series" if raw_kind in ("series", "show") else "movie"
    return LocalMediaItem(
        id=str(obj.get("Id") or obj.get("id") or ""),
        kind=kind,
        name=obj.get("Name") or obj.get("name"),
        year=obj.get("ProductionYear") or obj.get("year"),
        ids=dict(obj.get("ProviderIds") or obj.get("ids") or {}),
        path=obj.get("Path") or obj.get("path"),
        season=obj.get("ParentIndexNumber") if obj.get("ParentIndexNumber") is not None else obj.get("season"),
        episode=obj.get("IndexNumber") if obj.get("IndexNumber") is not None else obj.get("episode"),
        series=series,
        series_name=obj.get("SeriesName") or (series.name if series is not None else None),
    )
