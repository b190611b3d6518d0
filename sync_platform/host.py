# sync_platform/host.py
# Contracts of the host media server as seen by the sync engine.
from __future__ import annotations

from typing import Callable, Iterable, Protocol

from .models import ItemKind, LocalMediaItem, SaveReason, UserData

ProgressSink = Callable[[float], None]


class LibraryQuery(Protocol):
    def get_items(
        self,
        user_id: str,
        kind: ItemKind,
        *,
        ancestor_id: str | None = None,
        season: int | None = None,
        episode: int | None = None,
    ) -> Iterable[LocalMediaItem]: ...


class UserDataStore(Protocol):
    def get_user_data(self, user_id: str, item: LocalMediaItem) -> UserData | None: ...

    def save_user_data(
        self,
        user_id: str,
        item: LocalMediaItem,
        data: UserData,
        reason: SaveReason,
    ) -> None: ...


def null_progress(_: float) -> None:
    return None
