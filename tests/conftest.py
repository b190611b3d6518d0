# SIMKL sync test scripts
from __future__ import annotations

import sys
from collections import deque
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from providers.simkl.models import (  # noqa: E402
    SearchFileResponse,
    SyncActivitiesResponse,
    SyncAllItemsResponse,
    SyncHistoryResponse,
)
from providers.simkl.payloads import submitted_counts  # noqa: E402
from sync_platform.config_base import ConfigStore  # noqa: E402
from sync_platform.models import LocalMediaItem, SaveReason, UserData  # noqa: E402


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


# ──────────────────────────────────────────────────────────────────────────────
# host fakes

class FakeLibrary:
    def __init__(self, items: Optional[List[LocalMediaItem]] = None) -> None:
        self.items: List[LocalMediaItem] = list(items or [])
        self.calls: List[tuple] = []

    def add(self, *items: LocalMediaItem) -> None:
        self.items.extend(items)

    def get_items(self, user_id, kind, *, ancestor_id=None, season=None, episode=None):
        self.calls.append((user_id, kind, ancestor_id, season, episode))
        out = []
        for it in self.items:
            if it.kind != kind:
                continue
            if ancestor_id is not None and (it.series is None or it.series.id != ancestor_id):
                continue
            if season is not None and it.season != season:
                continue
            if episode is not None and it.episode != episode:
                continue
            out.append(it)
        return out


class FakeUserDataStore:
    def __init__(self) -> None:
        self.data: Dict[tuple, UserData] = {}
        self.saves: List[tuple] = []
        self.missing: set[str] = set()

    def set(self, user_id: str, item: LocalMediaItem, **kw: Any) -> None:
        self.data[(user_id, item.id)] = UserData(**kw)

    def get(self, user_id: str, item: LocalMediaItem) -> UserData:
        return self.data.get((user_id, item.id)) or UserData()

    def get_user_data(self, user_id, item):
        if item.id in self.missing:
            return None
        return replace(self.get(user_id, item))

    def save_user_data(self, user_id, item, data, reason: SaveReason) -> None:
        self.saves.append((user_id, item.id, reason))
        self.data[(user_id, item.id)] = replace(data)


# ──────────────────────────────────────────────────────────────────────────────
# SIMKL fake

class FakeSimklClient:
    """
    Records every call. Writes answer from `script` (responses or exceptions,
    in order) and otherwise accept everything that was submitted.
    """

    def __init__(self) -> None:
        self.activities = SyncActivitiesResponse()
        self.catalog = SyncAllItemsResponse()
        self.catalog_by_type: Dict[str, SyncAllItemsResponse] = {}
        self.search_results: Dict[str, Any] = {}
        self.script: deque = deque()
        self.calls: List[tuple] = []
        self.read_error: Optional[Exception] = None

    def _read(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if self.read_error is not None:
            raise self.read_error

    def get_activities(self, token):
        self._read("activities", token)
        return self.activities

    def get_all_items(self, token, type=None, status=None, date_from=None, extended=None):
        self._read("all_items", token, type, status)
        if type is not None and type in self.catalog_by_type:
            return self.catalog_by_type[type]
        return self.catalog

    def _write(self, name: str, payload, token):
        self.calls.append((name, dict(payload), token))
        if self.script:
            nxt = self.script.popleft()
            if isinstance(nxt, Exception):
                raise nxt
            return nxt
        key = "deleted" if name == "history_remove" else "added"
        return SyncHistoryResponse.model_validate({key: submitted_counts(payload)})

    def sync_history_add(self, payload, token):
        return self._write("history_add", payload, token)

    def sync_history_remove(self, payload, token):
        return self._write("history_remove", payload, token)

    def add_to_collection(self, payload, token):
        return self._write("add_to_list", payload, token)

    def search_by_file(self, path):
        self.calls.append(("search_file", path))
        res = self.search_results.get(path)
        if isinstance(res, Exception):
            raise res
        if isinstance(res, dict):
            return SearchFileResponse.model_validate(res)
        return res

    def writes(self, name: Optional[str] = None) -> List[tuple]:
        names = {"history_add", "history_remove", "add_to_list"}
        return [c for c in self.calls if c[0] in names and (name is None or c[0] == name)]


# ──────────────────────────────────────────────────────────────────────────────
# manual timers

class FakeTimer:
    def __init__(self, sched: "FakeScheduler", delay: float, fn: Callable[[], None]) -> None:
        self.sched = sched
        self.delay = delay
        self.fn = fn
        self.due: Optional[float] = None
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.due = self.sched.now + self.delay
        self.sched.timers.append(self)

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []
        self.fired_at: List[float] = []

    def __call__(self, delay: float, fn: Callable[[], None]) -> FakeTimer:
        return FakeTimer(self, delay, fn)

    def live(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted((t for t in self.live() if t.due is not None and t.due <= target), key=lambda t: t.due)
            if not due:
                break
            t = due[0]
            self.now = t.due  # type: ignore[assignment]
            t.fired = True
            self.fired_at.append(self.now)
            t.fn()
        self.now = target


# ──────────────────────────────────────────────────────────────────────────────
# builders / fixtures

def movie(id: str, **ids: str) -> LocalMediaItem:
    return LocalMediaItem(id=id, kind="movie", name=f"Movie {id}", year=2000, ids=dict(ids), path=f"/media/movies/{id}.mkv")


def series(id: str, **ids: str) -> LocalMediaItem:
    return LocalMediaItem(id=id, kind="series", name=f"Show {id}", year=2010, ids=dict(ids))


def episode(id: str, show: LocalMediaItem, season: int, number: int) -> LocalMediaItem:
    return LocalMediaItem(
        id=id, kind="episode", name=f"Ep {number}", season=season, episode=number,
        series=show, series_name=show.name, path=f"/media/tv/{show.id}/S{season:02d}E{number:02d}.mkv",
    )


def user(id: str = "u1", token: str = "tok-u1", **kw: Any) -> Dict[str, Any]:
    return {"id": id, "user_token": token, **kw}


@pytest.fixture()
def make_config() -> Callable[..., ConfigStore]:
    def _make(*users: Dict[str, Any], **top: Any) -> ConfigStore:
        return ConfigStore({"users": list(users), **top}, persist=False)
    return _make


@pytest.fixture()
def library() -> FakeLibrary:
    return FakeLibrary()


@pytest.fixture()
def store() -> FakeUserDataStore:
    return FakeUserDataStore()


@pytest.fixture()
def simkl() -> FakeSimklClient:
    return FakeSimklClient()


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()
