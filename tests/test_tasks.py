# SIMKL sync test scripts
from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from conftest import FakeLibrary, episode, movie, series, user
from providers.simkl.models import SyncActivitiesResponse, SyncAllItemsResponse
from services.pipeline import BatchPushPipeline
from services.pull import IncrementalPullEngine
from services.tasks import (
    SyncFromSimklTask,
    SyncLibraryTask,
    SyncTask,
    SyncUnwatchedMoviesTask,
    TaskRunner,
)
from sync_platform.errors import InvalidTokenError

T = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


def test_export_pushes_watched_items_with_play_dates(make_config, simkl, library, store) -> None:
    cfg = make_config(user("u1", "tok-1", sync_library_to_simkl=True), user("u2", "tok-2"))
    show = series("s", Tvdb="3")
    seen, unseen, bare = movie("m1", Imdb="tt1"), movie("m2", Imdb="tt2"), movie("m3")
    ep, orphan = episode("e1", show, 1, 1), episode("e2", show, 1, 2)
    orphan.series = None
    library.add(seen, unseen, bare, show, ep, orphan)
    for it in (seen, bare, ep, orphan):
        store.set("u1", it, played=True, play_count=1, last_played=T if it is seen else None)

    res = SyncLibraryTask(cfg, library, store, BatchPushPipeline(simkl)).execute()

    assert res["ok"] and res["users"] == 1
    adds = simkl.writes("history_add")
    assert adds[0][1]["movies"] == [{"ids": {"imdb": "tt1"}, "title": "Movie m1", "year": 2000, "watched_at": "2025-03-03T12:00:00Z"}]
    assert [s["ids"] for s in adds[1][1]["shows"]] == [{"tvdb": "3"}]
    assert len(adds) == 2


def test_plan_to_watch_task_skips_remote_completed(make_config, simkl, library, store) -> None:
    cfg = make_config(user("u1", "tok-1"))
    a, b, watched = movie("a", Imdb="tt1"), movie("b", Tmdb="2", Tvdb="7"), movie("w", Imdb="tt3")
    library.add(a, b, watched)
    store.set("u1", watched, played=True)
    simkl.catalog_by_type["movies"] = SyncAllItemsResponse.model_validate(
        {"movies": [{"status": "completed", "movie": {"ids": {"imdb": "tt1"}}}]}
    )

    SyncUnwatchedMoviesTask(cfg, library, store, BatchPushPipeline(simkl), simkl).execute()

    assert ("all_items", "tok-1", "movies", None) in simkl.calls
    calls = simkl.writes("add_to_list")
    assert calls == [("add_to_list", {"movies": [{"ids": {"tmdb": "2"}, "title": "Movie b", "year": 2000, "to": "plantowatch"}]}, "tok-1")]


def test_progress_is_reported_per_user(make_config, simkl, library, store) -> None:
    cfg = make_config(*(user(f"u{i}", f"tok-{i}", sync_history_from_simkl=True) for i in range(4)))
    simkl.activities = SyncActivitiesResponse(all=T)
    task = SyncFromSimklTask(cfg, IncrementalPullEngine(cfg, simkl, library, store))
    seen = []
    res = task.execute(seen.append)
    assert seen == [25.0, 50.0, 75.0, 100.0]
    assert res == {"ok": True, "users": 4, "done": 4, "failed": 0, "cancelled": False}
    assert all(u.last_sync_activities == T for u in cfg.users())


def test_rejected_token_is_cleared_and_others_continue(make_config, simkl, library, store) -> None:
    cfg = make_config(user("u1", "bad", sync_history_from_simkl=True), user("u2", "tok-2", sync_history_from_simkl=True))
    simkl.activities = SyncActivitiesResponse(all=T)

    class Engine(IncrementalPullEngine):
        def run_for_user(self, u, cancel=None):
            if u.user_token == "bad":
                raise InvalidTokenError("nope", status=401)
            return super().run_for_user(u, cancel)

    res = SyncFromSimklTask(cfg, Engine(cfg, simkl, library, store)).execute()
    assert res["failed"] == 1 and not res["ok"]
    assert cfg.get_user("u1").user_token == ""
    assert cfg.get_user("u2").last_sync_activities == T


def test_no_users_is_a_quiet_success(make_config) -> None:
    cfg = make_config(user("u1", "tok", sync_history_from_simkl=False))
    task = SyncFromSimklTask(cfg, engine=None)  # type: ignore[arg-type]
    assert task.execute()["users"] == 0


# --- runner ------------------------------------------------------------------

class _Probe(SyncTask):
    key = "Probe"
    interval = 60

    def __init__(self, config, gate=None, boom=None):
        super().__init__(config)
        self.gate = gate
        self.boom = boom
        self.runs = 0

    def execute(self, progress=lambda _: None, cancel=None):
        self.runs += 1
        progress(50.0)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.boom is not None:
            raise self.boom
        return {"ok": True, "cancelled": bool(cancel and cancel.is_set())}


def test_runner_records_result_and_progress(make_config) -> None:
    clock = [1000.0]
    probe = _Probe(make_config())
    runner = TaskRunner([probe], clock=lambda: clock[0])

    assert runner.due() == ["Probe"]
    assert runner.run("Probe", wait=True)
    st = runner.status("Probe")
    assert st["running"] is False and st["progress"] == 50.0
    assert st["last_result"] == {"ok": True, "cancelled": False}
    assert st["last_run_at"] == 1000.0
    assert runner.due() == []
    clock[0] += 60
    assert runner.due() == ["Probe"]
    assert runner.run("Nope") is False


def test_runner_refuses_parallel_run_and_cancels(make_config) -> None:
    gate = threading.Event()
    probe = _Probe(make_config(), gate=gate)
    runner = TaskRunner([probe])
    assert runner.run("Probe")
    assert runner.run("Probe") is False
    assert runner.cancel("Probe") is True
    gate.set()
    runner._running["Probe"].join(timeout=5)
    assert runner.status("Probe")["last_result"] == {"ok": True, "cancelled": True}
    assert probe.runs == 1


def test_runner_keeps_crash_message(make_config) -> None:
    runner = TaskRunner([_Probe(make_config(), boom=RuntimeError("disk full"))])
    runner.run("Probe", wait=True)
    st = runner.status("Probe")
    assert st["last_error"] == "disk full" and st["last_result"] is None


@pytest.mark.parametrize("cls,interval", [(SyncFromSimklTask, 12 * 3600), (SyncLibraryTask, 24 * 3600), (SyncUnwatchedMoviesTask, None)])
def test_task_schedule(cls, interval) -> None:
    assert cls.interval == interval


def test_export_continues_after_host_failure(make_config, simkl, store) -> None:
    cfg = make_config(user("u1", "tok-1", sync_library_to_simkl=True), user("u2", "tok-2", sync_library_to_simkl=True))

    class BrokenForU1(FakeLibrary):
        def get_items(self, user_id, kind, **kw):
            if user_id == "u1":
                raise RuntimeError("host library unavailable")
            return super().get_items(user_id, kind, **kw)

    lib = BrokenForU1()
    m = movie("m", Imdb="tt1")
    lib.add(m)
    store.set("u2", m, played=True, play_count=1)
    seen = []

    res = SyncLibraryTask(cfg, lib, store, BatchPushPipeline(simkl)).execute(seen.append)

    assert res == {"ok": False, "users": 2, "done": 2, "failed": 1, "cancelled": False}
    assert seen == [50.0, 100.0]
    assert [(c[0], c[2]) for c in simkl.writes()] == [("history_add", "tok-2")]
    assert cfg.get_user("u1").user_token == "tok-1"
