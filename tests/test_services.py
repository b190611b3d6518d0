# SIMKL sync test scripts
from __future__ import annotations

from conftest import movie, user
from services import build_services
from sync_platform.models import SaveReason, UserDataEvent


def test_build_services_wires_handlers_and_tasks(make_config, library, store, simkl, scheduler) -> None:
    cfg = make_config(user("u1", "tok-1", user_data_sync_delay=5), simkl={"batch_size": 2})
    svc = build_services(cfg, library, store, client=simkl, timer_factory=scheduler)

    assert svc.pipeline.batch_size == 2
    assert sorted(svc.runner.tasks) == ["SimklSyncFromSimkl", "SimklSyncLibrary", "SimklSyncUnwatchedMovies"]

    ev = UserDataEvent(user_id="u1", item=movie("m", Imdb="tt1"), played=True, reason=SaveReason.TOGGLE_PLAYED)
    assert svc.user_data.on_user_data_saved(ev)
    scheduler.advance(5)
    assert [c[0] for c in simkl.writes()] == ["history_add"]
    svc.stop()
