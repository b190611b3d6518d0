# services/__init__.py
# Service modules and the wiring of one engine instance.
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import requests

from providers.simkl.client import SimklClient
from sync_platform.config_base import ConfigStore
from sync_platform.host import LibraryQuery, UserDataStore

from . import debounce, handlers, matcher, pipeline, plantowatch, pull, tasks, watchstate
from .debounce import TimerFactory

__all__ = [
    "matcher",
    "watchstate",
    "pipeline",
    "debounce",
    "handlers",
    "pull",
    "plantowatch",
    "tasks",
    "SyncServices",
    "build_services",
]


@dataclass
class SyncServices:
    client: SimklClient
    pipeline: pipeline.BatchPushPipeline
    user_data: handlers.UserDataChangeHandler
    library: handlers.LibraryChangeHandler
    pull: pull.IncrementalPullEngine
    runner: tasks.TaskRunner

    def stop(self) -> None:
        self.user_data.stop()
        self.library.stop()
        self.runner.stop()


def build_services(
    config: ConfigStore,
    library: LibraryQuery,
    store: UserDataStore,
    *,
    client: Optional[SimklClient] = None,
    session: Optional[requests.Session] = None,
    timer_factory: Optional[TimerFactory] = None,
) -> SyncServices:
    """Wire the engine for one host: handlers for live events plus the scheduled tasks."""
    simkl_cfg = config.simkl()
    client = client or SimklClient.from_config(simkl_cfg, session=session)
    push = pipeline.BatchPushPipeline(client, batch_size=int(simkl_cfg.get("batch_size") or pipeline.DEFAULT_BATCH_SIZE))
    engine = pull.IncrementalPullEngine(config, client, library, store)
    runner = tasks.TaskRunner([
        tasks.SyncFromSimklTask(config, engine),
        tasks.SyncLibraryTask(config, library, store, push),
        tasks.SyncUnwatchedMoviesTask(config, library, store, push, client),
    ])
    return SyncServices(
        client=client,
        pipeline=push,
        user_data=handlers.UserDataChangeHandler(config, push, matcher.FileMatcher(client), timer_factory=timer_factory),
        library=handlers.LibraryChangeHandler(config, push, timer_factory=timer_factory),
        pull=engine,
        runner=runner,
    )
