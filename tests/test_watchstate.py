# SIMKL sync test scripts
from __future__ import annotations

from datetime import datetime, timezone

from conftest import movie
from sync_platform.models import SaveReason, UserData
from services.watchstate import apply_watched, watched_state

T1 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_unwatched_becomes_watched_with_import_reason(store) -> None:
    m = movie("m", Imdb="tt1")
    assert apply_watched(store, "u1", m, T1) is True
    ud = store.get("u1", m)
    assert ud.played and ud.play_count == 1 and ud.last_played == T1
    assert store.saves == [("u1", "m", SaveReason.IMPORT)]


def test_second_application_is_a_noop(store) -> None:
    m = movie("m", Imdb="tt1")
    apply_watched(store, "u1", m, T1)
    before = store.get("u1", m)
    assert apply_watched(store, "u1", m, T1) is False
    assert apply_watched(store, "u1", m, T0) is False
    assert store.get("u1", m) == before
    assert len(store.saves) == 1


def test_play_count_never_drops_and_timestamp_optional() -> None:
    nxt = watched_state(UserData(played=False, play_count=4, last_played=T0))
    assert nxt == UserData(played=True, play_count=4, last_played=T0)


def test_already_watched_never_regresses() -> None:
    assert watched_state(UserData(played=True, play_count=0), T1) is None


def test_missing_user_data_is_skipped(store) -> None:
    m = movie("m", Imdb="tt1")
    store.missing.add("m")
    assert apply_watched(store, "u1", m, T1) is False
    assert store.saves == []
