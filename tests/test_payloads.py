# SIMKL sync test scripts
from __future__ import annotations

from datetime import datetime, timezone

from conftest import episode, movie, series
from providers.simkl import payloads
from providers.simkl.models import SyncHistoryResponse


def test_movie_entry_shape() -> None:
    m = movie("m1", Imdb="tt1", Tmdb="10")
    e = payloads.movie_entry(m, watched_at=datetime(2025, 1, 1, tzinfo=timezone.utc), to="plantowatch")
    assert e == {
        "ids": {"imdb": "tt1", "tmdb": "10"},
        "title": "Movie m1",
        "year": 2000,
        "watched_at": "2025-01-01T00:00:00Z",
        "to": "plantowatch",
    }


def test_episodes_fold_into_one_show_with_seasons() -> None:
    show = series("s1", Tvdb="7")
    other = series("s2", Imdb="tt9")
    eps = [episode("e1", show, 1, 1), episode("e2", show, 1, 2), episode("e3", show, 2, 1), episode("e1b", show, 1, 1), episode("x", other, 1, 1)]
    groups = payloads.group_episodes(eps, watched_at={"e2": datetime(2025, 1, 1, tzinfo=timezone.utc)})

    assert list(groups) == ["tvdb:7", "imdb:tt9"]
    g = groups["tvdb:7"]
    assert g["ids"] == {"tvdb": "7"} and g["title"] == "Show s1"
    assert g["seasons"] == [
        {"number": 1, "episodes": [{"number": 1}, {"number": 2, "watched_at": "2025-01-01T00:00:00Z"}]},
        {"number": 2, "episodes": [{"number": 1}]},
    ]


def test_submitted_counts_treat_nested_episodes_as_episodes() -> None:
    show = series("s1", Tvdb="7")
    body = payloads.build_body(
        movies=[payloads.movie_entry(movie("m", Imdb="tt1"))],
        shows=list(payloads.group_episodes([episode("e1", show, 1, 1), episode("e2", show, 1, 2)]).values())
        + [payloads.show_entry(series("s3", Imdb="tt3"))],
    )
    assert payloads.submitted_counts(body) == {"movies": 1, "shows": 1, "episodes": 2}


def test_counts_match_compares_per_category() -> None:
    body = {"movies": [{"ids": {"imdb": "tt1"}}, {"ids": {"imdb": "tt2"}}]}
    assert payloads.counts_match(body, SyncHistoryResponse.model_validate({"added": {"movies": 2}}))
    assert not payloads.counts_match(body, SyncHistoryResponse.model_validate({"added": {"movies": 1}}))
    assert payloads.counts_match(body, SyncHistoryResponse.model_validate({"deleted": {"movies": 2}}), removed=True)
