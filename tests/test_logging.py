# SIMKL sync test scripts
from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from _logging import Logger, debug_enabled, mask_token


def _logger(level: str = "info") -> tuple[Logger, io.StringIO]:
    buf = io.StringIO()
    return Logger(stream=buf, level=level, use_color=False, show_time=False), buf


def test_child_lines_carry_module_and_context() -> None:
    root, buf = _logger()
    root.child("PULL").bind(user="u1").info("marked", 3)
    assert buf.getvalue() == "[PULL] INFO marked 3 user=u1\n"


def test_level_change_reaches_existing_children() -> None:
    root, buf = _logger()
    child = root.child("PUSH")
    root.set_level("error")
    child.warn("dropped")
    child.error("kept")
    assert buf.getvalue().splitlines() == ["[PUSH] ERROR kept"]


def test_debug_follows_config_switch(config_base: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SS_DEBUG", raising=False)
    root, buf = _logger()
    (config_base / "config.json").write_text(json.dumps({"runtime": {"debug": True}}), encoding="utf-8")
    debug_enabled.reset()
    root.debug("payload")
    (config_base / "config.json").write_text(json.dumps({"runtime": {"debug": False}}), encoding="utf-8")
    debug_enabled.reset()
    root.debug("hidden")
    assert buf.getvalue() == "DEBUG payload\n"


def test_json_sink_mirrors_records(tmp_path: Path) -> None:
    root, _ = _logger()
    root.enable_json(str(tmp_path / "log.jsonl"))
    root.child("SIMKL").error("boom", extra={"status": 503})
    rec = json.loads((tmp_path / "log.jsonl").read_text(encoding="utf-8").splitlines()[0])
    assert rec["level"] == "ERROR" and rec["ctx"] == {"module": "SIMKL"} and rec["extra"] == {"status": 503}


def test_mask_token() -> None:
    assert mask_token("abcdef123456") == "…3456"
    assert mask_token("abc") == "…"
    assert mask_token("") == "<none>"
