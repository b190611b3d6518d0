# SIMKL sync test scripts
from __future__ import annotations

from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
MODULES = sorted(
    p for pkg in ("sync_platform", "providers", "services") for p in (ROOT / pkg).rglob("*.py")
) + [ROOT / "_logging.py"]


@pytest.mark.parametrize("path", MODULES, ids=lambda p: p.relative_to(ROOT).as_posix())
def test_module_header_names_its_path(path: Path) -> None:
    first, second = path.read_text(encoding="utf-8").splitlines()[:2]
    assert first == f"# {path.relative_to(ROOT).as_posix()}"
    assert second.startswith("# ") and len(second) > 3


def test_pyproject_points_only_at_existing_files() -> None:
    text = (ROOT / "pyproject.toml").read_text(encoding="utf-8")
    for line in text.splitlines():
        if line.startswith("readme"):
            assert (ROOT / line.split("=", 1)[1].strip().strip('"')).is_file()
