from __future__ import annotations

import re
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
CLOCK_MODULE = Path("attendance_engine/core/time_provider.py")

WALL_CLOCK_READ = re.compile(r"\b(?:datetime\.(?:now|utcnow|today)|date\.today)\(")

SOURCES = sorted(
    path.relative_to(ROOT)
    for path in [*(ROOT / "attendance_engine").rglob("*.py"), *(ROOT / "scripts").glob("*.py")]
    if path.relative_to(ROOT) != CLOCK_MODULE
)
SERVICES = sorted(path for path in SOURCES if path.parent.name == "services" and path.name != "__init__.py")


@pytest.mark.parametrize("source", SOURCES, ids=str)
def test_module_reads_wall_clock_only_through_time_provider(source: Path) -> None:
    hits = [
        f"{source}:{line_no}: {line.strip()}"
        for line_no, line in enumerate((ROOT / source).read_text(encoding="utf-8").splitlines(), start=1)
        if WALL_CLOCK_READ.search(line)
    ]
    assert not hits, "Direct clock read:\n" + "\n".join(hits)


@pytest.mark.parametrize("service", SERVICES, ids=str)
def test_time_dependent_service_accepts_injected_clock(service: Path) -> None:
    text = (ROOT / service).read_text(encoding="utf-8")
    assert "time_provider: TimeProvider = default_time_provider" in text
