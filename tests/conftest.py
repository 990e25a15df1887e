from datetime import datetime, timedelta, timezone

import pytest

from material_workbook.engine import MaterialWorkbookEngine
from material_workbook.workbook_store import WorkbookStore


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(clock) -> WorkbookStore:
    return WorkbookStore(clock=clock)


@pytest.fixture
def engine(store, clock) -> MaterialWorkbookEngine:
    return MaterialWorkbookEngine(store, clock=clock)


@pytest.fixture
def lumber_sheet(engine):
    version = engine.start_workbook("JOB-1")
    return engine.add_sheet(version.id, "Lumber")
