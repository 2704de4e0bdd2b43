import itertools

import pytest

from audiencerunner.config import AudienceRunnerConfig
from audiencerunner.dispatch import Dispatcher
from audiencerunner.log_store import InMemorySheetsService, SheetLogStore
from audiencerunner.operations import OperationContext, OperationRegistry


def _copy(row):
    # malformed rows are handed over as-is
    return dict(row) if isinstance(row, dict) else row


class FakeAudienceService:
    """In-test audience backend recording every call."""

    def __init__(self, new=None, updates=None, audiences=None, fail=None):
        self.new = list(new or [])
        self.updates = list(updates or [])
        self.audiences = list(audiences or [])
        # audience name or id -> exception to raise
        self.fail = dict(fail or {})
        self.created = []
        self.updated = []
        self.list_calls = 0

    def list_new_audiences(self):
        self.list_calls += 1
        return [_copy(row) for row in self.new]

    def list_audience_updates(self):
        self.list_calls += 1
        return [_copy(row) for row in self.updates]

    def list_audiences(self):
        self.list_calls += 1
        return [_copy(row) for row in self.audiences]

    def create_audience(self, job):
        if job.name in self.fail:
            raise self.fail[job.name]
        self.created.append(job.name)
        return f"aud-{len(self.created)}"

    def update_audience(self, job):
        if job.audience_id in self.fail:
            raise self.fail[job.audience_id]
        self.updated.append((job.audience_id, list(job.changed_attributes)))


def stepping_clock(step: float):
    """Clock advancing by `step` seconds on every read."""
    counter = itertools.count(0, step)
    return lambda: next(counter)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "audiencerunner_home"
    monkeypatch.setenv("AUDIENCERUNNER_HOME", str(home))
    return home


@pytest.fixture
def test_config():
    return AudienceRunnerConfig(
        log_sheet="Logs",
        log_start_cell="A2",
        invocation_budget_seconds=300,
        clear_logs_on_start=False,
    )


@pytest.fixture
def audience_service():
    return FakeAudienceService(
        new=[
            {"name": "Cart abandoners", "floodlight_id": "fl-1", "lifespan": 30,
             "rules": [{"variable": "u1", "operator": "EQUALS", "value": "cart"}]},
            {"name": "Buyers", "floodlight_id": "fl-1", "lifespan": 90},
        ],
        updates=[
            {"audience_id": "111", "name": "Renamed", "changed_attributes": ["name"]},
        ],
        audiences=[
            {"audience_id": "111", "name": "Cart abandoners"},
            {"audience_id": "222", "name": "Buyers"},
        ],
    )


@pytest.fixture
def sheets():
    return InMemorySheetsService()


@pytest.fixture
def context(audience_service, sheets):
    return OperationContext(
        audience_service=audience_service,
        log_store=SheetLogStore(sheets, "Logs", "A2"),
        budget_seconds=300,
    )


@pytest.fixture
def registry(context):
    return OperationRegistry.create_default(context)


@pytest.fixture
def dispatcher(registry):
    return Dispatcher(registry)
