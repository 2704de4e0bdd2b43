"""Tests for the operation registry and the audience and log operations.

Tests cover:
- Registry contents and freezing
- Batch discovery, partial failure and budgeted resumption
- Single audience operations
- Log maintenance operations
"""

import pytest

from audiencerunner.errors import PermanentError, RegistryFrozenError, TransientError
from audiencerunner.job_util import job_from_json, job_to_json
from audiencerunner.log_store import SheetLogStore
from audiencerunner.operations import Deadline, OperationContext, OperationRegistry
from audiencerunner.operations.audiences import ALL_ATTRIBUTES
from audiencerunner.schemas import (
    AudienceCreateJob,
    AudienceUpdateJob,
    Job,
    JobType,
    LogEntry,
)
from conftest import FakeAudienceService, stepping_clock


class TestRegistry:
    """Tests for OperationRegistry."""

    def test_default_operations(self, registry):
        assert registry.list_names() == [
            "clearLogs",
            "createAudience",
            "createAudiences",
            "updateAllAudiences",
            "updateAudience",
            "updateAudiences",
            "writeLogs",
        ]

    def test_default_registry_is_frozen(self, registry):
        assert registry.frozen
        with pytest.raises(RegistryFrozenError):
            registry.register("deleteAudiences", lambda job: job)

    def test_get_unknown(self, registry):
        with pytest.raises(KeyError, match="Unknown operation: nope"):
            registry.get("nope")

    def test_contains(self, registry):
        assert "createAudiences" in registry
        assert "nope" not in registry

    def test_mapping_is_read_only(self, registry):
        mapping = registry.as_mapping()
        assert set(mapping) == set(registry.list_names())
        with pytest.raises(TypeError):
            mapping["other"] = None

    def test_log_operations_do_not_auto_start(self, registry):
        assert registry.get("writeLogs").auto_start is False
        assert registry.get("clearLogs").auto_start is False
        assert registry.get("createAudiences").auto_start is True

    def test_registered_operation_is_callable(self):
        registry = OperationRegistry()
        registry.register("noop", lambda job: job.complete())
        assert registry.get("noop")(Job(id=1)).is_complete()


class TestDeadline:
    """Tests for Deadline."""

    def test_expiry(self):
        deadline = Deadline(10, stepping_clock(6))
        assert not deadline.expired()
        assert deadline.expired()

    def test_remaining_never_negative(self):
        deadline = Deadline(1, stepping_clock(5))
        assert deadline.remaining() == 0.0


class TestCreateAudiences:
    """Tests for the createAudiences batch operation."""

    def test_discovers_and_runs_children(self, registry, audience_service):
        job = registry.get("createAudiences")(Job(id=1))

        assert job.is_complete()
        assert [child.id for child in job.jobs] == [2, 3]
        assert all(isinstance(child, AudienceCreateJob) for child in job.jobs)
        assert all(child.is_complete() for child in job.jobs)
        assert [child.audience_id for child in job.jobs] == ["aud-1", "aud-2"]
        assert audience_service.created == ["Cart abandoners", "Buyers"]

    def test_rule_is_carried_to_child(self, registry):
        job = registry.get("createAudiences")(Job(id=1))
        assert job.jobs[0].rule.to_expression() == '(u1 == "cart")'
        assert job.jobs[1].rule is None

    def test_parent_logs(self, registry):
        job = registry.get("createAudiences")(Job(id=1))
        messages = [entry.message for entry in job.logs]
        assert messages[0] == "Job 1 started"
        assert "Found 2 audience(s) to process" in messages
        assert messages[-2:] == ["2 succeeded, 0 failed", "Job 1 completed"]

    def test_partial_failure(self, sheets):
        service = FakeAudienceService(
            new=[
                {"name": "A", "floodlight_id": "fl"},
                {"name": "B", "floodlight_id": "fl"},
                {"name": "C", "floodlight_id": "fl"},
            ],
            fail={"B": PermanentError("quota exceeded")},
        )
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))

        assert job.is_complete()
        assert [child.status.value for child in job.jobs] == ["COMPLETE", "ERROR", "COMPLETE"]
        assert job.jobs[1].error_message == "quota exceeded"
        assert service.created == ["A", "C"]
        assert "2 succeeded, 1 failed" in [entry.message for entry in job.logs]

    def test_missing_fields_fail_the_child(self, sheets):
        service = FakeAudienceService(new=[{"name": "A"}])
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))

        assert job.jobs[0].is_error()
        assert job.jobs[0].error_message == "Job 2 is missing required fields: floodlight_id"
        assert service.created == []

    def test_bad_rules_fail_only_their_child(self, sheets):
        service = FakeAudienceService(new=[
            {"name": "good", "floodlight_id": "fl"},
            {"name": "bad", "floodlight_id": "fl", "rules": [{"variable": "u1"}], "relationship": "any"},
        ])
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))

        assert job.is_complete()
        assert service.created == ["good"]
        assert job.jobs[1].is_error()
        assert "Job 3 has invalid fields" in job.jobs[1].error_message
        assert "is not a valid Relationship" in job.jobs[1].error_message

    def test_undecodable_row_fails_only_its_child(self, sheets):
        service = FakeAudienceService(new=["not a row", {"name": "good", "floodlight_id": "fl"}])
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))

        assert job.is_complete()
        assert job.jobs[0].is_error()
        assert job.jobs[0].error_message.startswith("Invalid row:")
        assert job.jobs[1].is_complete()
        assert service.created == ["good"]
        assert "1 succeeded, 1 failed" in [entry.message for entry in job.logs]

    def test_nothing_to_do(self, sheets):
        context = OperationContext(audience_service=FakeAudienceService(), log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))
        assert job.is_complete()
        assert job.jobs == []

    def test_budget_spreads_work_over_calls(self, sheets):
        """Each call runs children until the budget is spent; the next call resumes."""
        service = FakeAudienceService(new=[{"name": n, "floodlight_id": "fl"} for n in "ABC"])
        context = OperationContext(
            audience_service=service,
            log_store=SheetLogStore(sheets),
            budget_seconds=10,
            clock=stepping_clock(6),
        )
        operation = OperationRegistry.create_default(context).get("createAudiences")

        job = operation(Job(id=1))
        assert job.is_running()
        assert [child.status.value for child in job.jobs] == ["COMPLETE", "COMPLETE", "PENDING"]
        assert job.logs[-1].message == "2 of 3 done, 1 remaining"

        job = operation(job)
        assert job.is_complete()
        assert service.created == ["A", "B", "C"]
        # children are discovered once
        assert service.list_calls == 1

    def test_always_makes_progress(self, sheets):
        service = FakeAudienceService(new=[{"name": n, "floodlight_id": "fl"} for n in "AB"])
        context = OperationContext(
            audience_service=service,
            log_store=SheetLogStore(sheets),
            budget_seconds=1,
            clock=stepping_clock(100),
        )
        job = OperationRegistry.create_default(context).get("createAudiences")(Job(id=1))
        assert service.created == ["A"]
        assert job.is_running()

    def test_without_audience_service(self, sheets):
        registry = OperationRegistry.create_default(OperationContext(log_store=SheetLogStore(sheets)))
        with pytest.raises(PermanentError, match="No audience service configured"):
            registry.get("createAudiences")(Job(id=1))


class TestUpdateAudiences:
    """Tests for updateAudiences and updateAllAudiences."""

    def test_update_audiences(self, registry, audience_service):
        job = registry.get("updateAudiences")(Job(id=1))
        assert job.is_complete()
        assert isinstance(job.jobs[0], AudienceUpdateJob)
        assert audience_service.updated == [("111", ["name"])]

    def test_update_all_audiences_pushes_every_attribute(self, registry, audience_service):
        job = registry.get("updateAllAudiences")(Job(id=1))
        assert job.is_complete()
        assert [child.job_type for child in job.jobs] == [JobType.AUDIENCE_UPDATE] * 2
        assert audience_service.updated == [("111", ALL_ATTRIBUTES), ("222", ALL_ATTRIBUTES)]

    def test_update_all_audiences_skips_malformed_rows(self, sheets):
        service = FakeAudienceService(audiences=[None, {"audience_id": "222"}])
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("updateAllAudiences")(Job(id=1))

        assert job.is_complete()
        assert job.jobs[0].error_message.startswith("Invalid row:")
        assert service.updated == [("222", ALL_ATTRIBUTES)]

    def test_transient_failure_is_recorded(self, sheets):
        service = FakeAudienceService(
            updates=[{"audience_id": "111"}],
            fail={"111": TransientError("backend unavailable")},
        )
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        job = OperationRegistry.create_default(context).get("updateAudiences")(Job(id=1))
        assert job.jobs[0].error_message == "backend unavailable"


class TestSingleOperations:
    """Tests for createAudience and updateAudience."""

    def test_create_audience(self, registry, audience_service):
        job = registry.get("createAudience")(AudienceCreateJob(id=2, name="Solo", floodlight_id="fl"))
        assert job.is_complete()
        assert job.audience_id == "aud-1"
        assert "Audience 'Solo' created with id aud-1" in [entry.message for entry in job.logs]

    def test_dispatched_create_logs_one_start(self, dispatcher):
        """The dispatcher already started the job; the operation does not start it again."""
        payload = job_to_json(AudienceCreateJob(id=2, name="Solo", floodlight_id="fl"))

        job = job_from_json(dispatcher.invoke("createAudience", payload))

        messages = [entry.message for entry in job.logs]
        assert messages.count("Create audience Solo started") == 1
        assert job.is_complete()

    def test_dispatched_update_logs_one_start(self, dispatcher):
        payload = job_to_json(AudienceUpdateJob(id=3, audience_id="222"))

        job = job_from_json(dispatcher.invoke("updateAudience", payload))

        assert len([entry for entry in job.logs if entry.message.endswith("started")]) == 1

    def test_create_audience_wrong_type(self, registry):
        with pytest.raises(PermanentError, match="createAudience expects a AUDIENCE_CREATE job, got JOB"):
            registry.get("createAudience")(Job(id=2))

    def test_update_audience(self, registry, audience_service):
        job = AudienceUpdateJob(id=3, audience_id="222", changed_attributes=["lifespan"])
        job = registry.get("updateAudience")(job)
        assert job.is_complete()
        assert audience_service.updated == [("222", ["lifespan"])]

    def test_update_audience_failure_propagates(self, sheets):
        service = FakeAudienceService(fail={"222": PermanentError("not found")})
        context = OperationContext(audience_service=service, log_store=SheetLogStore(sheets))
        registry = OperationRegistry.create_default(context)
        with pytest.raises(PermanentError, match="not found"):
            registry.get("updateAudience")(AudienceUpdateJob(id=3, audience_id="222"))


class TestLogOperations:
    """Tests for writeLogs and clearLogs."""

    def test_write_logs_advances_offset(self, registry, sheets):
        job = Job(offset=3, logs=[LogEntry("a"), LogEntry("b")])

        job = registry.get("writeLogs")(job)

        assert job.offset == 5
        assert job.is_complete()
        assert [row[1] for row in sheets.get_values("Logs", "A5:B6")] == ["a", "b"]

    def test_write_logs_without_logs_writes_nothing(self, registry, sheets):
        job = registry.get("writeLogs")(Job(offset=7))
        assert job.offset == 7
        assert sheets.writes == 0

    def test_write_logs_leaves_only_its_own_completion(self, registry):
        job = registry.get("writeLogs")(Job(offset=0, logs=[LogEntry("a")]))
        assert [entry.message for entry in job.logs] == ["Job completed"]

    def test_clear_logs(self, registry, sheets):
        registry.get("writeLogs")(Job(logs=[LogEntry("a"), LogEntry("b")]))

        job = registry.get("clearLogs")(Job(offset=2))

        assert job.offset == 0
        assert sheets.get_values("Logs", "A2:B") == []

    def test_without_log_store(self):
        registry = OperationRegistry.create_default(OperationContext())
        with pytest.raises(PermanentError, match="No log store configured"):
            registry.get("writeLogs")(Job(logs=[LogEntry("a")]))
