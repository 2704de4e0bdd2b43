"""Tests for the Job state machine and tree helpers."""

import pytest

from audiencerunner.schemas import Job, JobStatus, JobType, LogEntry


class TestTransitions:
    """Status only changes through run/complete/error, each logging a line."""

    def test_new_job_is_pending(self):
        job = Job(id=1)
        assert job.status == JobStatus.PENDING
        assert job.is_pending()
        assert not job.is_terminal()
        assert job.logs == []

    def test_run(self):
        job = Job(id=1).run()
        assert job.is_running()
        assert [entry.message for entry in job.logs] == ["Job 1 started"]

    def test_complete(self):
        job = Job(id=1).run().complete()
        assert job.is_complete()
        assert job.is_terminal()
        assert job.logs[-1].message == "Job 1 completed"

    def test_error_keeps_message(self):
        job = Job(id=4).run().error("quota exceeded")
        assert job.is_error()
        assert job.is_terminal()
        assert job.error_message == "quota exceeded"
        assert job.logs[-1].message == "Job 4 failed: quota exceeded"

    def test_transitions_do_not_check_source_state(self):
        """A terminal job can be restarted; the last transition wins."""
        job = Job(id=1).complete()
        job.run()
        assert job.is_running()
        job.error("boom").complete()
        assert job.is_complete()
        assert len(job.logs) == 4

    def test_job_without_id(self):
        job = Job().error("bad payload")
        assert job.logs[0].message == "Job failed: bad payload"

    def test_status_is_read_only(self):
        job = Job(id=1)
        with pytest.raises(AttributeError):
            job.status = JobStatus.COMPLETE

    def test_log_entries_are_timestamped(self):
        entry = Job(id=1).log("hello")
        assert isinstance(entry, LogEntry)
        assert entry.timestamp.tzinfo is not None
        assert entry.to_dict() == {"date": entry.timestamp.isoformat(), "message": "hello"}


class TestJobStatusParse:
    """Tests for JobStatus.parse."""

    @pytest.mark.parametrize("value, expected", [
        ("RUNNING", JobStatus.RUNNING),
        ("complete", JobStatus.COMPLETE),
        (JobStatus.ERROR, JobStatus.ERROR),
        ("WAITING", JobStatus.PENDING),
        (None, JobStatus.PENDING),
    ])
    def test_parse(self, value, expected):
        assert JobStatus.parse(value) == expected


class TestTree:
    """Tests for child management and traversal."""

    def test_add_job_assigns_index(self):
        parent = Job(id=1)
        first = parent.add_job(Job(id=2))
        second = parent.add_job(Job(id=3))
        assert (first.index, second.index) == (0, 1)
        assert parent.jobs == [first, second]

    def test_walk_is_depth_first_in_array_order(self):
        parent = Job(id=1)
        child = parent.add_job(Job(id=2))
        child.add_job(Job(id=3))
        parent.add_job(Job(id=4))
        assert [job.id for job in parent.walk()] == [1, 2, 3, 4]

    def test_pending_and_failed_jobs(self):
        parent = Job(id=1)
        parent.add_job(Job(id=2).complete())
        parent.add_job(Job(id=3).error("x"))
        parent.add_job(Job(id=4).run())
        parent.add_job(Job(id=5))
        assert [job.id for job in parent.pending_jobs()] == [4, 5]
        assert [job.id for job in parent.failed_jobs()] == [3]

    def test_clear_logs(self):
        job = Job(id=1).run()
        job.clear_logs()
        assert job.logs == []
        assert job.is_running()

    def test_plain_job_defaults(self):
        job = Job()
        assert job.job_type == JobType.JOB
        assert job.params() == {}
        assert job.offset == 0
        assert job.auto_run is False

    def test_constructor_copies_lists(self):
        children = [Job(id=2)]
        job = Job(id=1, jobs=children)
        job.add_job(Job(id=3))
        assert len(children) == 1
