"""
Tests for the job state machine.

INVARIANT: DONE and ERROR are terminal; nothing leaves them.
"""

from datetime import datetime

import pytest

from ffjobs.jobs.errors import InvalidStateTransitionError, JobNotFoundError
from ffjobs.jobs.job import Job
from ffjobs.jobs.models import JobStatus
from ffjobs.jobs.registry import JobStore
from ffjobs.jobs.state import (
    TERMINAL_JOB_STATES,
    can_transition_job,
    is_job_terminal,
    validate_job_transition,
)


class TestJobTransitions:
    @pytest.mark.parametrize("src,dst", [
        (JobStatus.CREATED, JobStatus.RUNNING),
        (JobStatus.RUNNING, JobStatus.DONE),
        (JobStatus.RUNNING, JobStatus.ERROR),
    ])
    def test_legal(self, src, dst):
        assert can_transition_job(src, dst)
        validate_job_transition(src, dst)

    @pytest.mark.parametrize("src,dst", [
        (JobStatus.CREATED, JobStatus.DONE),
        (JobStatus.CREATED, JobStatus.ERROR),
        (JobStatus.RUNNING, JobStatus.CREATED),
        (JobStatus.DONE, JobStatus.ERROR),
        (JobStatus.ERROR, JobStatus.DONE),
        (JobStatus.DONE, JobStatus.DONE),
        (JobStatus.ERROR, JobStatus.RUNNING),
    ])
    def test_illegal(self, src, dst):
        assert not can_transition_job(src, dst)
        with pytest.raises(InvalidStateTransitionError) as excinfo:
            validate_job_transition(src, dst)
        assert excinfo.value.current_state == src.value
        assert excinfo.value.target_state == dst.value

    def test_terminal_states(self):
        assert TERMINAL_JOB_STATES == {JobStatus.DONE, JobStatus.ERROR}
        assert is_job_terminal(JobStatus.DONE)
        assert not is_job_terminal(JobStatus.RUNNING)

    def test_job_rejects_second_terminal(self, tmp_path):
        job = Job(output_path=str(tmp_path / "o"), output_name="o")
        job.mark_running()
        job.mark_done({})
        with pytest.raises(InvalidStateTransitionError):
            job.mark_failed("late")
        assert job.status == JobStatus.DONE
        assert job.error_text == ""


class TestJobStore:
    def _job(self, tmp_path, name):
        return Job(output_path=str(tmp_path / name), output_name=name)

    def test_add_get_remove(self, tmp_path):
        store = JobStore()
        job = self._job(tmp_path, "a")
        store.add(job)
        assert store.get(job.id) is job
        assert job.id in store
        assert store.count() == 1
        assert store.remove(job.id) is job
        assert store.remove(job.id) is None
        assert store.get(job.id) is None

    def test_duplicate_id_rejected(self, tmp_path):
        store = JobStore()
        store.add(Job(output_path="x", output_name="x", job_id="same"))
        with pytest.raises(ValueError):
            store.add(Job(output_path="y", output_name="y", job_id="same"))

    def test_get_or_raise(self):
        with pytest.raises(JobNotFoundError) as excinfo:
            JobStore().get_or_raise("nope")
        assert excinfo.value.job_id == "nope"

    def test_ids_are_unique(self, tmp_path):
        ids = {Job(output_path="x", output_name="x").id for _ in range(1000)}
        assert len(ids) == 1000

    def test_list_newest_first(self, tmp_path):
        store = JobStore()
        jobs = [self._job(tmp_path, str(i)) for i in range(3)]
        for i, job in enumerate(jobs):
            job.created_at = datetime(2024, 1, 1, 12, 0, i)
            store.add(job)
        assert [j.id for j in store.list()] == [j.id for j in reversed(jobs)]
