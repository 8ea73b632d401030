"""Tests for SqlJobStore."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from jobspine.core.errors import (
    InvalidCronExpressionError,
    InvalidJobDefinitionError,
    JobAlreadyExistsError,
    JobNotFoundError,
)
from jobspine.core.orm import ScheduledJobTable
from jobspine.scheduling.models import ExecutionOutcome, JobCreate, JobStatus, JobUpdate
from jobspine.scheduling.store import JobStore, SqlJobStore


def _now() -> datetime:
    return datetime.now(UTC)


class TestJobCrud:
    """Create, read, update and delete job definitions."""

    def test_satisfies_protocol(self, store):
        assert isinstance(store, JobStore)

    def test_create_applies_defaults(self, store, settings):
        job = store.create_job(JobCreate(name="nightly", task_type="report", cron_expression="0 2 * * *"))

        assert job.id is not None
        assert job.enabled is True
        assert job.allow_concurrent is False
        assert job.max_retries == settings.default_max_retries
        assert job.retry_delay == settings.default_retry_delay
        assert job.timeout == settings.default_timeout
        assert job.payload == {}
        assert job.next_run_at is not None
        assert job.next_run_at > _now()
        assert job.next_run_at.tzinfo is not None

    def test_create_disabled_has_no_next_run(self, store):
        job = store.create_job(
            JobCreate(name="off", task_type="report", cron_expression="0 2 * * *", enabled=False)
        )
        assert job.next_run_at is None

    def test_payload_round_trip(self, store):
        payload = {"to": ["ops@example.com"], "limit": 10, "nested": {"a": True}}
        created = store.create_job(
            JobCreate(name="mail", task_type="send", cron_expression="* * * * *", payload=payload)
        )
        assert store.get_job(created.id).payload == payload

    def test_duplicate_name_rejected(self, store):
        store.create_job(JobCreate(name="dup", task_type="x", cron_expression="* * * * *"))
        with pytest.raises(JobAlreadyExistsError):
            store.create_job(JobCreate(name="dup", task_type="y", cron_expression="0 * * * *"))

    def test_invalid_cron_rejected(self, store):
        with pytest.raises(InvalidCronExpressionError):
            store.create_job(JobCreate(name="bad", task_type="x", cron_expression="0 0 * *"))
        assert store.get_job_by_name("bad") is None

    @pytest.mark.parametrize(
        "field_name,value",
        [
            ("max_concurrent", 0),
            ("max_retries", -1),
            ("timeout", 0),
            ("retry_delay", -5),
        ],
    )
    def test_out_of_range_rejected(self, store, field_name, value):
        with pytest.raises(InvalidJobDefinitionError):
            store.create_job(
                JobCreate(name="bad", task_type="x", cron_expression="* * * * *", **{field_name: value})
            )

    def test_get_by_name_and_list(self, store):
        store.create_job(JobCreate(name="b", task_type="x", cron_expression="* * * * *"))
        store.create_job(JobCreate(name="a", task_type="x", cron_expression="* * * * *", enabled=False))

        assert store.get_job_by_name("b").name == "b"
        assert store.get_job_by_name("missing") is None
        assert [j.name for j in store.list_jobs()] == ["a", "b"]
        assert [j.name for j in store.list_jobs(enabled_only=True)] == ["b"]
        assert store.count_enabled() == 1

    def test_update_cron_reschedules(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="0 0 1 1 *"))
        updated = store.update_job(job.id, JobUpdate(cron_expression="* * * * *"))

        assert updated.cron_expression == "* * * * *"
        assert updated.next_run_at < job.next_run_at

    def test_update_disable_clears_next_run(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        updated = store.update_job(job.id, JobUpdate(enabled=False))
        assert updated.enabled is False
        assert updated.next_run_at is None

        reenabled = store.update_job(job.id, JobUpdate(enabled=True))
        assert reenabled.next_run_at is not None

    def test_update_can_clear_nullable_fields(self, store):
        job = store.create_job(
            JobCreate(
                name="j",
                task_type="x",
                cron_expression="* * * * *",
                description="fan-out",
                allow_concurrent=True,
                max_concurrent=2,
            )
        )

        untouched = store.update_job(job.id, JobUpdate(max_retries=1))
        assert untouched.max_concurrent == 2
        assert untouched.description == "fan-out"

        cleared = store.update_job(job.id, JobUpdate(max_concurrent=None, description=None))
        assert cleared.max_concurrent is None
        assert cleared.description is None
        assert cleared.max_retries == 1

    def test_update_none_leaves_other_fields(self, store):
        job = store.create_job(
            JobCreate(name="j", task_type="x", cron_expression="* * * * *", timeout=30)
        )
        assert JobUpdate(timeout=None).changes() == {}
        assert store.update_job(job.id, JobUpdate(timeout=None)).timeout == 30

    def test_update_missing_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.update_job(999, JobUpdate(max_retries=1))

    def test_update_validates(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        with pytest.raises(InvalidCronExpressionError):
            store.update_job(job.id, JobUpdate(cron_expression="nope"))

    def test_delete_cascades_to_executions(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        store.start_execution(job, "exec-1", 0, _now())

        assert store.delete_job(job.id) is True
        assert store.get_job(job.id) is None
        assert store.get_execution("exec-1") is None
        assert store.delete_job(job.id) is False


class TestScheduling:
    """Due-job selection and schedule bookkeeping."""

    def test_due_jobs(self, store):
        now = _now()
        due = store.create_job(JobCreate(name="due", task_type="x", cron_expression="* * * * *"))
        store.create_job(JobCreate(name="later", task_type="x", cron_expression="0 0 1 1 *"))
        off = store.create_job(JobCreate(name="off", task_type="x", cron_expression="* * * * *"))
        store.update_schedule(due.id, now - timedelta(minutes=5))
        store.update_schedule(off.id, now - timedelta(minutes=5))
        store.set_enabled(off.id, False)

        assert [j.name for j in store.due_jobs(now)] == ["due"]

    def test_due_jobs_oldest_first(self, store):
        now = _now()
        first = store.create_job(JobCreate(name="first", task_type="x", cron_expression="* * * * *"))
        second = store.create_job(JobCreate(name="second", task_type="x", cron_expression="* * * * *"))
        store.update_schedule(second.id, now - timedelta(minutes=1))
        store.update_schedule(first.id, now - timedelta(minutes=10))

        assert [j.name for j in store.due_jobs(now)] == ["first", "second"]

    def test_set_enabled_missing(self, store):
        with pytest.raises(JobNotFoundError):
            store.set_enabled(404, True, _now())

    def test_record_last_run(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        at = _now()
        store.record_last_run(job.id, at, JobStatus.FAILED)

        fetched = store.get_job(job.id)
        assert fetched.last_run_status == JobStatus.FAILED
        assert abs((fetched.last_run_at - at).total_seconds()) < 1

    def test_prime_schedules(self, store, engine):
        ok = store.create_job(JobCreate(name="ok", task_type="x", cron_expression="* * * * *"))
        broken = store.create_job(JobCreate(name="broken", task_type="x", cron_expression="* * * * *"))
        with engine.begin() as conn:
            conn.execute(update(ScheduledJobTable).values(next_run_at=None))
            conn.execute(
                update(ScheduledJobTable)
                .where(ScheduledJobTable.id == broken.id)
                .values(cron_expression="99 * * * *")
            )

        assert store.prime_schedules(_now()) == 1
        assert store.get_job(ok.id).next_run_at is not None
        assert store.get_job(broken.id).enabled is False


class TestExecutionRecords:
    """Execution audit trail."""

    def test_start_then_complete(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        started = _now()
        record = store.start_execution(job, "exec-1", 0, started)
        assert record.status == JobStatus.RUNNING
        assert record.job_name == "j"

        outcome = ExecutionOutcome(status=JobStatus.SUCCESS, duration=1.5, result={"rows": 3})
        assert store.complete_execution("exec-1", outcome, started + timedelta(seconds=2)) is True

        done = store.get_execution("exec-1")
        assert done.status == JobStatus.SUCCESS
        assert done.duration_ms == 1500
        assert done.result == {"rows": 3}
        assert done.completed_at is not None

    def test_complete_only_once(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        store.start_execution(job, "exec-1", 0, _now())

        assert store.complete_execution("exec-1", ExecutionOutcome(JobStatus.SUCCESS), _now()) is True
        assert store.complete_execution("exec-1", ExecutionOutcome(JobStatus.CANCELLED), _now()) is False
        assert store.get_execution("exec-1").status == JobStatus.SUCCESS

    def test_record_terminal_execution(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        outcome = ExecutionOutcome(
            status=JobStatus.FAILED,
            error="Unknown task type: x",
            error_details={"kind": "InvalidConfig"},
        )
        now = _now()
        record = store.record_execution(job, "exec-1", 0, outcome, now, now)

        assert record.status == JobStatus.FAILED
        assert record.error_details == {"kind": "InvalidConfig"}

    def test_list_newest_first_with_filters(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        base = _now() - timedelta(hours=1)
        for i in range(4):
            execution_id = f"exec-{i}"
            store.start_execution(job, execution_id, i, base + timedelta(minutes=i))
            status = JobStatus.SUCCESS if i % 2 == 0 else JobStatus.FAILED
            store.complete_execution(execution_id, ExecutionOutcome(status), base + timedelta(minutes=i))

        records = store.list_executions(job_id=job.id)
        assert [r.execution_id for r in records] == ["exec-3", "exec-2", "exec-1", "exec-0"]

        failed = store.list_executions(job_id=job.id, status=JobStatus.FAILED)
        assert [r.execution_id for r in failed] == ["exec-3", "exec-1"]

        page = store.list_executions(job_id=job.id, limit=2, offset=1)
        assert [r.execution_id for r in page] == ["exec-2", "exec-1"]

    def test_cleanup_keeps_running_and_recent(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        old = _now() - timedelta(days=40)
        store.record_execution(job, "old-done", 0, ExecutionOutcome(JobStatus.SUCCESS), old, old)
        store.start_execution(job, "old-running", 0, old)
        store.record_execution(job, "recent", 0, ExecutionOutcome(JobStatus.SUCCESS), _now(), _now())

        deleted = store.cleanup_executions(_now() - timedelta(days=30))

        assert deleted == 1
        assert store.get_execution("old-done") is None
        assert store.get_execution("old-running") is not None
        assert store.get_execution("recent") is not None

    def test_execution_ids_unique(self, store):
        job = store.create_job(JobCreate(name="j", task_type="x", cron_expression="* * * * *"))
        ids = {str(uuid.uuid4()) for _ in range(3)}
        for execution_id in ids:
            store.start_execution(job, execution_id, 0, _now())
        assert {r.execution_id for r in store.list_executions(job_id=job.id)} == ids


class TestPersistenceErrors:
    def test_driver_errors_wrapped(self, store, engine):
        from jobspine.core.errors import PersistenceError

        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE job_executions")
        with pytest.raises(PersistenceError):
            store.get_execution("anything")

    def test_in_memory_store(self, settings):
        from jobspine.core.orm import create_jobs_engine, init_db

        engine = create_jobs_engine("sqlite:///:memory:")
        init_db(engine)
        mem_store = SqlJobStore(engine, settings)
        mem_store.create_job(JobCreate(name="m", task_type="x", cron_expression="* * * * *"))
        assert mem_store.count_enabled() == 1
