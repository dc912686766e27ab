"""
Tests for the batch vectorization job orchestrator.

This test module verifies:
1. Start: target resolution, scope locks, dispatch
2. Control: pause / resume / cancel transitions and terminal immutability
3. Run loop: accounting, idempotent re-runs, pause/resume continuity
4. Per-item failures never abort a job
5. Reconciliation of stale jobs and fencing of zombie workers
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from brandforge.models.content import ContentType
from brandforge.models.job import JobScope, JobStatus
from brandforge.services.rag.errors import (
    JobNotFoundError,
    JobStateError,
    JobTargetError,
    ScopeLockedError,
)
from brandforge.services.vectorization import (
    JobAction,
    VectorizationRunner,
    VectorizationService,
    reconcile_jobs,
)
from brandforge.services.rag.vector_store import VectorStore
from brandforge.services.vectorization.jobs import scope_key, update_job, utcnow
from brandforge.services.vectorization.runner import UnitResult
from tests.conftest import add_document, create_user

OPERATOR = "ops@example.com"


async def set_job_fields(session_factory, job_id: int, **fields):
    """Force job columns for a test setup step."""
    async def mutate(db, job):
        for name, value in fields.items():
            setattr(job, name, value)
        return True

    return await update_job(session_factory, job_id, mutate)


async def seed_users(session_factory, count: int):
    users = []
    for i in range(1, count + 1):
        user = await create_user(session_factory, email=f"user{i}@example.com")
        await add_document(
            session_factory, user.id, ContentType.SOCIAL_MEDIA, f"post{i}",
            {"caption": f"launch post number {i}", "hashtags": ["#launch"]},
        )
        users.append(user)
    return users


@pytest.mark.asyncio
class TestStart:
    """Job creation."""

    async def test_start_single_user(self, session_factory, vectorization_service, dispatcher):
        user = await create_user(session_factory, email="a@example.com", brand_name="Acme")
        await add_document(session_factory, user.id, ContentType.BRAND_PROFILE, str(user.id),
                           {"brandName": "Acme"})

        job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)

        assert job.status == JobStatus.PENDING
        assert job.scope == JobScope.SINGLE_USER
        assert job.total_items == 1
        assert job.progress == 0.0
        assert job.run_attempt == 1
        assert job.created_by == OPERATOR
        assert job.details == {"userId": user.id, "userEmail": "a@example.com", "brandName": "Acme"}
        assert dispatcher.calls == [(job.id, 1)]

    async def test_target_errors(self, session_factory, vectorization_service, dispatcher):
        with pytest.raises(JobTargetError):
            await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR)
        with pytest.raises(JobTargetError):
            await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=9999)
        with pytest.raises(JobTargetError):
            await vectorization_service.start(JobScope.CONTENT_TYPE, OPERATOR)
        with pytest.raises(JobTargetError):
            await vectorization_service.start(JobScope.CONTENT_TYPE, OPERATOR, content_type="podcast")
        with pytest.raises(JobTargetError):
            await vectorization_service.start("galaxy", OPERATOR)

        assert await vectorization_service.list_jobs() == []
        assert dispatcher.calls == []

    async def test_same_scope_is_locked(self, session_factory, vectorization_service):
        user = await create_user(session_factory, email="a@example.com")
        first = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)

        with pytest.raises(ScopeLockedError) as exc_info:
            await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)

        assert exc_info.value.scope_key == f"single_user:{user.id}"
        assert exc_info.value.job_id == first.id
        assert len(await vectorization_service.list_jobs()) == 1

    async def test_different_scopes_do_not_conflict(self, session_factory, vectorization_service):
        user = await create_user(session_factory, email="a@example.com")
        await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        await vectorization_service.start(
            JobScope.CONTENT_TYPE, OPERATOR, content_type=ContentType.BLOG_POST,
        )
        assert len(await vectorization_service.list_jobs()) == 3

    async def test_scope_free_again_after_cancel(self, session_factory, vectorization_service):
        first = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await vectorization_service.control(first.id, JobAction.CANCEL, OPERATOR)

        second = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        assert second.id != first.id

    async def test_failed_dispatch_leaves_job_pending(self, session_factory):
        def broken_dispatcher(job_id, attempt):
            raise ConnectionError("broker down")

        service = VectorizationService(session_factory, broken_dispatcher)
        job = await service.start(JobScope.ALL_USERS, OPERATOR)

        assert (await service.get_job(job.id)).status == JobStatus.PENDING

    async def test_list_jobs_newest_first(self, session_factory, vectorization_service):
        user = await create_user(session_factory, email="a@example.com")
        a = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        b = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        c = await vectorization_service.start(
            JobScope.CONTENT_TYPE, OPERATOR, content_type=ContentType.SOCIAL_MEDIA,
        )

        jobs = await vectorization_service.list_jobs()
        assert [j.id for j in jobs] == [c.id, b.id, a.id]
        assert [j.id for j in await vectorization_service.list_jobs(limit=1)] == [c.id]


@pytest.mark.asyncio
class TestControl:
    """Operator transitions."""

    async def test_cancel_pending(self, vectorization_service):
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)

        cancelled = await vectorization_service.control(job.id, JobAction.CANCEL, OPERATOR)

        assert cancelled.status == JobStatus.FAILED
        assert cancelled.cancelled_by == OPERATOR
        assert cancelled.cancelled_at is not None
        assert cancelled.completed_at is not None
        assert cancelled.error_message == f"Cancelled by {OPERATOR}"

    async def test_pause_resume_cancel(self, session_factory, vectorization_service, dispatcher):
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await set_job_fields(session_factory, job.id, status=JobStatus.RUNNING)

        paused = await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)
        assert paused.status == JobStatus.PAUSED
        assert paused.updated_by == OPERATOR

        resumed = await vectorization_service.control(job.id, JobAction.RESUME, OPERATOR)
        assert resumed.status == JobStatus.RUNNING
        assert resumed.run_attempt == 2
        assert dispatcher.calls[-1] == (job.id, 2)

        await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)
        cancelled = await vectorization_service.control(job.id, JobAction.CANCEL, OPERATOR)
        assert cancelled.status == JobStatus.FAILED

    async def test_invalid_transitions(self, session_factory, vectorization_service):
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)

        with pytest.raises(JobStateError):
            await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)
        with pytest.raises(JobStateError):
            await vectorization_service.control(job.id, JobAction.RESUME, OPERATOR)
        with pytest.raises(JobStateError):
            await vectorization_service.control(job.id, "explode", OPERATOR)

        await set_job_fields(session_factory, job.id, status=JobStatus.RUNNING)
        with pytest.raises(JobStateError):
            await vectorization_service.control(job.id, JobAction.RESUME, OPERATOR)

    async def test_missing_job(self, vectorization_service):
        with pytest.raises(JobNotFoundError):
            await vectorization_service.control(404, JobAction.CANCEL, OPERATOR)
        with pytest.raises(JobNotFoundError):
            await vectorization_service.get_job(404)

    async def test_terminal_jobs_are_immutable(self, session_factory, vectorization_service, fake_embedder):
        user = await create_user(session_factory, email="a@example.com")
        job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        before = await vectorization_service.get_job(job.id)
        assert before.status == JobStatus.COMPLETED

        for action in (JobAction.PAUSE, JobAction.RESUME, JobAction.CANCEL):
            with pytest.raises(JobStateError):
                await vectorization_service.control(job.id, action, "someone@else.com")

        after = await vectorization_service.get_job(job.id)
        assert after.status == JobStatus.COMPLETED
        assert after.version_id == before.version_id
        assert after.updated_by is None
        assert after.cancelled_by is None


@pytest.mark.asyncio
class TestRunner:
    """Worker run loop."""

    async def test_single_brand_profile(self, session_factory, vectorization_service, fake_embedder):
        user = await create_user(session_factory, email="a@example.com")
        await add_document(session_factory, user.id, ContentType.BRAND_PROFILE, str(user.id),
                           {"brandName": "Acme", "industry": "Tech"})

        job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        result = await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        done = await vectorization_service.get_job(job.id)
        assert result["success"] is True
        assert done.status == JobStatus.COMPLETED
        assert (done.processed_items, done.failed_items, done.skipped_items) == (1, 0, 0)
        assert done.total_items == 1
        assert done.progress == 100.0
        assert done.completed_at is not None

        # Lock released with completion
        again = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        await VectorizationRunner(session_factory, fake_embedder).run(again.id, 1)

        rerun = await vectorization_service.get_job(again.id)
        assert rerun.status == JobStatus.COMPLETED
        assert (rerun.processed_items, rerun.skipped_items) == (0, 1)

    async def test_empty_brand_profile_is_skipped(self, session_factory, vectorization_service, fake_embedder):
        user = await create_user(session_factory, email="a@example.com")
        await add_document(session_factory, user.id, ContentType.BRAND_PROFILE, str(user.id),
                           {"brandName": "", "brandDescription": "", "values": []})

        job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        done = await vectorization_service.get_job(job.id)
        assert (done.processed_items, done.failed_items, done.skipped_items) == (0, 0, 1)
        assert fake_embedder.calls == []

    async def test_item_failures_do_not_abort(self, session_factory, vectorization_service, fake_embedder):
        user = await create_user(session_factory, email="a@example.com")
        await add_document(session_factory, user.id, ContentType.SOCIAL_MEDIA, "ok",
                           {"caption": "all good here"})
        await add_document(session_factory, user.id, ContentType.SOCIAL_MEDIA, "malformed",
                           {"caption": "tags", "hashtags": "#not #a #list"})
        await add_document(session_factory, user.id, ContentType.BLOG_POST, "outage",
                           {"title": "provider-outage-marker"})
        fake_embedder.fail_on.add("provider-outage-marker")

        job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
        await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        done = await vectorization_service.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert (done.processed_items, done.failed_items, done.skipped_items) == (1, 2, 0)
        assert done.total_items == 3

    async def test_content_type_scope(self, session_factory, vectorization_service, fake_embedder):
        user = await create_user(session_factory, email="a@example.com")
        await add_document(session_factory, user.id, ContentType.BRAND_PROFILE, str(user.id),
                           {"brandName": "Acme"})
        await add_document(session_factory, user.id, ContentType.SOCIAL_MEDIA, "p1",
                           {"caption": "hello world"})

        job = await vectorization_service.start(
            JobScope.CONTENT_TYPE, OPERATOR, content_type=ContentType.SOCIAL_MEDIA,
        )
        assert job.total_items == 1
        await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        done = await vectorization_service.get_job(job.id)
        assert (done.processed_items, done.skipped_items) == (1, 0)
        assert all("Brand:" not in text for text in fake_embedder.calls)

    async def test_repeat_delivery_is_a_no_op(self, session_factory, vectorization_service, fake_embedder):
        await seed_users(session_factory, 2)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        runner = VectorizationRunner(session_factory, fake_embedder)
        await runner.run(job.id, 1)
        first = await vectorization_service.get_job(job.id)

        result = await runner.run(job.id, 1)
        second = await vectorization_service.get_job(job.id)

        assert result["units"] == 0
        assert second.status == JobStatus.COMPLETED
        assert second.processed_items == first.processed_items == 2
        assert second.version_id == first.version_id

    async def test_progress_is_monotonic(self, session_factory, vectorization_service, fake_embedder):
        await seed_users(session_factory, 4)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        runner = VectorizationRunner(session_factory, fake_embedder)

        seen = []
        original = runner.process_user

        async def observe(user_id, content_types):
            seen.append((await vectorization_service.get_job(job.id)).progress)
            return await original(user_id, content_types)

        runner.process_user = observe
        await runner.run(job.id, 1)

        done = await vectorization_service.get_job(job.id)
        seen.append(done.progress)
        assert seen == sorted(seen)
        assert all(p < 100 for p in seen[:-1])
        assert seen[-1] == 100.0

    async def test_pause_and_resume_continue_from_cursor(
        self, session_factory, vectorization_service, dispatcher, fake_embedder,
    ):
        users = await seed_users(session_factory, 10)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        assert job.total_items == 10

        handled = []

        def tracking_runner(pause_after=None):
            runner = VectorizationRunner(session_factory, fake_embedder)
            original = runner.process_user

            async def process(user_id, content_types):
                result = await original(user_id, content_types)
                handled.append(user_id)
                if pause_after is not None and len(handled) == pause_after:
                    await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)
                return result

            runner.process_user = process
            return runner

        await tracking_runner(pause_after=2).run(job.id, 1)

        paused = await vectorization_service.get_job(job.id)
        assert paused.status == JobStatus.PAUSED
        assert paused.processed_items == 2
        assert paused.resume_cursor == users[1].id
        assert paused.progress == pytest.approx(20.0)

        await vectorization_service.control(job.id, JobAction.RESUME, OPERATOR)
        assert dispatcher.calls[-1] == (job.id, 2)

        await tracking_runner().run(job.id, 2)

        done = await vectorization_service.get_job(job.id)
        assert handled == [u.id for u in users]
        assert done.status == JobStatus.COMPLETED
        assert (done.processed_items, done.failed_items, done.skipped_items) == (10, 0, 0)
        assert done.total_items == 10

    async def test_cancelled_job_is_not_run(self, session_factory, vectorization_service, fake_embedder):
        await seed_users(session_factory, 1)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await vectorization_service.control(job.id, JobAction.CANCEL, OPERATOR)

        result = await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

        assert result["status"] == "failed"
        assert fake_embedder.calls == []

    async def test_missing_job(self, session_factory, fake_embedder):
        result = await VectorizationRunner(session_factory, fake_embedder).run(404, 1)
        assert result["success"] is False


@pytest.mark.asyncio
class TestReconcile:
    """Stale job recovery."""

    async def test_fresh_jobs_are_left_alone(self, session_factory, vectorization_service, dispatcher):
        await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        dispatcher.calls.clear()

        assert await reconcile_jobs(session_factory, dispatcher, stale_after_seconds=600) == []
        assert dispatcher.calls == []

    async def test_stale_pending_job_is_redispatched(
        self, session_factory, vectorization_service, dispatcher, fake_embedder,
    ):
        await seed_users(session_factory, 2)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await set_job_fields(session_factory, job.id, started_at=utcnow() - timedelta(hours=2))

        redispatched = await reconcile_jobs(session_factory, dispatcher, stale_after_seconds=600)

        assert redispatched == [job.id]
        assert dispatcher.calls[-1] == (job.id, 2)

        runner = VectorizationRunner(session_factory, fake_embedder)
        zombie = await runner.run(job.id, 1)
        assert zombie["units"] == 0

        await runner.run(job.id, 2)
        done = await vectorization_service.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.processed_items == 2

    async def test_stale_running_job_fences_old_worker(
        self, session_factory, vectorization_service, dispatcher,
    ):
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await set_job_fields(
            session_factory, job.id,
            status=JobStatus.RUNNING,
            heartbeat_at=utcnow() - timedelta(hours=1),
        )

        assert await reconcile_jobs(session_factory, dispatcher, stale_after_seconds=60) == [job.id]

        bumped = await vectorization_service.get_job(job.id)
        assert bumped.status == JobStatus.RUNNING
        assert bumped.run_attempt == 2

    async def test_terminal_jobs_are_ignored(self, session_factory, vectorization_service, dispatcher):
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await vectorization_service.control(job.id, JobAction.CANCEL, OPERATOR)
        await set_job_fields(session_factory, job.id, started_at=utcnow() - timedelta(days=1))

        assert await reconcile_jobs(session_factory, dispatcher, stale_after_seconds=60) == []


class TestScopeKey:

    def test_keys(self):
        assert scope_key(JobScope.ALL_USERS) == "all_users"
        assert scope_key(JobScope.SINGLE_USER, user_id=7) == "single_user:7"
        assert scope_key(JobScope.CONTENT_TYPE, content_type="blog_post") == "content_type:blog_post"


class InterleavedSessions:
    """
    Session factory that runs `interleave` once, just before the first
    commit, so a competing write lands between the worker's read and its
    compare-and-swap.
    """

    def __init__(self, session_factory, interleave):
        self.session_factory = session_factory
        self.interleave = interleave
        self.pending = True

    def __call__(self):
        session = self.session_factory()
        commit = session.commit

        async def interleaved_commit():
            if self.pending:
                self.pending = False
                await self.interleave()
            await commit()

        session.commit = interleaved_commit
        return session


@pytest.mark.asyncio
class TestConcurrentWrites:
    """Worker progress writes racing operator control writes."""

    async def running_job(self, session_factory, vectorization_service, fake_embedder):
        users = await seed_users(session_factory, 3)
        job = await vectorization_service.start(JobScope.ALL_USERS, OPERATOR)
        await VectorizationRunner(session_factory, fake_embedder)._claim(job.id, 1)
        return users, await vectorization_service.get_job(job.id)

    async def test_counters_merge_into_paused_job(self, session_factory, vectorization_service, fake_embedder):
        users, job = await self.running_job(session_factory, vectorization_service, fake_embedder)

        async def pause():
            await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)

        runner = VectorizationRunner(InterleavedSessions(session_factory, pause), fake_embedder)
        await runner._record_unit(job.id, 1, users[0].id, UnitResult(processed=2, failed=1))

        after = await vectorization_service.get_job(job.id)
        assert after.status == JobStatus.PAUSED
        assert (after.processed_items, after.failed_items, after.skipped_items) == (2, 1, 0)
        assert after.resume_cursor == users[0].id
        # claim, pause, then the retried progress write
        assert after.version_id == job.version_id + 2

    async def test_counters_dropped_after_cancel(self, session_factory, vectorization_service, fake_embedder):
        users, job = await self.running_job(session_factory, vectorization_service, fake_embedder)

        async def cancel():
            await vectorization_service.control(job.id, JobAction.CANCEL, OPERATOR)

        runner = VectorizationRunner(InterleavedSessions(session_factory, cancel), fake_embedder)
        await runner._record_unit(job.id, 1, users[0].id, UnitResult(processed=2))

        after = await vectorization_service.get_job(job.id)
        assert after.status == JobStatus.FAILED
        assert after.cancelled_by == OPERATOR
        assert (after.processed_items, after.failed_items) == (0, 0)
        assert after.resume_cursor is None

    async def test_resumed_job_runs_to_completion(self, session_factory, vectorization_service, fake_embedder):
        _, job = await self.running_job(session_factory, vectorization_service, fake_embedder)
        await vectorization_service.control(job.id, JobAction.PAUSE, OPERATOR)
        await vectorization_service.control(job.id, JobAction.RESUME, OPERATOR)

        result = await VectorizationRunner(session_factory, fake_embedder).run(job.id, 2)

        done = await vectorization_service.get_job(job.id)
        assert result["success"] is True
        assert result["units"] == 3
        assert done.status == JobStatus.COMPLETED
        assert done.processed_items == 3


@pytest.mark.asyncio
async def test_storage_error_fails_only_its_item(
    session_factory, vectorization_service, fake_embedder, monkeypatch,
):
    user = await create_user(session_factory, email="a@example.com")
    for doc_id in ("b", "a", "c"):
        await add_document(session_factory, user.id, ContentType.SOCIAL_MEDIA, doc_id,
                           {"caption": f"caption for post {doc_id}"})

    upsert = VectorStore._upsert

    async def flaky_upsert(self, **kwargs):
        if kwargs["content_id"] == "social_a":
            raise OperationalError("INSERT INTO content_vectors", {}, Exception("disk I/O error"))
        return await upsert(self, **kwargs)

    monkeypatch.setattr(VectorStore, "_upsert", flaky_upsert)

    job = await vectorization_service.start(JobScope.SINGLE_USER, OPERATOR, user_id=user.id)
    await VectorizationRunner(session_factory, fake_embedder).run(job.id, 1)

    done = await vectorization_service.get_job(job.id)
    assert done.status == JobStatus.COMPLETED
    assert (done.processed_items, done.failed_items, done.skipped_items) == (2, 1, 0)
    async with session_factory() as db:
        assert await VectorStore(db, fake_embedder).existing_content_ids(user.id) == {"social_b", "social_c"}
