"""
Sync activity tests.

Activities run in temporalio's ActivityEnvironment against an in-memory
platform installed through configure_backend_factory.
"""

import asyncio

import pytest


@pytest.fixture(autouse=True)
def fresh_metrics():
    from core.observability.metrics import MetricsCollector
    MetricsCollector.reset()
    yield
    MetricsCollector.reset()


@pytest.fixture
def backend():
    from activities.sync import configure_backend_factory
    from backend.in_memory import InMemoryPlatformBackend
    from core.models import ConnectionProfile

    backend = InMemoryPlatformBackend()
    asyncio.run(backend.create_profile(ConnectionProfile.model_validate({
        "erp_type": "sage_x3",
        "server_details": {"host": "x3.example.com", "pool_alias": "SEED"},
        "api_credentials": {"username": "admin", "password": "secret"},
    })))
    configure_backend_factory(lambda tenant_id: backend)
    yield backend
    configure_backend_factory(None)


@pytest.fixture
def env():
    from temporalio.testing import ActivityEnvironment
    return ActivityEnvironment()


def poll_until_terminal(env, job_id):
    from activities.sync import PollJobInput, poll_sync_job

    async def run():
        while True:
            snapshot = await env.run(poll_sync_job, PollJobInput(tenant_id="tenant-1", job_id=job_id))
            if snapshot.is_terminal:
                return snapshot

    return asyncio.run(run())


class TestSubmitSyncPlan:

    def test_submits_in_order(self, env, backend):
        from activities.sync import SubmitSyncInput, submit_sync_plan

        output = asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
            tenant_id="tenant-1",
            profile_id="erp-1",
            roles=["company_admin"],
            user_id="ada",
        )))

        assert output.entity_order == ["vendors", "customers", "products", "invoices"]
        assert len(output.job_ids) == 4
        assert any("only guarantees submission order" in a for a in output.advisories)

    def test_single_scope_entry(self, env, backend):
        from activities.sync import SubmitSyncInput, submit_sync_plan

        output = asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
            tenant_id="tenant-1",
            profile_id="erp-1",
            scope=["invoices"],
            date_from="2026-01-01",
            date_to="2026-01-31",
            roles=["company_admin"],
        )))

        assert output.entity_order == ["invoices"]

    def test_roles_are_rechecked(self, env, backend):
        from activities.sync import SubmitSyncInput, submit_sync_plan
        from core.errors import PermissionDenied

        with pytest.raises(PermissionDenied):
            asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
                tenant_id="tenant-1", profile_id="erp-1", roles=["company_user"],
            )))
        assert "submit_sync_job" not in backend.call_names()


class TestPollAndRecord:

    def test_poll_reports_display_percentage(self, env, backend):
        from activities.sync import PollJobInput, SubmitSyncInput, poll_sync_job, submit_sync_plan

        output = asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
            tenant_id="tenant-1", profile_id="erp-1", scope=["vendors"], roles=["company_admin"],
        )))
        first = asyncio.run(env.run(poll_sync_job, PollJobInput(tenant_id="tenant-1", job_id=output.job_ids[0])))

        assert first.status == "processing"
        assert first.current_step == "fetching"
        assert 0 <= first.progress_percentage < 100
        assert not first.is_terminal

    def test_completed_outcome_advances_watermark(self, env, backend):
        from activities.sync import RecordOutcomeInput, SubmitSyncInput, record_sync_outcome, submit_sync_plan
        from core.models import EntityType

        output = asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
            tenant_id="tenant-1", profile_id="erp-1", scope=["vendors"], roles=["company_admin"],
        )))
        final = poll_until_terminal(env, output.job_ids[0])
        asyncio.run(env.run(record_sync_outcome, RecordOutcomeInput(tenant_id="tenant-1", snapshot=final)))

        assert final.status == "completed"
        assert final.progress_percentage == 100.0
        assert EntityType.VENDORS in backend.watermarks["erp-1"]

    def test_failed_outcome_leaves_watermark(self, env, backend):
        from activities.sync import RecordOutcomeInput, SubmitSyncInput, record_sync_outcome, submit_sync_plan
        from core.models import EntityType

        backend.failing_entities[EntityType.VENDORS] = "Vendor table locked"
        output = asyncio.run(env.run(submit_sync_plan, SubmitSyncInput(
            tenant_id="tenant-1", profile_id="erp-1", scope=["vendors"], roles=["company_admin"],
        )))
        final = poll_until_terminal(env, output.job_ids[0])
        asyncio.run(env.run(record_sync_outcome, RecordOutcomeInput(tenant_id="tenant-1", snapshot=final)))

        assert final.status == "failed"
        assert final.error_message == "Vendor table locked"
        assert "erp-1" not in backend.watermarks

    def test_snapshot_round_trips_to_job(self):
        from datetime import datetime

        from activities.sync import JobSnapshot
        from core.models import EntityType, JobStatus, SyncJob

        job = SyncJob(
            id="job-1",
            profile_id="erp-1",
            entity_type=EntityType.INVOICES,
            status=JobStatus.COMPLETED,
            records_synced=42,
            started_at=datetime(2026, 3, 1, 8, 0),
            completed_at=datetime(2026, 3, 1, 8, 5),
        )

        restored = JobSnapshot.from_job(job).to_job()
        assert restored.started_at == job.started_at
        assert restored.records_synced == 42
        assert restored.entity_type is EntityType.INVOICES
