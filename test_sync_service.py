"""
Sync service tests: ordered submission, watermark advancement on completed
jobs only, and the guard against overlapping syncs for one profile.
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
def admin():
    from core.security.permissions import AuthContext, Role
    return AuthContext(roles=(Role.COMPANY_ADMIN,), tenant_id="tenant-1", user_id="ada")


@pytest.fixture
def backend():
    from backend.in_memory import InMemoryPlatformBackend
    from core.models import ConnectionProfile

    backend = InMemoryPlatformBackend()
    asyncio.run(backend.create_profile(ConnectionProfile.model_validate({
        "erp_type": "sage_x3",
        "server_details": {"host": "x3.example.com", "pool_alias": "SEED"},
        "api_credentials": {"username": "admin", "password": "secret"},
    })))
    backend.calls.clear()
    return backend


@pytest.fixture
def service(backend):
    from sync.monitor import SyncJobMonitor
    from sync.service import SyncService
    return SyncService(backend, monitor=SyncJobMonitor(backend, poll_interval=0))


def submitted_entities(backend):
    return [call[2] for call in backend.calls if call[0] == "submit_sync_job"]


class TestSubmission:

    def test_all_submits_in_dependency_order(self, service, backend, admin):
        submission = asyncio.run(service.sync(admin, "erp-1", "all"))

        assert submitted_entities(backend) == ["vendors", "customers", "products", "invoices"]
        assert [job.entity_type.value for job in submission.jobs] == submitted_entities(backend)
        assert all(job.status.value == "queued" for job in submission.jobs)

    def test_submission_counted_per_entity(self, service, admin):
        from core.observability.metrics import get_metrics

        asyncio.run(service.sync(admin, "erp-1", ["customers", "vendors"]))

        sync_jobs = get_metrics().get_summary()["sync_jobs"]
        assert sync_jobs["submitted"] == 2
        assert sync_jobs["by_entity"]["vendors"]["submitted"] == 1

    def test_viewer_cannot_sync(self, service, backend):
        from core.errors import PermissionDenied
        from core.security.permissions import AuthContext

        viewer = AuthContext.from_strings(["company_user"], tenant_id="tenant-1")
        with pytest.raises(PermissionDenied):
            asyncio.run(service.sync(viewer, "erp-1", "all"))
        assert backend.calls == []

    def test_invalid_scope_submits_nothing(self, service, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError):
            asyncio.run(service.sync(admin, "erp-1", ["ledgers"]))
        assert submitted_entities(backend) == []

    def test_overlapping_sync_for_profile_refused(self, service, backend, admin):
        from core.errors import DuplicateSubmissionError

        backend.latency = 0.005

        async def run():
            return await asyncio.gather(
                service.sync(admin, "erp-1", "vendors"),
                service.sync(admin, "erp-1", "vendors"),
                return_exceptions=True,
            )

        first, second = asyncio.run(run())

        assert len(first.jobs) == 1
        assert isinstance(second, DuplicateSubmissionError)


class TestWatermarks:

    def test_completed_jobs_advance_watermark(self, service, backend, admin):
        from core.models import EntityType

        async def run():
            submission = await service.sync(admin, "erp-1", ["vendors", "products"])
            return await service.wait_for_jobs(submission.jobs)

        finals = asyncio.run(run())

        assert all(job.status.value == "completed" for job in finals)
        watermarks = backend.watermarks["erp-1"]
        assert watermarks[EntityType.VENDORS] == finals[0].started_at
        assert set(watermarks) == {EntityType.VENDORS, EntityType.PRODUCTS}

    def test_failed_job_keeps_previous_watermark(self, service, backend, admin):
        from datetime import datetime

        from core.models import EntityType

        earlier = datetime(2026, 2, 1, 9, 30)
        backend.watermarks["erp-1"] = {EntityType.CUSTOMERS: earlier}
        backend.failing_entities[EntityType.CUSTOMERS] = "Customer table locked"

        async def run():
            submission = await service.sync(admin, "erp-1", ["vendors", "customers"])
            return await service.wait_for_jobs(submission.jobs)

        vendors, customers = asyncio.run(run())

        assert customers.status.value == "failed"
        assert backend.watermarks["erp-1"][EntityType.CUSTOMERS] == earlier
        assert EntityType.VENDORS in backend.watermarks["erp-1"]

    def test_incremental_sync_uses_recorded_watermarks(self, service, backend, admin):
        from core.models import SyncMode

        async def run():
            first = await service.sync(admin, "erp-1", "vendors")
            await service.wait_for_jobs(first.jobs)
            return await service.sync(admin, "erp-1", "vendors", mode=SyncMode.INCREMENTAL)

        submission = asyncio.run(run())

        assert submission.plan.jobs[0].since is not None
        assert submission.advisories == []

    def test_status_reports_pending_jobs(self, service, admin):
        async def run():
            await service.sync(admin, "erp-1", ["vendors", "customers"])
            return await service.status(admin, "erp-1")

        status = asyncio.run(run())

        assert status.has_pending_jobs
        assert status.pending_jobs_count == 2
