#!/usr/bin/env python
"""Watch ERP sync jobs until they finish.

Usage:
    python scripts/watch_sync.py --tenant T-001 job-123 job-124
    python scripts/watch_sync.py --demo
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from backend.base import PlatformBackend
from backend.http_client import HttpPlatformBackend
from backend.in_memory import InMemoryPlatformBackend
from core.config import get_settings
from core.errors import JobError
from core.models import ConnectionProfile, SyncJob
from core.observability.logging import configure_logging
from core.security.permissions import AuthContext, Role
from sync.monitor import SyncJobMonitor
from sync.service import SyncService


def format_progress_bar(pct: float, width: int = 30) -> str:
    filled = int(width * pct / 100)
    return "[" + "#" * filled + "-" * (width - filled) + f"] {pct:.0f}%"


def print_snapshot(job: SyncJob) -> None:
    step = f" ({job.current_step})" if job.current_step else ""
    print(f"  {job.id:<10} {job.entity_type.value:<15} {job.status.value:<11} "
          f"{format_progress_bar(job.progress_percentage or 0)}{step}")


def on_complete(job: SyncJob, error: Optional[JobError]) -> None:
    if error is not None:
        print(f"✗ {job.entity_type.value} failed: {error.error_message}")
    else:
        print(f"✓ {job.entity_type.value} completed ({job.records_synced} records)")


async def watch(backend: PlatformBackend, job_ids: List[str], poll_interval: float) -> int:
    monitor = SyncJobMonitor(backend, poll_interval=poll_interval)

    async def follow(job_id: str) -> SyncJob:
        final = None
        async for snapshot in monitor.observe(job_id, on_complete=on_complete):
            print_snapshot(snapshot)
            final = snapshot
        return final

    finals = await asyncio.gather(*(follow(job_id) for job_id in job_ids))
    failed = [job for job in finals if job is not None and job.status.value == "failed"]

    print()
    print("=" * 60)
    print(f"{len(finals) - len(failed)} completed, {len(failed)} failed")
    return 1 if failed else 0


async def run_demo(poll_interval: float) -> int:
    """Sync everything for a seeded profile against the in-memory platform."""
    backend = InMemoryPlatformBackend("demo-tenant")
    profile = await backend.create_profile(ConnectionProfile.model_validate({
        "erp_type": "sage_x3",
        "server_details": {"host": "erp.example.com", "pool_alias": "SEED"},
        "api_credentials": {"username": "demo", "password": "demo"},
    }))
    ctx = AuthContext(roles=(Role.COMPANY_ADMIN,), tenant_id="demo-tenant", user_id="demo")
    service = SyncService(backend)
    submission = await service.sync(ctx, profile.id, "all")

    print(f"Submitted {len(submission.jobs)} job(s): {', '.join(e.value for e in submission.plan.entity_order)}")
    for advisory in submission.advisories:
        print(f"! {advisory}")
    print()
    return await watch(backend, [job.id for job in submission.jobs], poll_interval)


async def run_remote(tenant_id: str, job_ids: List[str], poll_interval: float) -> int:
    backend = HttpPlatformBackend.from_settings(tenant_id)
    try:
        return await watch(backend, job_ids, poll_interval)
    finally:
        await backend.close()


def main():
    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    parser = argparse.ArgumentParser(description="Watch ERP sync jobs")
    parser.add_argument("job_ids", nargs="*", help="Sync job ids to watch")
    parser.add_argument("--tenant", "-t", help="Tenant id owning the jobs")
    parser.add_argument("--interval", "-i", type=float, default=settings.sync_poll_interval_seconds,
                        help="Poll interval in seconds")
    parser.add_argument("--demo", action="store_true", help="Run a sync against the in-memory platform")
    args = parser.parse_args()

    if args.demo:
        sys.exit(asyncio.run(run_demo(min(args.interval, 0.2))))

    if not args.job_ids or not args.tenant:
        parser.error("--tenant and at least one job id are required (or use --demo)")

    try:
        sys.exit(asyncio.run(run_remote(args.tenant, args.job_ids, args.interval)))
    except KeyboardInterrupt:
        print("\nStopped watching. The jobs keep running on the platform.")


if __name__ == "__main__":
    main()
