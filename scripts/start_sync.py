"""Start an ERP sync workflow on Temporal.

Connects through temporal_client, starts a SyncWorkflow for one profile
and prints the outcome once every job has finished.

Usage:
    python scripts/start_sync.py --tenant T-001 --profile erp-1
    python scripts/start_sync.py --tenant T-001 --profile erp-1 --scope vendors invoices --mode incremental
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.sync_workflow import SyncWorkflow, SyncWorkflowInput, SyncWorkflowOutput

logger = get_logger(__name__)


async def start_sync_workflow(args: argparse.Namespace) -> SyncWorkflowOutput:
    settings = get_settings()
    workflow_id = f"sync-{args.profile}-{uuid.uuid4().hex[:8]}"

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace {client.namespace}")

    handle = await client.start_workflow(
        SyncWorkflow.run,
        SyncWorkflowInput(
            tenant_id=args.tenant,
            profile_id=args.profile,
            scope=args.scope,
            mode=args.mode,
            date_from=args.date_from,
            date_to=args.date_to,
            roles=args.roles.split(","),
            user_id=args.user,
            poll_interval_seconds=settings.sync_poll_interval_seconds,
        ),
        task_queue=settings.sync_task_queue,
        id=workflow_id,
    )
    logger.info(f"Workflow started: {handle.id}")
    return await handle.result()


def main():
    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    parser = argparse.ArgumentParser(description="Start an ERP sync workflow")
    parser.add_argument("--tenant", "-t", required=True, help="Tenant id")
    parser.add_argument("--profile", "-p", required=True, help="Connection profile id")
    parser.add_argument("--scope", nargs="+", default=["all"], help="'all' or entity types")
    parser.add_argument("--mode", choices=["full", "incremental"], default="full")
    parser.add_argument("--date-from", help="ISO date lower bound")
    parser.add_argument("--date-to", help="ISO date upper bound")
    parser.add_argument("--roles", default="company_admin", help="Comma-separated caller roles")
    parser.add_argument("--user", help="Caller user id for the audit trail")
    args = parser.parse_args()

    result = asyncio.run(start_sync_workflow(args))

    print("\n=== SYNC RESULT ===")
    print(f"  status:       {result.status}")
    print(f"  entity order: {', '.join(result.entity_order)}")
    for job_id in result.completed:
        print(f"  ✓ {job_id}")
    for job_id, message in result.failed.items():
        print(f"  ✗ {job_id}: {message}")
    for advisory in result.advisories:
        print(f"  ! {advisory}")
    print("===================\n")
    return 0 if result.status == "COMPLETED" else 1


if __name__ == "__main__":
    sys.exit(main())
