"""
Sync planning tests.

Dependency order, scope resolution, watermarks for incremental pulls,
date bounds and the advisories handed back to the operator.
"""

from datetime import date, datetime

import pytest


def active_profile(**read_permissions):
    from core.models import ConnectionProfile

    return ConnectionProfile.model_validate({
        "erp_type": "sage_x3",
        "server_details": {"host": "x3.example.com", "pool_alias": "SEED"},
        "api_credentials": {"username": "admin", "password": "secret"},
        "read_permissions": read_permissions,
    })


def all_watermarks():
    from core.models import DEPENDENCY_ORDER
    return {entity: datetime(2026, 3, 1, 8, 0) for entity in DEPENDENCY_ORDER}


class TestOrdering:

    def test_all_emits_chain_in_dependency_order(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "all", profile_id="erp-1")
        assert plan.entity_order == [
            EntityType.VENDORS,
            EntityType.CUSTOMERS,
            EntityType.PRODUCTS,
            EntityType.INVOICES,
        ]
        assert plan.profile_id == "erp-1"

    def test_all_excludes_tax_categories(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "all")
        assert EntityType.TAX_CATEGORIES not in plan.entity_order

    def test_explicit_list_is_reordered(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), ["invoices", "tax_categories", "vendors", "invoices"])
        assert plan.entity_order == [EntityType.VENDORS, EntityType.INVOICES, EntityType.TAX_CATEGORIES]

    def test_single_entity(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "products")
        assert plan.entity_order == [EntityType.PRODUCTS]

    def test_unknown_entity_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        with pytest.raises(ValidationError) as exc_info:
            SyncPlanner().plan(active_profile(), ["vendors", "suppliers"])
        assert "scope" in exc_info.value.field_errors

    def test_empty_list_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        with pytest.raises(ValidationError):
            SyncPlanner().plan(active_profile(), [])

    def test_inactive_profile_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        profile = active_profile().model_copy(update={"is_active": False})
        with pytest.raises(ValidationError) as exc_info:
            SyncPlanner().plan(profile, "all")
        assert "is_active" in exc_info.value.field_errors


class TestModes:

    def test_incremental_carries_watermark(self):
        from core.models import EntityType, SyncMode
        from sync.planner import SyncPlanner

        watermarks = all_watermarks()
        plan = SyncPlanner().plan(active_profile(), "all", mode=SyncMode.INCREMENTAL, watermarks=watermarks)

        for job in plan.jobs:
            assert job.mode is SyncMode.INCREMENTAL
            assert job.since == watermarks[job.entity_type]
        assert plan.advisories == []
        assert EntityType.INVOICES in plan.entity_order

    def test_incremental_without_watermark_advises_full_pull(self):
        from core.models import EntityType, SyncMode
        from sync.planner import SyncPlanner

        watermarks = all_watermarks()
        del watermarks[EntityType.PRODUCTS]
        plan = SyncPlanner().plan(active_profile(), "all", mode="incremental", watermarks=watermarks)

        products = next(job for job in plan.jobs if job.entity_type is EntityType.PRODUCTS)
        assert products.since is None
        assert any("products" in advisory for advisory in plan.advisories)

    def test_full_mode_ignores_watermarks(self):
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "all", watermarks=all_watermarks())
        assert all(job.since is None for job in plan.jobs)


class TestDateBounds:

    def test_bounds_applied_only_to_bounded_entities(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(
            active_profile(), "all", date_from=date(2026, 1, 1), date_to=date(2026, 1, 31)
        )
        by_entity = {job.entity_type: job for job in plan.jobs}

        assert by_entity[EntityType.VENDORS].date_from == date(2026, 1, 1)
        assert by_entity[EntityType.INVOICES].date_to == date(2026, 1, 31)
        assert by_entity[EntityType.PRODUCTS].date_from is None
        assert by_entity[EntityType.PRODUCTS].date_to is None

    def test_bounds_on_explicit_products_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        with pytest.raises(ValidationError) as exc_info:
            SyncPlanner().plan(active_profile(), ["products"], date_from=date(2026, 1, 1))
        assert "date_from" in exc_info.value.field_errors

    def test_reversed_range_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        with pytest.raises(ValidationError) as exc_info:
            SyncPlanner().plan(
                active_profile(), "invoices", date_from=date(2026, 2, 1), date_to=date(2026, 1, 1)
            )
        assert "date_from" in exc_info.value.field_errors


class TestReadPermissions:

    def test_disabled_entity_skipped_in_all(self):
        from core.models import EntityType
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(products=False), "all", watermarks=all_watermarks())

        assert EntityType.PRODUCTS not in plan.entity_order
        assert any("Skipped products" in advisory for advisory in plan.advisories)

    def test_disabled_single_entity_rejected(self):
        from core.errors import ValidationError
        from sync.planner import SyncPlanner

        with pytest.raises(ValidationError) as exc_info:
            SyncPlanner().plan(active_profile(customers=False), "customers")
        assert "read_permissions.customers" in exc_info.value.field_errors


class TestDependencyAdvisory:

    def test_invoices_alone_without_dependencies(self):
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "invoices")
        assert len(plan.advisories) == 1
        assert "not part of this sync" in plan.advisories[0]

    def test_first_full_sync_warns_about_ordering(self):
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "all")
        assert any("only guarantees submission order" in advisory for advisory in plan.advisories)

    def test_no_advisory_once_dependencies_synced(self):
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "invoices", watermarks=all_watermarks())
        assert plan.advisories == []

    def test_no_dependency_advisory_in_incremental_mode(self):
        from core.models import SyncMode
        from sync.planner import SyncPlanner

        plan = SyncPlanner().plan(active_profile(), "invoices", mode=SyncMode.INCREMENTAL)
        assert not any("depend on" in advisory for advisory in plan.advisories)
