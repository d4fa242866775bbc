"""Sync dependency planning.

Turns a sync request into an ordered list of job specs:

- Canonical order: vendors -> customers -> products -> invoices. Tax
  categories have no dependents and sort after the chain.
- "all" always emits the four chained entities in canonical order. Tax
  categories are refreshed only when named explicitly.
- Incremental mode carries the entity's last successful watermark as
  ``since``. Full mode ignores it.
- ``date_from``/``date_to`` apply to vendors, customers and invoices only.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.errors import ValidationError
from core.models.connection import ConnectionProfile
from core.models.sync import (
    DEPENDENCY_ORDER,
    EntityType,
    SyncJobSpec,
    SyncMode,
    SyncPlan,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

SCOPE_ALL = "all"

Scope = Union[str, EntityType, Iterable[Union[str, EntityType]]]

# invoices reference every other chained entity
INVOICE_DEPENDENCIES: Tuple[EntityType, ...] = (
    EntityType.VENDORS,
    EntityType.CUSTOMERS,
    EntityType.PRODUCTS,
)

_ORDER_INDEX: Dict[EntityType, int] = {entity: i for i, entity in enumerate(DEPENDENCY_ORDER)}


def sort_key(entity: EntityType) -> int:
    return _ORDER_INDEX.get(entity, len(DEPENDENCY_ORDER))


def _parse_entity(value: Union[str, EntityType]) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        valid = ", ".join(e.value for e in EntityType)
        raise ValidationError.single("scope", f"Unknown entity type '{value}'. Expected one of: {valid}") from None


def resolve_scope(scope: Scope) -> Tuple[List[EntityType], bool]:
    """Entities to sync in canonical order, and whether they were named explicitly."""
    if isinstance(scope, (str, EntityType)):
        if scope == SCOPE_ALL:
            return list(DEPENDENCY_ORDER), False
        return [_parse_entity(scope)], True

    entities: List[EntityType] = []
    for item in scope:
        entity = _parse_entity(item)
        if entity not in entities:
            entities.append(entity)
    if not entities:
        raise ValidationError.single("scope", "Select at least one entity type to sync")
    return sorted(entities, key=sort_key), True


class SyncPlanner:
    """Plans dependency-ordered sync jobs for one profile.

    Usage:
        plan = SyncPlanner().plan(profile, "all", mode=SyncMode.INCREMENTAL,
                                  profile_id="erp-1", watermarks=status.watermarks)
        plan.entity_order  # [vendors, customers, products, invoices]
    """

    def plan(
        self,
        profile: ConnectionProfile,
        scope: Scope,
        mode: SyncMode = SyncMode.FULL,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        watermarks: Optional[Mapping[EntityType, datetime]] = None,
        profile_id: Optional[str] = None,
    ) -> SyncPlan:
        """Build a SyncPlan.

        Raises:
            ValidationError: inactive profile, unknown entity, bad date bounds,
                or a single entity the profile may not read
        """
        mode = SyncMode(mode)
        watermarks = dict(watermarks or {})
        profile_id = profile_id or getattr(profile, "id", None) or ""

        if not profile.is_active:
            raise ValidationError.single("is_active", "Profile is inactive; activate it before syncing")

        entities, explicit = resolve_scope(scope)
        self._check_bounds(entities, explicit, date_from, date_to)

        advisories: List[str] = []
        jobs: List[SyncJobSpec] = []
        for entity in entities:
            if not profile.read_permissions.allows(entity):
                if explicit and len(entities) == 1:
                    raise ValidationError.single(
                        f"read_permissions.{entity.value}",
                        f"This connection is not permitted to read {entity.value}",
                    )
                advisories.append(f"Skipped {entity.value}: read permission is disabled for this connection")
                continue

            since = None
            if mode is SyncMode.INCREMENTAL:
                since = watermarks.get(entity)
                if since is None:
                    advisories.append(
                        f"No previous successful {entity.value} sync; incremental pull will fetch all records"
                    )

            bounded = entity.accepts_date_bounds
            jobs.append(SyncJobSpec(
                entity_type=entity,
                mode=mode,
                since=since,
                date_from=date_from if bounded else None,
                date_to=date_to if bounded else None,
            ))

        advisory = self._dependency_advisory(jobs, mode, watermarks)
        if advisory:
            advisories.append(advisory)

        plan = SyncPlan(profile_id=profile_id, jobs=jobs, advisories=advisories)
        logger.info(
            f"Planned {len(jobs)} sync job(s)",
            extra_fields={
                "profile_id": profile_id,
                "order": [e.value for e in plan.entity_order],
                "mode": mode.value,
                "advisories": len(advisories),
            },
        )
        return plan

    @staticmethod
    def _check_bounds(
        entities: List[EntityType],
        explicit: bool,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> None:
        errors: Dict[str, str] = {}
        if date_from and date_to and date_from > date_to:
            errors["date_from"] = "Start date must be on or before end date"

        if explicit and (date_from or date_to):
            unbounded = [e.value for e in entities if not e.accepts_date_bounds]
            if unbounded:
                field = "date_from" if date_from else "date_to"
                errors.setdefault(
                    field,
                    f"Date range applies only to vendors, customers and invoices, not {', '.join(unbounded)}",
                )
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _dependency_advisory(
        jobs: List[SyncJobSpec],
        mode: SyncMode,
        watermarks: Mapping[EntityType, datetime],
    ) -> Optional[str]:
        if mode is not SyncMode.FULL:
            return None
        if not any(job.entity_type is EntityType.INVOICES for job in jobs):
            return None

        missing = [dep for dep in INVOICE_DEPENDENCIES if dep not in watermarks]
        if not missing:
            return None

        scheduled = {job.entity_type for job in jobs}
        names = ", ".join(dep.value for dep in missing)
        if all(dep in scheduled for dep in missing):
            return (
                f"Invoices depend on {names}, which have never synced successfully. They are submitted "
                f"first in this plan, but the server only guarantees submission order."
            )
        return (
            f"Invoices depend on {names}, which have never synced successfully and are not part "
            f"of this sync. Invoice lines may reference records that are not imported yet."
        )
