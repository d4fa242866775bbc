"""Connection negotiation.

Decides which connection path(s) to test for a profile and turns the outcome
into a ConnectionTestResult.

- No explicit path: API first when the ERP type supports it and API
  credentials are present; the database path only when API credentials are
  absent or the API test failed. Paths are never raced.
- Explicit path: only that path. Missing prerequisites fail fast without a
  network call.
- One in-flight test per profile. An identical test (same fingerprint) joins
  the in-flight one; a different test waits for it to finish first.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from backend.base import PlatformBackend
from connectors.erp_types import ErpVariant, get_erp_type
from core.errors import BackendError
from core.models.connection import ConnectionPath, ConnectionProfile, ConnectionTestResult
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics

logger = get_logger(__name__)


def profile_fingerprint(profile: ConnectionProfile, path: Optional[ConnectionPath]) -> str:
    """Stable hash of everything that influences a connection test."""
    material = {
        "path": path.value if path else "auto",
        "erp_type": profile.erp_type,
        "server_details": profile.server_details.model_dump(mode="json"),
        "api_credentials": profile.api_credentials.model_dump(mode="json") if profile.api_credentials else None,
        "db_credentials": profile.db_credentials.model_dump(mode="json") if profile.db_credentials else None,
    }
    encoded = json.dumps(material, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def draft_key(profile: ConnectionProfile) -> str:
    """Coalescing key for a profile that has not been persisted yet."""
    host = (profile.server_details.host or "").strip().lower()
    return f"draft:{profile.erp_type}:{host}"


@dataclass
class _InFlightTest:
    fingerprint: str
    task: "asyncio.Task[ConnectionTestResult]"


class ConnectionNegotiator:
    """Tests connection profiles against the platform.

    Usage:
        negotiator = ConnectionNegotiator(backend)
        result = await negotiator.test(profile, profile_id="erp-1")
        result.raise_for_failure()
    """

    def __init__(self, backend: PlatformBackend):
        self._backend = backend
        self._in_flight: Dict[str, _InFlightTest] = {}
        self._last_results: Dict[str, ConnectionTestResult] = {}

    def last_result(self, profile_key: str) -> Optional[ConnectionTestResult]:
        return self._last_results.get(profile_key)

    def in_flight(self, profile_key: str) -> bool:
        return profile_key in self._in_flight

    async def test(
        self,
        profile: ConnectionProfile,
        path: Optional[ConnectionPath] = None,
        profile_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        """Test ``profile``, coalescing with an identical in-flight test."""
        key = profile_id or draft_key(profile)
        fingerprint = profile_fingerprint(profile, path)

        while True:
            current = self._in_flight.get(key)
            if current is None:
                break
            if current.fingerprint == fingerprint:
                get_metrics().record_connection_test_coalesced()
                logger.debug(f"Joining in-flight connection test for {key}")
                return await asyncio.shield(current.task)
            # Different settings: let the running test finish, then re-check
            await asyncio.wait({current.task})

        task = asyncio.ensure_future(self._run(profile, path, profile_id, key))
        entry = _InFlightTest(fingerprint=fingerprint, task=task)
        self._in_flight[key] = entry

        def _release(_task, key=key, entry=entry):
            if self._in_flight.get(key) is entry:
                del self._in_flight[key]

        task.add_done_callback(_release)
        # Dispatched tests are not cancelled when the caller goes away
        return await asyncio.shield(task)

    async def test_or_raise(
        self,
        profile: ConnectionProfile,
        path: Optional[ConnectionPath] = None,
        profile_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        result = await self.test(profile, path=path, profile_id=profile_id)
        return result.raise_for_failure()

    # =========================================================================
    # Negotiation
    # =========================================================================

    async def _run(
        self,
        profile: ConnectionProfile,
        path: Optional[ConnectionPath],
        profile_id: Optional[str],
        key: str,
    ) -> ConnectionTestResult:
        with with_correlation(profile_id=profile_id, operation="connection_test"):
            try:
                variant = get_erp_type(profile.erp_type)
            except KeyError:
                result = ConnectionTestResult(
                    success=False,
                    path_tested=path or ConnectionPath.API,
                    message=f"{(path or ConnectionPath.API).value}: unsupported ERP type {profile.erp_type}",
                )
            else:
                if path is not None:
                    result = await self._test_path(profile, variant, path, profile_id)
                else:
                    result = await self._negotiate(profile, variant, profile_id)

            if profile_id:
                # only stored profiles are remembered
                self._last_results[key] = result
            logger.info(
                f"Connection test {'succeeded' if result.success else 'failed'} via {result.path_tested.value}",
                extra_fields={"erp_type": profile.erp_type, "success": result.success},
            )
            return result

    async def _negotiate(
        self,
        profile: ConnectionProfile,
        variant: Type[ErpVariant],
        profile_id: Optional[str],
    ) -> ConnectionTestResult:
        api_possible = variant.supports_api and profile.has_api_credentials
        db_possible = variant.supports_database and profile.db_credentials is not None

        if api_possible:
            api_result = await self._test_path(profile, variant, ConnectionPath.API, profile_id)
            if api_result.success or not db_possible:
                return api_result

            logger.info("API test failed, falling back to database path")
            db_result = await self._test_path(profile, variant, ConnectionPath.DATABASE, profile_id)
            if db_result.success:
                message = f"Connected via database after API failure ({api_result.message})"
            else:
                message = f"{api_result.message}; {db_result.message}"
            return db_result.model_copy(update={"message": message})

        if db_possible:
            return await self._test_path(profile, variant, ConnectionPath.DATABASE, profile_id)

        fallback_path = variant.connection_methods()[0]
        return ConnectionTestResult(
            success=False,
            path_tested=fallback_path,
            message=f"{fallback_path.value}: no credentials supplied for a supported connection method",
        )

    async def _test_path(
        self,
        profile: ConnectionProfile,
        variant: Type[ErpVariant],
        path: ConnectionPath,
        profile_id: Optional[str],
    ) -> ConnectionTestResult:
        missing = self._missing_prerequisites(profile, variant, path)
        if missing:
            get_metrics().record_connection_test(path.value, success=False)
            return ConnectionTestResult(
                success=False,
                path_tested=path,
                message=f"{path.value}: missing {', '.join(missing)}",
            )

        started = time.perf_counter()
        try:
            result = await self._backend.test_connection(profile, path, profile_id=profile_id)
        except BackendError as e:
            result = ConnectionTestResult(success=False, path_tested=path, message=e.message)

        elapsed_ms = (time.perf_counter() - started) * 1000
        updates = {"path_tested": path}
        if result.latency_ms is None:
            updates["latency_ms"] = round(elapsed_ms, 1)
        if not result.success and not result.message.startswith(f"{path.value}:"):
            updates["message"] = f"{path.value}: {result.message}"

        get_metrics().record_connection_test(path.value, success=result.success)
        get_metrics().record_processing_time(f"connection_test.{path.value}", elapsed_ms)
        return result.model_copy(update=updates)

    @staticmethod
    def _missing_prerequisites(
        profile: ConnectionProfile,
        variant: Type[ErpVariant],
        path: ConnectionPath,
    ) -> List[str]:
        missing: List[str] = []
        if not (profile.server_details.host or "").strip():
            missing.append("server_details.host")

        if path is ConnectionPath.API:
            if not variant.supports_api:
                return [f"API support ({variant.name} is database-only)"]
            if not profile.has_api_credentials:
                missing.append("api_credentials")
            if variant.requires_pool_alias and not (profile.server_details.pool_alias or "").strip():
                missing.append("server_details.pool_alias")
        else:
            if not variant.supports_database:
                return [f"database support ({variant.name} is API-only)"]
            if not profile.has_db_credentials:
                missing.append("db_credentials")
            if variant.database_name(profile) is None:
                missing.append(variant.database_location.value)
        return missing
