"""
Platform HTTP client tests against a local aiohttp server.

Covers the response envelope, bearer token handling, retries and the
mapping of HTTP failures onto platform errors.
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as LocalServer


def make_tokens(token="tok-123"):
    from core.security.encryption import SecretEncryption, generate_encryption_key
    from core.security.token_store import InMemoryTokenStore, SessionTokens

    tokens = SessionTokens(InMemoryTokenStore(), SecretEncryption(generate_encryption_key()))
    if token:
        asyncio.run(tokens.save("tenant-1", token))
    return tokens


def run_against(routes, call, token="tok-123", max_retries=2):
    """Start a server with ``routes``, run ``call(backend)`` and return its result."""
    from backend.http_client import HttpPlatformBackend, PlatformApiConfig, RetryConfig

    tokens = make_tokens(token)

    async def run():
        app = web.Application()
        app.add_routes(routes)
        server = LocalServer(app)
        await server.start_server()
        config = PlatformApiConfig(
            base_url=str(server.make_url("/api")),
            timeout_seconds=5,
            retry_config=RetryConfig(max_retries=max_retries, base_delay=0),
        )
        backend = HttpPlatformBackend("tenant-1", tokens, config)
        try:
            return await call(backend)
        finally:
            await backend.close()
            await server.close()

    return asyncio.run(run())


class TestEnvelope:

    def test_data_is_unwrapped_and_token_sent(self):
        seen = {}

        async def status(request):
            seen["auth"] = request.headers.get("Authorization")
            return web.json_response({
                "status": "success",
                "data": {"has_pending_jobs": True, "pending_jobs_count": 2},
            })

        routes = [web.get("/api/settings/erp/{profile_id}/sync-status", status)]
        result = run_against(routes, lambda backend: backend.get_sync_status("erp-1"))

        assert result.profile_id == "erp-1"
        assert result.pending_jobs_count == 2
        assert seen["auth"] == "Bearer tok-123"

    def test_error_status_in_ok_response(self):
        from core.errors import BackendError

        async def handler(request):
            return web.json_response({"status": "error", "message": "Sync engine offline"})

        routes = [web.get("/api/settings/erp/sync-jobs/{job_id}", handler)]
        with pytest.raises(BackendError) as exc_info:
            run_against(routes, lambda backend: backend.get_sync_job("job-1"))
        assert exc_info.value.message == "Sync engine offline"

    def test_missing_session_never_calls_server(self):
        from core.errors import PermissionDenied

        calls = []

        async def handler(request):
            calls.append(request.path)
            return web.json_response({"data": []})

        routes = [web.get("/api/settings/erp", handler)]
        with pytest.raises(PermissionDenied):
            run_against(routes, lambda backend: backend.list_profiles(), token=None)
        assert calls == []


class TestErrorMapping:

    def test_not_found(self):
        from core.errors import NotFoundError

        async def handler(request):
            return web.json_response({"status": "error", "message": "ERP setting not found"}, status=404)

        routes = [web.get("/api/settings/erp/{profile_id}", handler)]
        with pytest.raises(NotFoundError):
            run_against(routes, lambda backend: backend.get_profile("erp-9"))

    def test_field_errors_are_flattened(self):
        from core.errors import ValidationError

        async def handler(request):
            return web.json_response({
                "status": "error",
                "message": "The given data was invalid.",
                "errors": {"server_details.host": ["The host field is required."]},
            }, status=422)

        routes = [web.post("/api/settings/access-point-providers/activate", handler)]
        with pytest.raises(ValidationError) as exc_info:
            run_against(routes, lambda backend: backend.activate_provider("app-1", {"api_key": "k"}))
        assert exc_info.value.field_errors == {"server_details.host": "The host field is required."}

    def test_regulator_rejection_becomes_report(self):
        async def handler(request):
            return web.json_response({
                "status": "error",
                "message": "Validation failed",
                "errors": {"buyer.tin": ["Buyer TIN is missing"]},
            }, status=422)

        from core.models import InvoiceDirection

        routes = [web.post("/api/firs/validate", handler)]
        report = run_against(routes, lambda backend: backend.validate_invoice("inv-1", InvoiceDirection.RECEIVABLE))

        assert not report.valid
        assert report.errors == ["Buyer TIN is missing"]


class TestRetries:

    def test_transient_failure_is_retried(self):
        attempts = []

        async def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                return web.json_response({"message": "busy"}, status=503)
            return web.json_response({"data": {"status": "approved"}})

        routes = [web.get("/api/firs/status/{irn}", handler)]
        status = run_against(routes, lambda backend: backend.get_firs_status("IRN-1"))

        assert status.value == "approved"
        assert len(attempts) == 3

    def test_retries_exhausted(self):
        from core.errors import BackendError

        attempts = []

        async def handler(request):
            attempts.append(1)
            return web.json_response({"message": "busy"}, status=503)

        routes = [web.get("/api/firs/status/{irn}", handler)]
        with pytest.raises(BackendError) as exc_info:
            run_against(routes, lambda backend: backend.get_firs_status("IRN-1"), max_retries=1)

        assert exc_info.value.status_code == 503
        assert len(attempts) == 2

    def test_client_errors_are_not_retried(self):
        from core.errors import BackendError

        attempts = []

        async def handler(request):
            attempts.append(1)
            return web.json_response({"message": "Conflict"}, status=409)

        routes = [web.post("/api/firs/sign", handler)]

        from core.models import InvoiceDirection

        with pytest.raises(BackendError):
            run_against(routes, lambda backend: backend.sign_invoice("inv-1", InvoiceDirection.RECEIVABLE))
        assert len(attempts) == 1


class TestStateChangingRequests:

    def test_sign_is_sent_once_on_server_error(self):
        from core.errors import BackendError
        from core.models import InvoiceDirection

        attempts = []

        async def handler(request):
            attempts.append(1)
            return web.json_response({"message": "Bad gateway"}, status=502)

        routes = [web.post("/api/firs/sign", handler)]
        with pytest.raises(BackendError) as exc_info:
            run_against(routes, lambda backend: backend.sign_invoice("inv-1", InvoiceDirection.RECEIVABLE))

        assert exc_info.value.status_code == 502
        assert len(attempts) == 1

    def test_sync_submission_is_sent_once(self):
        from core.errors import BackendError
        from core.models import EntityType, SyncJobSpec

        attempts = []

        async def handler(request):
            attempts.append(1)
            return web.json_response({"message": "busy"}, status=503)

        routes = [web.post("/api/settings/erp/{profile_id}/sync", handler)]
        spec = SyncJobSpec(entity_type=EntityType.VENDORS)
        with pytest.raises(BackendError):
            run_against(routes, lambda backend: backend.submit_sync_job("erp-1", spec))

        assert len(attempts) == 1

    def test_retry_after_allows_resending(self):
        from core.models import InvoiceDirection

        attempts = []

        async def handler(request):
            attempts.append(1)
            if len(attempts) == 1:
                return web.json_response({"message": "slow down"}, status=429, headers={"Retry-After": "0"})
            return web.json_response({"data": {"id": "inv-1", "firs_irn": "IRN-1", "firs_status": "signed"}})

        routes = [web.post("/api/firs/sign", handler)]
        run_against(routes, lambda backend: backend.sign_invoice("inv-1", InvoiceDirection.RECEIVABLE))

        assert len(attempts) == 2

    def test_connection_test_is_retried(self):
        from core.models import ConnectionPath

        attempts = []

        async def handler(request):
            attempts.append(1)
            if len(attempts) < 2:
                return web.json_response({"message": "busy"}, status=503)
            return web.json_response({"data": {"success": True}})

        routes = [web.post("/api/settings/erp/{profile_id}/test", handler)]
        result = run_against(
            routes,
            lambda backend: backend.test_connection(None, ConnectionPath.API, profile_id="erp-1"),
        )

        assert result.success
        assert len(attempts) == 2
