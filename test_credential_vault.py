"""
Access-point provider vault tests.

One active provider per tenant, credential shapes per provider, masked
reads by default and audited unmasked reads.
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
def viewer():
    from core.security.permissions import AuthContext, Role
    return AuthContext(roles=(Role.COMPANY_USER,), tenant_id="tenant-1", user_id="bo")


@pytest.fixture
def audit_backend():
    from core.audit.events import InMemoryAuditBackend
    return InMemoryAuditBackend()


@pytest.fixture
def backend():
    from backend.in_memory import InMemoryPlatformBackend
    return InMemoryPlatformBackend()


@pytest.fixture
def vault(backend, audit_backend):
    from core.audit.events import AuditLogger
    from providers.vault import CredentialVault
    return CredentialVault(backend, audit=AuditLogger([audit_backend]))


CRYPTWARE = {"participant_id": "NG-PART-77", "api_key": "ck_live_1"}
INTERSWITCH = {"api_key": "isw_key", "api_secret": "isw_secret"}


class TestVariants:

    def test_cryptware_needs_participant_id(self):
        from core.errors import ValidationError
        from providers.variants import get_variant

        with pytest.raises(ValidationError) as exc_info:
            get_variant("cryptware").check({"api_key": "k", "api_secret": "s"})

        errors = exc_info.value.field_errors
        assert "credentials.participant_id" in errors
        assert "credentials.api_secret" in errors

    def test_default_variant_needs_key_and_secret(self):
        from providers.variants import get_variant

        cleaned = get_variant("interswitch").check({"api_key": " k ", "api_secret": "s"})
        assert cleaned == {"api_key": "k", "api_secret": "s"}

    def test_blank_credentials(self):
        from providers.variants import get_variant

        assert get_variant("CRYPTWARE").blank() == {"api_key": "", "participant_id": ""}


class TestActivate:

    def test_activate_with_credentials(self, vault, backend, admin, audit_backend):
        provider = asyncio.run(vault.activate(admin, "app-cryptware", CRYPTWARE))

        assert provider.is_active
        assert provider.has_credentials
        assert backend.provider_credentials["app-cryptware"] == CRYPTWARE
        events = audit_backend.query(event_type="PROVIDER_ACTIVATED")
        assert events[0].details["previous_provider_id"] is None

    def test_switching_leaves_exactly_one_active(self, vault, backend, admin, audit_backend):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            await vault.activate(admin, "app-interswitch", INTERSWITCH)
            return await backend.list_providers()

        providers = asyncio.run(run())

        assert [p.id for p in providers if p.is_active] == ["app-interswitch"]
        last = audit_backend.query(event_type="PROVIDER_ACTIVATED")[-1]
        assert last.details["previous_provider_id"] == "app-cryptware"

    def test_reactivation_reuses_stored_credentials(self, vault, backend, admin):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            await vault.activate(admin, "app-interswitch", INTERSWITCH)
            return await vault.activate(admin, "app-cryptware")

        provider = asyncio.run(run())

        assert provider.is_active
        assert backend.provider_credentials["app-cryptware"] == CRYPTWARE

    def test_first_activation_requires_credentials(self, vault, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(vault.activate(admin, "app-etranzact"))

        assert "credentials" in exc_info.value.field_errors
        assert "activate_provider" not in backend.call_names()

    def test_wrong_credential_shape_rejected(self, vault, backend, admin):
        from core.errors import ValidationError

        with pytest.raises(ValidationError):
            asyncio.run(vault.activate(admin, "app-cryptware", INTERSWITCH))
        assert "activate_provider" not in backend.call_names()

    def test_unknown_provider(self, vault, admin):
        from core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            asyncio.run(vault.activate(admin, "app-missing", INTERSWITCH))

    def test_inconsistent_platform_state_is_reported(self, vault, backend, admin):
        from core.errors import ProviderStateError

        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            backend.leave_previous_active = True
            await vault.activate(admin, "app-interswitch", INTERSWITCH)

        with pytest.raises(ProviderStateError) as exc_info:
            asyncio.run(run())
        assert sorted(exc_info.value.details["active_ids"]) == ["app-cryptware", "app-interswitch"]

    def test_viewer_cannot_activate(self, vault, backend, viewer):
        from core.errors import PermissionDenied

        with pytest.raises(PermissionDenied):
            asyncio.run(vault.activate(viewer, "app-cryptware", CRYPTWARE))
        assert backend.calls == []

    def test_concurrent_activations_serialise(self, vault, backend, admin):
        backend.latency = 0.005

        async def run():
            await asyncio.gather(
                vault.activate(admin, "app-cryptware", CRYPTWARE),
                vault.activate(admin, "app-interswitch", INTERSWITCH),
            )
            return await backend.list_providers()

        providers = asyncio.run(run())
        assert len([p for p in providers if p.is_active]) == 1


class TestReads:

    def test_masked_by_default(self, vault, admin):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            return await vault.get_active(admin)

        active = asyncio.run(run())

        assert active.masked
        assert active.provider.id == "app-cryptware"
        assert "NG-PART-77" not in active.credentials.values()
        assert set(active.credentials) == set(CRYPTWARE)

    def test_unmasked_read_is_audited(self, vault, admin, audit_backend):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            return await vault.get_active(admin, unmask=True)

        active = asyncio.run(run())

        assert not active.masked
        assert active.credentials == CRYPTWARE
        assert audit_backend.query(event_type="CREDENTIALS_UNMASKED")[0].actor == "ada"

    def test_failed_unmask_returns_empty_fields(self, vault, backend, admin, audit_backend):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            backend.fail_unmask = True
            return await vault.get_active(admin, unmask=True)

        active = asyncio.run(run())

        assert active.credentials == {"api_key": "", "participant_id": ""}
        assert not active.masked
        assert audit_backend.query(event_type="CREDENTIALS_UNMASK_FAILED")

    def test_viewer_may_read_masked_only(self, vault, viewer):
        from core.errors import PermissionDenied

        assert asyncio.run(vault.get_active(viewer)) is None
        with pytest.raises(PermissionDenied):
            asyncio.run(vault.get_active(viewer, unmask=True))

    def test_list_available(self, vault, viewer):
        providers = asyncio.run(vault.list_available(viewer))
        assert {p.code for p in providers} == {"cryptware", "interswitch", "etranzact"}


class TestRotateAndDeactivate:

    def test_rotate_active_provider(self, vault, backend, admin):
        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            return await vault.rotate(admin, "app-cryptware", {"participant_id": "NG-PART-77", "api_key": "ck_live_2"})

        asyncio.run(run())
        assert backend.provider_credentials["app-cryptware"]["api_key"] == "ck_live_2"

    def test_rotate_inactive_provider_refused(self, vault, backend, admin):
        from core.errors import ProviderStateError

        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            await vault.rotate(admin, "app-interswitch", INTERSWITCH)

        with pytest.raises(ProviderStateError):
            asyncio.run(run())
        assert "update_provider_credentials" not in backend.call_names()

    def test_deactivate(self, vault, backend, admin):
        from core.observability.metrics import get_metrics

        async def run():
            await vault.activate(admin, "app-cryptware", CRYPTWARE)
            await vault.deactivate(admin)
            return await backend.get_active_provider()

        assert asyncio.run(run()) is None
        assert get_metrics().get_summary()["provider_changes"] == {"activate": 1, "deactivate": 1}

    def test_deactivate_without_active_provider(self, vault, admin):
        from core.errors import ProviderStateError

        with pytest.raises(ProviderStateError):
            asyncio.run(vault.deactivate(admin))

    def test_resync_requires_active_provider(self, vault, backend, admin):
        from core.errors import ProviderStateError

        with pytest.raises(ProviderStateError):
            asyncio.run(vault.resync_profile(admin))

        asyncio.run(vault.activate(admin, "app-cryptware", CRYPTWARE))
        result = asyncio.run(vault.resync_profile(admin))
        assert result["provider"] == "cryptware"
