"""
Security tests: role/permission resolution, secret encryption and the
encrypted session token store.
"""

import asyncio

import pytest


class TestRoles:

    def test_unknown_roles_grant_nothing(self):
        from core.security.permissions import AuthContext, effective_permissions

        ctx = AuthContext.from_strings(["auditor", " "], tenant_id="tenant-1")

        assert ctx.roles == ()
        assert ctx.unknown_roles == ("auditor",)
        assert effective_permissions(ctx) == frozenset()

    def test_roles_are_deduplicated(self):
        from core.security.permissions import AuthContext, Role

        ctx = AuthContext.from_strings(["company_admin", "company_admin", "company_user"])
        assert ctx.roles == (Role.COMPANY_ADMIN, Role.COMPANY_USER)

    def test_company_user_is_view_only(self):
        from core.security.permissions import AuthContext, Permission, Role, has_permission

        ctx = AuthContext(roles=(Role.COMPANY_USER,))

        assert has_permission(ctx, Permission.ERP_VIEW)
        assert has_permission(ctx, Permission.FIRS_VIEW)
        assert not has_permission(ctx, Permission.ERP_SYNC)
        assert not has_permission(ctx, Permission.FIRS_SUBMIT)
        assert not has_permission(ctx, Permission.FIRS_CONFIGURE)

    def test_services_reserved_for_super_admin(self):
        from core.security.permissions import AuthContext, Permission, Role, has_permission

        assert not has_permission(AuthContext(roles=(Role.COMPANY_ADMIN,)), Permission.SERVICES_MANAGE)
        assert has_permission(AuthContext(roles=(Role.SUPER_ADMIN,)), Permission.SERVICES_MANAGE)

    def test_mixed_roles_union_permissions(self):
        from core.security.permissions import AuthContext, can_manage_erp

        ctx = AuthContext.from_strings(["company_user", "company"])
        assert can_manage_erp(ctx)


class TestGuard:

    def test_empty_guard_allows(self):
        from core.security.permissions import AuthContext, guard

        assert guard(AuthContext())

    def test_any_role_or_permission(self):
        from core.security.permissions import AuthContext, Permission, Role, guard

        ctx = AuthContext(roles=(Role.COMPANY_USER,))

        assert guard(ctx, allowed_roles=[Role.SUPER_ADMIN], allowed_permissions=[Permission.ERP_VIEW])
        assert not guard(ctx, allowed_roles=[Role.SUPER_ADMIN], allowed_permissions=[Permission.ERP_SYNC])

    def test_require_all(self):
        from core.security.permissions import AuthContext, Permission, Role, guard

        ctx = AuthContext(roles=(Role.COMPANY_ADMIN,))

        assert guard(ctx, [Role.COMPANY_ADMIN], [Permission.ERP_SYNC], require_all=True)
        assert not guard(ctx, [Role.COMPANY_ADMIN, Role.SUPER_ADMIN], [], require_all=True)

    def test_require_names_missing_permission(self):
        from core.errors import PermissionDenied
        from core.security.permissions import AuthContext, Permission, require

        with pytest.raises(PermissionDenied) as exc_info:
            require(AuthContext(), Permission.ERP_DELETE)

        assert exc_info.value.message == "Missing permission 'erp.delete'"


class TestEncryption:

    def test_round_trip(self):
        from core.security.encryption import SecretEncryption, generate_encryption_key

        enc = SecretEncryption(generate_encryption_key())
        sealed = enc.encrypt({"access_token": "tok"}, tenant_id="tenant-1")

        assert sealed.ciphertext != "tok"
        assert enc.decrypt(sealed) == {"access_token": "tok"}

    def test_tenant_is_bound(self):
        from core.security.encryption import SecretEncryption, generate_encryption_key

        enc = SecretEncryption(generate_encryption_key())
        sealed = enc.encrypt({"access_token": "tok"}, tenant_id="tenant-1")
        sealed.tenant_id = "tenant-2"

        with pytest.raises(ValueError):
            enc.decrypt(sealed)

    def test_wrong_key_rejected(self):
        from core.security.encryption import SecretEncryption, generate_encryption_key

        sealed = SecretEncryption(generate_encryption_key()).encrypt({"a": 1}, tenant_id="t")
        with pytest.raises(ValueError):
            SecretEncryption(generate_encryption_key()).decrypt(sealed)

    def test_short_key_rejected(self):
        from core.security.encryption import SecretEncryption

        with pytest.raises(ValueError):
            SecretEncryption("c2hvcnQ=")


class TestSessionTokens:

    def test_in_memory_store(self):
        from core.security.encryption import SecretEncryption, generate_encryption_key
        from core.security.token_store import InMemoryTokenStore, SessionTokens

        tokens = SessionTokens(InMemoryTokenStore(), SecretEncryption(generate_encryption_key()))

        async def run():
            await tokens.save("tenant-1", "bearer-abc", expires_in=3600)
            found = await tokens.get_access_token("tenant-1")
            cleared = await tokens.clear("tenant-1")
            return found, cleared, await tokens.get_access_token("tenant-1")

        found, cleared, after = asyncio.run(run())

        assert found == "bearer-abc"
        assert cleared
        assert after is None

    def test_expired_token_is_not_returned(self):
        from core.security.encryption import SecretEncryption, generate_encryption_key
        from core.security.token_store import InMemoryTokenStore, SessionTokens

        tokens = SessionTokens(InMemoryTokenStore(), SecretEncryption(generate_encryption_key()))

        async def run():
            # Inside the refresh buffer counts as expired
            await tokens.save("tenant-1", "bearer-abc", expires_in=30)
            return await tokens.get_access_token("tenant-1")

        assert asyncio.run(run()) is None

    def test_file_store_persists_encrypted(self, tmp_path):
        from core.security.encryption import SecretEncryption, generate_encryption_key
        from core.security.token_store import FileTokenStore, SessionTokens

        key = generate_encryption_key()
        store_path = tmp_path / "tokens"

        async def run():
            await SessionTokens(FileTokenStore(str(store_path)), SecretEncryption(key)).save("tenant/1", "bearer-xyz")
            reopened = SessionTokens(FileTokenStore(str(store_path)), SecretEncryption(key))
            return await reopened.get_access_token("tenant/1")

        assert asyncio.run(run()) == "bearer-xyz"
        written = (store_path / "tenant_1.json").read_text()
        assert "bearer-xyz" not in written
