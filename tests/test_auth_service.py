"""Unit tests for the auth service.

Covers credential checks, token issuance and rotation, logout, and the
user-management operations that revoke outstanding tokens.
"""

import asyncio
import time

import pytest

from tokengate.service.auth import run_bounded
from tokengate.service.errors import (
    InvalidCredentials,
    MalformedPasswordHash,
    NotFoundError,
    ScopeNotGranted,
    StoreUnavailable,
    TokenNotFound,
    UnknownScope,
    ValidationError,
)

PASSWORD = "correct-horse-battery"


@pytest.fixture
def user(auth_service):
    return asyncio.run(
        auth_service.create_user(
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            password=PASSWORD,
            scope=["read:a", "write:a"],
        )
    )


class TestAuthenticate:
    async def test_issues_token_with_requested_scope(self, auth_service, user):
        owner, token = await auth_service.authenticate(
            "ada@example.com", PASSWORD, ["read:a"], 0
        )

        assert owner.id == user.id
        assert token.scope == ("read:a",)
        assert token.plaintext
        resolved_user, resolved = await auth_service.resolve(token.plaintext)
        assert resolved_user.id == user.id
        assert resolved.digest == token.digest

    async def test_email_lookup_is_case_insensitive(self, auth_service, user):
        owner, _ = await auth_service.authenticate("ADA@example.com", PASSWORD, [], 0)
        assert owner.id == user.id

    async def test_expiry_extension_is_applied(self, auth_service, user):
        _, short = await auth_service.authenticate("ada@example.com", PASSWORD, [], -55)
        lifetime = short.expiry - short.created_at
        assert lifetime.total_seconds() == 65 * 60

    async def test_unknown_email_and_wrong_password_look_the_same(self, auth_service, user):
        with pytest.raises(InvalidCredentials) as unknown:
            await auth_service.authenticate("nobody@example.com", PASSWORD, [], 0)
        with pytest.raises(InvalidCredentials) as wrong:
            await auth_service.authenticate("ada@example.com", "not-the-password", [], 0)

        assert unknown.value.client_message == wrong.value.client_message
        assert unknown.value.status_code == wrong.value.status_code == 401

    async def test_scope_beyond_grant_is_rejected(self, auth_service, user, memory_store):
        with pytest.raises(ScopeNotGranted) as excinfo:
            await auth_service.authenticate(
                "ada@example.com", PASSWORD, ["read:a", "write:b"], 0
            )

        assert excinfo.value.scope == "write:b"
        assert memory_store.tokens == {}

    async def test_scope_outside_vocabulary_is_rejected(self, auth_service, user):
        with pytest.raises(UnknownScope):
            await auth_service.authenticate("ada@example.com", PASSWORD, ["admin"], 0)

    async def test_expiry_outside_range_is_rejected(self, auth_service, user):
        with pytest.raises(ValidationError):
            await auth_service.authenticate("ada@example.com", PASSWORD, [], 1381)
        with pytest.raises(ValidationError):
            await auth_service.authenticate("ada@example.com", PASSWORD, [], -56)

    async def test_second_login_revokes_first_token(self, auth_service, user):
        _, first = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)
        _, second = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)

        with pytest.raises(TokenNotFound):
            await auth_service.resolve(first.plaintext)
        owner, _ = await auth_service.resolve(second.plaintext)
        assert owner.id == user.id

    async def test_corrupt_stored_hash_is_an_internal_error(self, auth_service, user, memory_store):
        memory_store.update_password(user.id, "$argon2id$v=19$m=8,t=1,p=1$YQ$YWJj")

        with pytest.raises(MalformedPasswordHash):
            await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)
        assert memory_store.tokens == {}


class TestLogout:
    async def test_logout_removes_presented_token(self, auth_service, user):
        _, token = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)
        _, stored = await auth_service.resolve(token.plaintext)

        assert await auth_service.logout(stored) is True
        with pytest.raises(TokenNotFound):
            await auth_service.resolve(token.plaintext)
        assert await auth_service.logout_plaintext(token.plaintext) is False


class TestUserManagement:
    async def test_create_user_defaults_to_full_vocabulary(self, auth_service, settings):
        created = await auth_service.create_user(
            first_name="Grace",
            last_name="Hopper",
            email="grace@example.com",
            password=PASSWORD,
        )

        assert set(created.scope) == set(settings.valid_scopes)
        assert created.password_hash != PASSWORD

    async def test_create_user_rejects_unknown_scope(self, auth_service):
        with pytest.raises(UnknownScope):
            await auth_service.create_user(
                first_name="G",
                last_name="H",
                email="g@example.com",
                password=PASSWORD,
                scope=["root"],
            )

    async def test_get_missing_user(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.get_user(404)

    async def test_scope_change_revokes_tokens(self, auth_service, user):
        _, token = await auth_service.authenticate("ada@example.com", PASSWORD, ["write:a"], 0)

        updated = await auth_service.update_user(user.id, scope=["read:a"])

        assert updated.scope == ("read:a",)
        with pytest.raises(TokenNotFound):
            await auth_service.resolve(token.plaintext)

    async def test_name_change_keeps_tokens(self, auth_service, user):
        _, token = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)

        await auth_service.update_user(user.id, first_name="Augusta")

        owner, _ = await auth_service.resolve(token.plaintext)
        assert owner.first_name == "Augusta"

    async def test_password_change_applies_and_revokes(self, auth_service, user):
        _, token = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)

        await auth_service.update_user(user.id, password="a-brand-new-secret")

        with pytest.raises(TokenNotFound):
            await auth_service.resolve(token.plaintext)
        with pytest.raises(InvalidCredentials):
            await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)
        await auth_service.authenticate("ada@example.com", "a-brand-new-secret", [], 0)

    async def test_update_missing_user(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.update_user(404, first_name="x")

    async def test_delete_user_cascades(self, auth_service, user):
        _, token = await auth_service.authenticate("ada@example.com", PASSWORD, [], 0)

        await auth_service.delete_user(user.id)

        with pytest.raises(TokenNotFound):
            await auth_service.resolve(token.plaintext)
        with pytest.raises(NotFoundError):
            await auth_service.delete_user(user.id)


async def test_run_bounded_times_out_as_store_unavailable():
    def slow():
        time.sleep(0.2)

    with pytest.raises(StoreUnavailable):
        await run_bounded("slow", slow, timeout=0.01)


async def test_run_bounded_returns_result():
    assert await run_bounded("add", lambda a, b: a + b, 2, 3, timeout=1.0) == 5
