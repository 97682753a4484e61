"""Tests for the identity provider client."""

from urllib.parse import parse_qs, urlparse

import pytest
from supabase_auth.types import Session

from src.smart_bookmarks.core.services import AuthClientService, AuthorizationError, BackendError
from src.smart_bookmarks.core.storage import CODE_VERIFIER_KEY, SESSION_KEY
from src.smart_bookmarks.runtime.config.config_data import AuthConfig, BackendConfig
from tests.fixtures.backend import ANON_KEY, BACKEND_URL

CALLBACK = "http://localhost:8000/auth/callback"


async def _stored_session(storage) -> Session | None:
    raw = await storage.get_item(SESSION_KEY)
    return Session.model_validate_json(raw) if raw else None


class TestStartAuthorization:
    @pytest.mark.asyncio
    async def test_builds_provider_url_and_stores_verifier(self, auth_client, memory_storage, fake_backend):
        url = await auth_client.start_authorization(memory_storage, CALLBACK)

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}" == BACKEND_URL
        assert parsed.path == "/auth/v1/authorize"
        assert query["provider"] == ["google"]
        assert query["redirect_to"] == [CALLBACK]
        assert query["code_challenge_method"] == ["s256"]
        assert query["code_challenge"][0]

        assert await memory_storage.get_item(CODE_VERIFIER_KEY)
        # nothing is sent to the backend until the code comes back
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_new_verifier_each_time(self, auth_client, memory_storage):
        await auth_client.start_authorization(memory_storage, CALLBACK)
        first = await memory_storage.get_item(CODE_VERIFIER_KEY)
        await auth_client.start_authorization(memory_storage, CALLBACK)
        second = await memory_storage.get_item(CODE_VERIFIER_KEY)

        assert first != second

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_to_start(self, backend_transport, memory_storage):
        client = AuthClientService(
            backend_config=BackendConfig(url=BACKEND_URL, anon_key=""),
            transport=backend_transport,
        )
        with pytest.raises(AuthorizationError) as exc_info:
            await client.start_authorization(memory_storage, CALLBACK)
        assert exc_info.value.code == "missing_api_key"
        assert memory_storage.storage == {}

    @pytest.mark.asyncio
    async def test_missing_provider_fails_to_start(self, backend_transport, memory_storage):
        client = AuthClientService(
            auth_config=AuthConfig(provider=""), transport=backend_transport
        )
        with pytest.raises(AuthorizationError, match="provider"):
            await client.start_authorization(memory_storage, CALLBACK)

    @pytest.mark.asyncio
    async def test_missing_redirect_fails_to_start(self, auth_client, memory_storage):
        with pytest.raises(AuthorizationError, match="redirect"):
            await auth_client.start_authorization(memory_storage, "")


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_exchange_stores_session(self, auth_client, memory_storage, fake_backend):
        url = await auth_client.start_authorization(memory_storage, CALLBACK)
        code = fake_backend.authorize(url, "user-a")

        session = await auth_client.exchange_code_for_session(memory_storage, code)

        assert session.user.id == "user-a"
        assert session.user.email == "alice@example.com"
        stored = await _stored_session(memory_storage)
        assert stored.access_token == session.access_token
        assert await memory_storage.get_item(CODE_VERIFIER_KEY) is None

        [token_call] = fake_backend.calls("POST", "/auth/v1/token")
        assert token_call.url.params["grant_type"] == "pkce"
        assert token_call.headers["apikey"] == ANON_KEY

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, auth_client, memory_storage, fake_backend):
        url = await auth_client.start_authorization(memory_storage, CALLBACK)
        code = fake_backend.authorize(url, "user-a")
        verifier = await memory_storage.get_item(CODE_VERIFIER_KEY)
        await auth_client.exchange_code_for_session(memory_storage, code)

        await memory_storage.set_item(CODE_VERIFIER_KEY, verifier)
        with pytest.raises(BackendError) as exc_info:
            await auth_client.exchange_code_for_session(memory_storage, code)

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "flow_state_not_found"

    @pytest.mark.asyncio
    async def test_missing_verifier(self, auth_client, memory_storage, fake_backend):
        code = fake_backend.issue_code("user-a", "some-verifier")

        with pytest.raises(BackendError, match="code verifier"):
            await auth_client.exchange_code_for_session(memory_storage, code)
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_wrong_verifier_rejected(self, auth_client, memory_storage, fake_backend):
        code = fake_backend.issue_code("user-a", "the-real-verifier")
        await memory_storage.set_item(CODE_VERIFIER_KEY, "another-verifier")

        with pytest.raises(BackendError) as exc_info:
            await auth_client.exchange_code_for_session(memory_storage, code)
        assert exc_info.value.code == "bad_code_verifier"
        assert await memory_storage.get_item(SESSION_KEY) is None
        # consumed even on failure
        assert await memory_storage.get_item(CODE_VERIFIER_KEY) is None

    @pytest.mark.asyncio
    async def test_network_failure(self, auth_client, memory_storage, fake_backend):
        url = await auth_client.start_authorization(memory_storage, CALLBACK)
        code = fake_backend.authorize(url, "user-a")
        fake_backend.offline = True

        with pytest.raises(BackendError, match="unreachable"):
            await auth_client.exchange_code_for_session(memory_storage, code)
        assert await memory_storage.get_item(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_malformed_session_body(self, auth_client, memory_storage, fake_backend):
        url = await auth_client.start_authorization(memory_storage, CALLBACK)
        code = fake_backend.authorize(url, "user-a")
        fake_backend.fail_next("POST", "/auth/v1/token", 200, {"unexpected": True})

        with pytest.raises(BackendError, match="Malformed"):
            await auth_client.exchange_code_for_session(memory_storage, code)


class TestOpenSession:
    @pytest.mark.asyncio
    async def test_no_session(self, auth_client, memory_storage):
        assert await auth_client.get_session(memory_storage) is None

    @pytest.mark.asyncio
    async def test_fresh_session_returned_without_calls(self, auth_client, memory_storage, sign_in, fake_backend):
        session = await sign_in(memory_storage)
        calls_before = len(fake_backend.requests)

        current = await auth_client.get_session(memory_storage)

        assert current.access_token == session.access_token
        assert len(fake_backend.requests) == calls_before

    @pytest.mark.asyncio
    async def test_data_calls_carry_the_session_token(self, auth_client, memory_storage, sign_in):
        session = await sign_in(memory_storage)

        client, current = await auth_client.open_session(memory_storage)

        assert current.access_token == session.access_token
        assert client.postgrest.headers["Authorization"] == f"Bearer {session.access_token}"

    @pytest.mark.asyncio
    async def test_expiring_session_is_refreshed(self, auth_client, memory_storage, sign_in, fake_backend):
        # inside the refresh margin but outside the auth client's own expiry margin
        fake_backend.expires_in = 30
        session = await sign_in(memory_storage)

        current = await auth_client.get_session(memory_storage)

        assert current is not None
        assert current.access_token != session.access_token
        assert current.user.id == "user-a"
        assert (await _stored_session(memory_storage)).access_token == current.access_token
        assert len(fake_backend.calls("POST", "/auth/v1/token")) == 2

    @pytest.mark.asyncio
    async def test_refused_refresh_clears_session(self, auth_client, memory_storage, sign_in, fake_backend):
        fake_backend.expires_in = 30
        await sign_in(memory_storage)
        fake_backend.revoke_refresh_tokens()

        assert await auth_client.get_session(memory_storage) is None
        assert await memory_storage.get_item(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_transient_refresh_failure_keeps_session(self, auth_client, memory_storage, sign_in, fake_backend):
        fake_backend.expires_in = 30
        session = await sign_in(memory_storage)
        fake_backend.offline = True

        with pytest.raises(BackendError, match="unreachable"):
            await auth_client.get_session(memory_storage)
        assert (await _stored_session(memory_storage)).access_token == session.access_token

    @pytest.mark.asyncio
    async def test_malformed_stored_session_is_dropped(self, auth_client, memory_storage):
        await memory_storage.set_item(SESSION_KEY, "{broken")

        assert await auth_client.get_session(memory_storage) is None
        assert await memory_storage.get_item(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_explicit_refresh(self, auth_client, memory_storage, sign_in):
        session = await sign_in(memory_storage)

        refreshed = await auth_client.refresh_session(memory_storage)

        assert refreshed.access_token != session.access_token
        assert (await _stored_session(memory_storage)).access_token == refreshed.access_token

    @pytest.mark.asyncio
    async def test_explicit_refresh_without_session(self, auth_client, memory_storage):
        with pytest.raises(BackendError):
            await auth_client.refresh_session(memory_storage)


class TestUserAndSignOut:
    @pytest.mark.asyncio
    async def test_get_user(self, auth_client, memory_storage, sign_in):
        await sign_in(memory_storage, "user-b")

        user = await auth_client.get_user(memory_storage)
        assert user.id == "user-b"

    @pytest.mark.asyncio
    async def test_get_user_without_session(self, auth_client, memory_storage):
        assert await auth_client.get_user(memory_storage) is None

    @pytest.mark.asyncio
    async def test_get_user_with_revoked_token(self, auth_client, memory_storage, sign_in, fake_backend):
        await sign_in(memory_storage)
        fake_backend.revoke_access_tokens()

        with pytest.raises(BackendError) as exc_info:
            await auth_client.get_user(memory_storage)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_sign_out_revokes_and_clears(self, auth_client, memory_storage, sign_in, fake_backend):
        session = await sign_in(memory_storage)

        await auth_client.sign_out(memory_storage)

        assert await memory_storage.get_item(SESSION_KEY) is None
        [logout_call] = fake_backend.calls("POST", "/auth/v1/logout")
        assert logout_call.headers["authorization"] == f"Bearer {session.access_token}"
        assert logout_call.url.params["scope"] == "local"
        assert await auth_client.get_user(memory_storage) is None

    @pytest.mark.asyncio
    async def test_sign_out_clears_locally_when_remote_fails(self, auth_client, memory_storage, sign_in, fake_backend):
        await sign_in(memory_storage)
        fake_backend.offline = True

        with pytest.raises(BackendError):
            await auth_client.sign_out(memory_storage)
        assert await memory_storage.get_item(SESSION_KEY) is None

    @pytest.mark.asyncio
    async def test_sign_out_drops_pending_verifier(self, auth_client, memory_storage, fake_backend):
        await auth_client.start_authorization(memory_storage, CALLBACK)

        await auth_client.sign_out(memory_storage)

        assert await memory_storage.get_item(CODE_VERIFIER_KEY) is None
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_health_check(self, auth_client, fake_backend):
        assert await auth_client.health_check() is True
        fake_backend.offline = True
        assert await auth_client.health_check() is False
