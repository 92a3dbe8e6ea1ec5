import asyncio
import time

import pytest

from santacall.schemas import AuthChangeEvent, OAuthProvider
from santacall.supabase import AuthApiError, FileSessionStorage, MemorySessionStorage, SupabaseError

from .backend_helpers import ANON_KEY, FakeBackend, make_session


def test_sign_in_saves_session_and_notifies_subscribers():
    backend = FakeBackend()
    user_id = backend.add_user("parent@example.com", "secret")
    storage = MemorySessionStorage()
    client = backend.client(storage)

    async def run():
        subscription = client.auth.on_auth_state_change()
        session = await client.auth.sign_in_with_password("parent@example.com", "secret")
        first = await subscription.__anext__()
        second = await subscription.__anext__()
        subscription.close()
        return session, first, second

    session, first, second = asyncio.run(run())

    assert str(session.user.id) == user_id
    assert storage.load() == session
    assert client.auth.current_user.email == "parent@example.com"
    assert first.event == AuthChangeEvent.INITIAL_SESSION
    assert first.session is None
    assert second.event == AuthChangeEvent.SIGNED_IN
    assert second.session == session


def test_sign_in_with_wrong_password_raises_backend_message():
    backend = FakeBackend()
    backend.add_user("parent@example.com", "secret")
    client = backend.client()

    with pytest.raises(AuthApiError) as exc:
        asyncio.run(client.auth.sign_in_with_password("parent@example.com", "nope"))

    assert exc.value.detail == "Invalid login credentials"
    assert exc.value.status_code == 400
    assert client.auth.current_user is None


def test_sign_up_requiring_confirmation_returns_no_session():
    backend = FakeBackend()
    backend.require_confirmation = True
    client = backend.client()

    response = asyncio.run(client.auth.sign_up("new@example.com", "secret"))

    assert response.session is None
    assert response.user.email == "new@example.com"
    assert client.auth.current_user is None


def test_id_token_sign_in_sends_provider_and_nonce():
    backend = FakeBackend()
    client = backend.client()

    session = asyncio.run(
        client.auth.sign_in_with_id_token(OAuthProvider.APPLE, "apple-token", nonce="n-1")
    )

    assert session.user.email == "apple-apple-token@example.com"
    request = backend.requests_to("POST", "/auth/v1/token")[0]
    assert request.url.params["grant_type"] == "id_token"
    assert b'"nonce":"n-1"' in request.content.replace(b" ", b"")
    assert b"access_token" not in request.content


def test_sign_out_clears_local_session_even_when_backend_fails():
    backend = FakeBackend()
    backend.add_user("parent@example.com", "secret")
    backend.fail("POST", "/auth/v1/logout")
    storage = MemorySessionStorage()
    client = backend.client(storage)

    async def run():
        await client.auth.sign_in_with_password("parent@example.com", "secret")
        subscription = client.auth.on_auth_state_change()
        with pytest.raises(SupabaseError):
            await client.auth.sign_out()
        await subscription.__anext__()
        return await subscription.__anext__()

    state = asyncio.run(run())

    assert state.event == AuthChangeEvent.SIGNED_OUT
    assert client.auth.current_user is None
    assert storage.load() is None


def test_expired_stored_session_is_refreshed():
    backend = FakeBackend()
    user_id = backend.add_user("parent@example.com", "secret")
    stale = make_session(user_id, "parent@example.com", expires_at=int(time.time()) - 60)
    storage = MemorySessionStorage(stale)
    client = backend.client(storage)

    session = asyncio.run(client.auth.get_session())

    assert session is not None
    assert session.expires_at > int(time.time())
    assert storage.load() == session
    assert backend.requests_to("POST", "/auth/v1/token")[0].url.params["grant_type"] == "refresh_token"


def test_failed_refresh_drops_stored_session():
    backend = FakeBackend()
    user_id = backend.add_user("parent@example.com", "secret")
    backend.revoked_refresh_tokens.add(f"refresh-{user_id}")
    stale = make_session(user_id, "parent@example.com", expires_at=int(time.time()) - 60)
    storage = MemorySessionStorage(stale)
    client = backend.client(storage)

    assert asyncio.run(client.auth.get_session()) is None
    assert storage.load() is None


def test_select_uses_session_token_and_filters():
    backend = FakeBackend()
    user_id = backend.add_user("parent@example.com", "secret")
    backend.profiles[user_id] = {
        "id": user_id,
        "email": "parent@example.com",
        "first_name": "Sam",
        "last_name": None,
    }
    client = backend.client()

    async def run():
        await client.auth.sign_in_with_password("parent@example.com", "secret")
        return await client.select("profiles", params={"select": "*", "id": f"eq.{user_id}"})

    rows = asyncio.run(run())

    assert rows[0]["first_name"] == "Sam"
    request = backend.requests_to("GET", "/rest/v1/profiles")[0]
    assert request.headers["apikey"] == ANON_KEY
    assert request.headers["Authorization"] == f"Bearer token-{user_id}"


def test_select_without_session_uses_anon_key():
    backend = FakeBackend()
    client = backend.client()

    asyncio.run(client.select("children", params={"select": "*"}))

    request = backend.requests_to("GET", "/rest/v1/children")[0]
    assert request.headers["Authorization"] == f"Bearer {ANON_KEY}"


def test_upsert_failure_raises_supabase_error():
    backend = FakeBackend()
    backend.fail("POST", "/rest/v1/profiles", status=409)
    client = backend.client()

    with pytest.raises(SupabaseError) as exc:
        asyncio.run(client.upsert("profiles", {"id": "x"}, on_conflict="id"))

    assert exc.value.status_code == 409
    assert "table=profiles" in exc.value.detail


def test_file_storage_ignores_corrupt_cache(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")
    storage = FileSessionStorage(path)

    assert storage.load() is None

    session = make_session("6f1c1b7e-6a0e-4b7e-9d43-1f6c2b0f8a11", "parent@example.com")
    storage.save(session)
    assert FileSessionStorage(path).load() == session
    storage.clear()
    assert not path.exists()


def test_select_with_unreadable_body_raises_supabase_error():
    backend = FakeBackend()
    backend.respond_raw("GET", "/rest/v1/children", "<html>gateway</html>")
    client = backend.client()

    with pytest.raises(SupabaseError) as exc:
        asyncio.run(client.select("children", params={"select": "*"}))

    assert exc.value.action == "select"
    assert "<html>gateway</html>" in exc.value.detail
