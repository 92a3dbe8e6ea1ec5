from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .config import AppConfig
from .schemas import AuthChangeEvent, AuthResponse, AuthState, OAuthProvider, Session, User

logger = logging.getLogger(__name__)


class SupabaseError(Exception):
    def __init__(self, action: str, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.action = action
        self.status_code = status_code
        self.detail = detail


class AuthApiError(SupabaseError):
    """GoTrue rejected the request; ``detail`` holds the backend's own message."""


def _describe_response(resp: httpx.Response) -> str:
    try:
        return resp.text or "<empty response>"
    except Exception:
        return "<unable to read response>"


async def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    detail = _describe_response(resp)
    label = f" ({object_label})" if object_label else ""
    status = resp.status_code if resp.status_code >= 400 else 500
    raise SupabaseError(
        action,
        status,
        f"Supabase {action} failed{label}: status={resp.status_code}, body={detail}",
    )


def _json_rows(resp: httpx.Response, action: str, table: str) -> List[Dict[str, Any]]:
    if not resp.content:
        return []
    try:
        return resp.json()
    except ValueError as exc:
        raise SupabaseError(
            action,
            resp.status_code,
            f"Supabase {action} returned an unreadable body (table={table}): {_describe_response(resp)}",
        ) from exc


async def _raise_auth_error(resp: httpx.Response, action: str) -> None:
    try:
        data = resp.json() if resp.content else {}
    except ValueError:
        data = {}
    message = None
    if isinstance(data, dict):
        message = (
            data.get("error_description")
            or data.get("msg")
            or data.get("message")
            or data.get("error")
        )
    if not message:
        message = _describe_response(resp)
    raise AuthApiError(action, resp.status_code, str(message))


class SessionStorage:
    """Where the auth client keeps the current session between launches."""

    def load(self) -> Optional[Session]:
        raise NotImplementedError

    def save(self, session: Session) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemorySessionStorage(SessionStorage):
    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session

    def load(self) -> Optional[Session]:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStorage(SessionStorage):
    """JSON file cache for the session; an unreadable file counts as no session."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            return Session.model_validate(json.loads(self.path.read_text()))
        except (ValueError, ValidationError):
            logger.warning("Discarding unreadable session cache", extra={"path": str(self.path)})
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json())

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class AuthStateSubscription:
    """Async iterator over auth-state changes, registered as soon as it is created."""

    def __init__(self, owner: "AuthClient") -> None:
        self._owner = owner
        self._queue: "asyncio.Queue[Optional[AuthState]]" = asyncio.Queue()
        self.closed = False

    def push(self, state: AuthState) -> None:
        if not self.closed:
            self._queue.put_nowait(state)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._owner._unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> "AuthStateSubscription":
        return self

    async def __anext__(self) -> AuthState:
        state = await self._queue.get()
        if state is None:
            raise StopAsyncIteration
        return state


@dataclass
class AuthClient:
    base_url: str
    anon_key: str
    storage: SessionStorage = field(default_factory=MemorySessionStorage)
    timeout: float = 15.0
    emit_local_session_as_initial_session: bool = True
    transport: Optional[httpx.AsyncBaseTransport] = None
    _session: Optional[Session] = field(default=None, init=False, repr=False)
    _loaded: bool = field(default=False, init=False, repr=False)
    _subscriptions: List[AuthStateSubscription] = field(default_factory=list, init=False, repr=False)

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _post(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/auth/v1/{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(
                url,
                params=params,
                json=json,
                headers=self._headers(access_token),
            )

    @property
    def current_user(self) -> Optional[User]:
        return self._session.user if self._session else None

    async def get_session(self) -> Optional[Session]:
        """Return the active session, restoring it from storage and refreshing it if expired."""
        if not self._loaded:
            self._session = self.storage.load()
            self._loaded = True
        session = self._session
        if session is None or not session.is_expired():
            return session
        if not session.refresh_token:
            self._remove_session()
            return None
        try:
            return await self.refresh_session(session.refresh_token)
        except (SupabaseError, httpx.HTTPError) as exc:
            logger.warning("Session refresh failed; signing out locally", extra={"error": str(exc)})
            self._remove_session()
            return None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        resp = await self._post(
            "token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code >= 400:
            await _raise_auth_error(resp, "sign in")
        session = Session.model_validate(resp.json())
        self._save_session(session, AuthChangeEvent.SIGNED_IN)
        return session

    async def sign_up(self, email: str, password: str) -> AuthResponse:
        resp = await self._post("signup", json={"email": email, "password": password})
        if resp.status_code >= 400:
            await _raise_auth_error(resp, "sign up")
        data = resp.json()
        if data.get("access_token"):
            session = Session.model_validate(data)
            self._save_session(session, AuthChangeEvent.SIGNED_IN)
            return AuthResponse(user=session.user, session=session)
        # Confirmation required: GoTrue returns the bare user (or a user/session pair).
        user_data = data.get("user") or data
        return AuthResponse(user=User.model_validate(user_data), session=None)

    async def sign_in_with_id_token(
        self,
        provider: OAuthProvider,
        id_token: str,
        *,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> Session:
        payload: Dict[str, Any] = {"provider": provider.value, "id_token": id_token}
        if nonce is not None:
            payload["nonce"] = nonce
        if access_token is not None:
            payload["access_token"] = access_token
        resp = await self._post("token", params={"grant_type": "id_token"}, json=payload)
        if resp.status_code >= 400:
            await _raise_auth_error(resp, f"{provider.value} sign in")
        session = Session.model_validate(resp.json())
        self._save_session(session, AuthChangeEvent.SIGNED_IN)
        return session

    async def refresh_session(self, refresh_token: Optional[str] = None) -> Session:
        token = refresh_token or (self._session.refresh_token if self._session else None)
        if not token:
            raise AuthApiError("refresh", 401, "No refresh token available.")
        resp = await self._post(
            "token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": token},
        )
        if resp.status_code >= 400:
            await _raise_auth_error(resp, "refresh")
        session = Session.model_validate(resp.json())
        self._save_session(session, AuthChangeEvent.TOKEN_REFRESHED)
        return session

    async def sign_out(self) -> None:
        """Revoke the session server side; the local session is dropped even if that fails."""
        session = self._session
        try:
            if session is not None:
                resp = await self._post("logout", access_token=session.access_token)
                if resp.status_code >= 400:
                    await _raise_supabase_error(resp, "sign out")
        finally:
            self._remove_session()

    def on_auth_state_change(self) -> AuthStateSubscription:
        subscription = AuthStateSubscription(self)
        self._subscriptions.append(subscription)
        if self.emit_local_session_as_initial_session:
            session = self._session if self._loaded else self.storage.load()
            subscription.push(AuthState(event=AuthChangeEvent.INITIAL_SESSION, session=session))
        return subscription

    def _unsubscribe(self, subscription: AuthStateSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _save_session(self, session: Session, event: AuthChangeEvent) -> None:
        self._session = session
        self._loaded = True
        self.storage.save(session)
        self._notify(event, session)

    def _remove_session(self) -> None:
        had_session = self._session is not None
        self._session = None
        self._loaded = True
        self.storage.clear()
        if had_session:
            self._notify(AuthChangeEvent.SIGNED_OUT, None)

    def _notify(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        state = AuthState(event=event, session=session)
        for subscription in list(self._subscriptions):
            subscription.push(state)


@dataclass
class SupabaseClient:
    base_url: str
    anon_key: str
    auth: AuthClient
    timeout: float = 15.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        session = await self.auth.get_session()
        access_token = session.access_token if session else self.anon_key
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        request_headers = await self._headers(headers)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
            )

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, params=params)
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "select", object_label=f"table={table}")
        return _json_rows(resp, "select", table)

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "insert", object_label=f"table={table}")
        return _json_rows(resp, "insert", table)

    async def upsert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        on_conflict: str,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=payload,
            headers={
                "Prefer": "resolution=merge-duplicates,return=representation",
            },
        )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "upsert", object_label=f"table={table}")
        return _json_rows(resp, "upsert", table)


def create_client(
    config: AppConfig,
    *,
    storage: Optional[SessionStorage] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SupabaseClient:
    if storage is None:
        session_path = config.resolved_session_path
        storage = FileSessionStorage(session_path) if session_path else MemorySessionStorage()
    auth = AuthClient(
        base_url=config.base_url,
        anon_key=config.supabase_anon_key,
        storage=storage,
        timeout=config.request_timeout,
        emit_local_session_as_initial_session=config.emit_local_session_as_initial_session,
        transport=transport,
    )
    return SupabaseClient(
        base_url=config.base_url,
        anon_key=config.supabase_anon_key,
        auth=auth,
        timeout=config.request_timeout,
        transport=transport,
    )
