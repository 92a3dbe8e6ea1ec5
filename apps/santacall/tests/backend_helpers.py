from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import httpx

from santacall.schemas import Session, User
from santacall.supabase import AuthClient, MemorySessionStorage, SessionStorage, SupabaseClient

BASE_URL = "http://localhost:54321"
ANON_KEY = "test-anon-key"


def make_session(user_id: str, email: Optional[str], *, expires_at: Optional[int] = None) -> Session:
    return Session(
        access_token=f"token-{user_id}",
        refresh_token=f"refresh-{user_id}",
        expires_in=3600,
        expires_at=expires_at if expires_at is not None else int(time.time()) + 3600,
        user=User(id=user_id, email=email),
    )


class FakeBackend:
    """In-memory stand-in for a Supabase project, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.children: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self.raw_bodies: Dict[Tuple[str, str], str] = {}
        self.revoked_refresh_tokens: set = set()
        self.require_confirmation = False
        self.transport = httpx.MockTransport(self.handle)

    def add_user(self, email: str, password: str, *, confirmed: bool = True) -> str:
        user_id = str(uuid4())
        self.users[email] = {"id": user_id, "email": email, "password": password, "confirmed": confirmed}
        return user_id

    def fail(self, method: str, path: str, status: int = 500) -> None:
        self.failures[(method, path)] = status

    def respond_raw(self, method: str, path: str, body: str) -> None:
        self.raw_bodies[(method, path)] = body

    def client(self, storage: Optional[SessionStorage] = None) -> SupabaseClient:
        auth = AuthClient(
            base_url=BASE_URL,
            anon_key=ANON_KEY,
            storage=storage or MemorySessionStorage(),
            transport=self.transport,
        )
        return SupabaseClient(base_url=BASE_URL, anon_key=ANON_KEY, auth=auth, transport=self.transport)

    def requests_to(self, method: str, path: str) -> List[httpx.Request]:
        return [req for req in self.requests if req.method == method and req.url.path == path]

    def _session_payload(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "access_token": f"token-{user['id']}",
            "refresh_token": f"refresh-{user['id']}",
            "token_type": "bearer",
            "expires_in": 3600,
            "expires_at": int(time.time()) + 3600,
            "user": {"id": user["id"], "email": user["email"]},
        }

    def _user_for_token(self, request: httpx.Request) -> Optional[Dict[str, Any]]:
        header = request.headers.get("Authorization", "")
        token = header.split(" ", 1)[1] if " " in header else ""
        for user in self.users.values():
            if token == f"token-{user['id']}":
                return user
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        status = self.failures.get((request.method, path))
        if status is not None:
            return httpx.Response(status, json={"message": "backend unavailable"})
        raw = self.raw_bodies.get((request.method, path))
        if raw is not None:
            return httpx.Response(200, text=raw)
        body = json.loads(request.content) if request.content else {}
        if path == "/auth/v1/token":
            return self._token(request.url.params.get("grant_type"), body)
        if path == "/auth/v1/signup":
            return self._signup(body)
        if path == "/auth/v1/logout":
            return httpx.Response(204)
        if path == "/rest/v1/profiles":
            return self._profiles(request, body)
        if path == "/rest/v1/children":
            return self._children(request, body)
        return httpx.Response(404, json={"message": f"no route for {path}"})

    def _token(self, grant_type: Optional[str], body: Dict[str, Any]) -> httpx.Response:
        if grant_type == "password":
            user = self.users.get(body.get("email"))
            if user is None or user["password"] != body.get("password"):
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
                )
            if not user["confirmed"]:
                return httpx.Response(400, json={"error_description": "Email not confirmed"})
            return httpx.Response(200, json=self._session_payload(user))
        if grant_type == "id_token":
            if body.get("id_token") == "bad-token":
                return httpx.Response(400, json={"msg": "Bad ID token"})
            email = f"{body['provider']}-{body['id_token']}@example.com"
            if email not in self.users:
                self.add_user(email, "")
            return httpx.Response(200, json=self._session_payload(self.users[email]))
        if grant_type == "refresh_token":
            token = body.get("refresh_token")
            if token in self.revoked_refresh_tokens:
                return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})
            for user in self.users.values():
                if token == f"refresh-{user['id']}":
                    return httpx.Response(200, json=self._session_payload(user))
            return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})
        return httpx.Response(400, json={"error_description": "unsupported grant"})

    def _signup(self, body: Dict[str, Any]) -> httpx.Response:
        email = body["email"]
        if email in self.users:
            return httpx.Response(422, json={"msg": "User already registered"})
        self.add_user(email, body["password"], confirmed=not self.require_confirmation)
        user = self.users[email]
        if self.require_confirmation:
            return httpx.Response(200, json={"id": user["id"], "email": email, "confirmation_sent_at": "now"})
        return httpx.Response(200, json=self._session_payload(user))

    def _profiles(self, request: httpx.Request, body: Dict[str, Any]) -> httpx.Response:
        if request.method == "GET":
            wanted = request.url.params.get("id", "")
            rows = [row for row in self.profiles.values() if f"eq.{row['id']}" == wanted]
            return httpx.Response(200, json=rows[:1])
        row = {**self.profiles.get(body["id"], {}), **body}
        self.profiles[body["id"]] = row
        return httpx.Response(201, json=[row])

    def _children(self, request: httpx.Request, body: Dict[str, Any]) -> httpx.Response:
        user = self._user_for_token(request)
        if request.method == "GET":
            rows = [
                {"id": row["id"], "first_name": row["first_name"], "age": row["age"]}
                for row in self.children
                if user is not None and row["user_id"] == user["id"]
            ]
            return httpx.Response(200, json=rows)
        if user is None or body.get("user_id") != user["id"]:
            return httpx.Response(403, json={"message": "new row violates row-level security policy"})
        row = {"id": str(uuid4()), **body}
        self.children.append(row)
        return httpx.Response(201, json=[{"id": row["id"], "first_name": row["first_name"], "age": row["age"]}])


async def settle(rounds: int = 5) -> None:
    """Let the auth listener and scheduled fetches run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
