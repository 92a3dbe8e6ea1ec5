"""Pydantic schemas shared across the client."""
from __future__ import annotations

import time
from enum import Enum
from typing import Optional
from uuid import UUID

import jwt
from pydantic import BaseModel, Field


class User(BaseModel):
    id: UUID
    email: Optional[str] = None


class Session(BaseModel):
    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: User

    def expiry(self) -> Optional[int]:
        """Return the expiry as a unix timestamp, reading the token's exp claim when needed."""
        if self.expires_at is not None:
            return self.expires_at
        try:
            claims = jwt.decode(self.access_token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return None
        exp = claims.get("exp")
        return int(exp) if exp is not None else None

    def is_expired(self, *, leeway: int = 10) -> bool:
        expires_at = self.expiry()
        if expires_at is None:
            return False
        return expires_at - leeway <= int(time.time())


class AuthResponse(BaseModel):
    user: User
    session: Optional[Session] = None


class AuthChangeEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class AuthState(BaseModel):
    event: AuthChangeEvent
    session: Optional[Session] = None


class OAuthProvider(str, Enum):
    APPLE = "apple"
    GOOGLE = "google"


class Profile(BaseModel):
    id: UUID
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.first_name)


class Child(BaseModel):
    id: UUID
    first_name: str
    age: Optional[int] = None


class NewChild(BaseModel):
    """Insert payload for the children table; user_id is required by row-level security."""

    user_id: UUID
    first_name: str
    age: int


class UpsertProfile(BaseModel):
    id: UUID
    email: str = ""
    first_name: str
    last_name: str


class Screen(str, Enum):
    LOGIN = "login"
    PROFILE_SETUP = "profile_setup"
    HOME = "home"


class EmailPasswordPayload(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
