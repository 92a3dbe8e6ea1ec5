from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .errors import DataFetchError, DataWriteError, describe_error
from .observable import MainDispatcher, ObservableStore
from .schemas import Profile, UpsertProfile
from .supabase import SupabaseClient, SupabaseError

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id,email,first_name,last_name"


class ProfileManager(ObservableStore):
    def __init__(self, dispatcher: Optional[MainDispatcher] = None) -> None:
        super().__init__(dispatcher)
        self.profile: Optional[Profile] = None
        self.is_loading: bool = False
        self.error_message: Optional[str] = None
        self._supabase: Optional[SupabaseClient] = None

    def configure(self, supabase: SupabaseClient) -> None:
        self._supabase = supabase

    def clear(self) -> None:
        self.publish(profile=None)

    async def fetch_profile(self) -> None:
        supabase = self._supabase
        if supabase is None:
            return
        user = supabase.auth.current_user
        if user is None:
            return

        self.publish(is_loading=True)
        try:
            rows = await supabase.select(
                "profiles",
                params={"select": PROFILE_COLUMNS, "id": f"eq.{user.id}", "limit": 1},
            )
            profile = Profile.model_validate(rows[0]) if rows else None
        except (SupabaseError, httpx.HTTPError, ValidationError) as exc:
            error = DataFetchError(f"Failed to fetch profile: {describe_error(exc)}")
            logger.error(error.message, extra={"user_id": str(user.id)})
            self.publish(is_loading=False)
            return
        self.publish(profile=profile, is_loading=False)

    async def update_profile(self, first_name: str, last_name: str) -> None:
        supabase = self._supabase
        if supabase is None:
            return
        user = supabase.auth.current_user
        if user is None:
            return

        self.publish(is_loading=True, error_message=None)
        payload = UpsertProfile(
            id=user.id,
            email=user.email or "",
            first_name=first_name,
            last_name=last_name,
        )
        try:
            await supabase.upsert("profiles", payload.model_dump(mode="json"), on_conflict="id")
        except (SupabaseError, httpx.HTTPError) as exc:
            error = DataWriteError(f"Failed to update profile: {describe_error(exc)}")
            logger.error(error.message, extra={"user_id": str(user.id)})
            self.publish(is_loading=False, error_message=error.message)
            return

        await self.fetch_profile()
        self.publish(is_loading=False)
