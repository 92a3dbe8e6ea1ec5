from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from .auth_manager import AuthManager
from .child_manager import ChildManager
from .observable import MainDispatcher
from .profile_manager import ProfileManager
from .screens import ContentController
from .supabase import SupabaseClient


@dataclass
class AppState:
    supabase: SupabaseClient
    dispatcher: MainDispatcher
    auth: AuthManager
    profiles: ProfileManager
    children: ChildManager
    controller: ContentController

    @classmethod
    def build(cls, supabase: SupabaseClient, dispatcher: Optional[MainDispatcher] = None) -> "AppState":
        dispatcher = dispatcher or MainDispatcher()
        auth = AuthManager(dispatcher)
        profiles = ProfileManager(dispatcher)
        children = ChildManager(dispatcher)
        return cls(
            supabase=supabase,
            dispatcher=dispatcher,
            auth=auth,
            profiles=profiles,
            children=children,
            controller=ContentController(auth, profiles, children),
        )

    async def start(self) -> None:
        self.dispatcher.bind(asyncio.get_running_loop())
        self.profiles.configure(self.supabase)
        self.children.configure(self.supabase)
        await self.auth.configure(self.supabase)
        self.controller.start()

    async def stop(self) -> None:
        self.controller.stop()
        await self.auth.close()


def get_state(request: Request) -> AppState:
    return request.app.state.santacall


def require_signed_in(request: Request) -> AppState:
    state = get_state(request)
    if not state.auth.is_authenticated:
        raise HTTPException(status_code=401, detail="Not signed in.")
    return state
