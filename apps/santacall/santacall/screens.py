"""Root router: picks the screen and sequences the profile fetch around sign-in."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from .auth_manager import AuthManager
from .child_manager import ChildManager
from .observable import ObservableStore
from .profile_manager import ProfileManager
from .schemas import Profile, Screen

logger = logging.getLogger(__name__)


def resolve_screen(is_authenticated: bool, profile: Optional[Profile]) -> Screen:
    if not is_authenticated:
        return Screen.LOGIN
    if profile is None or not profile.is_complete:
        return Screen.PROFILE_SETUP
    return Screen.HOME


class ContentController:
    def __init__(
        self,
        auth: AuthManager,
        profiles: ProfileManager,
        children: Optional[ChildManager] = None,
    ) -> None:
        self.auth = auth
        self.profiles = profiles
        self.children = children
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def screen(self) -> Screen:
        return resolve_screen(self.auth.is_authenticated, self.profiles.profile)

    def start(self) -> None:
        """Watch the auth state; fetch the profile now if a session was restored."""
        self._unsubscribe = self.auth.subscribe(self._on_auth_change)
        if self.auth.is_authenticated:
            self._schedule_fetch()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_change(self, store: ObservableStore, changed: Dict[str, Any]) -> None:
        if "is_authenticated" not in changed:
            return
        if changed["is_authenticated"]:
            logger.info("Authenticated; loading profile")
            self._schedule_fetch()
        else:
            self.profiles.clear()
            if self.children is not None:
                self.children.clear()

    def _schedule_fetch(self) -> None:
        task = asyncio.get_running_loop().create_task(self.profiles.fetch_profile())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def settle(self) -> None:
        """Wait for router-triggered fetches so a render sees finished transitions."""
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending))
