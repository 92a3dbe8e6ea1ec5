"""Child roster store: the signed-in user's children and the one picked on the home screen."""
from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

import httpx
from pydantic import ValidationError

from .errors import DataFetchError, DataWriteError, describe_error
from .observable import MainDispatcher, ObservableStore
from .schemas import Child, NewChild
from .supabase import SupabaseClient, SupabaseError

logger = logging.getLogger(__name__)

CHILD_COLUMNS = "id,first_name,age"


class ChildManager(ObservableStore):
    def __init__(self, dispatcher: Optional[MainDispatcher] = None) -> None:
        super().__init__(dispatcher)
        self.children: List[Child] = []
        self.selected_child_id: Optional[UUID] = None
        self.is_loading: bool = False
        self.error_message: Optional[str] = None
        self._supabase: Optional[SupabaseClient] = None

    def configure(self, supabase: SupabaseClient) -> None:
        self._supabase = supabase

    def clear(self) -> None:
        self.publish(children=[], selected_child_id=None, error_message=None)

    @property
    def selected_child(self) -> Optional[Child]:
        """The selection, resolved against the roster; stale selections read as None."""
        if self.selected_child_id is None:
            return None
        return next((child for child in self.children if child.id == self.selected_child_id), None)

    def select_child(self, child_id: UUID) -> Child:
        for child in self.children:
            if child.id == child_id:
                self.publish(selected_child_id=child.id)
                return child
        raise KeyError(f"Unknown child {child_id}")

    async def fetch_children(self) -> None:
        supabase = self._supabase
        if supabase is None:
            return

        self.publish(is_loading=True, error_message=None)
        try:
            # Row-level security limits the rows to the signed-in user.
            rows = await supabase.select("children", params={"select": CHILD_COLUMNS})
            children = [Child.model_validate(row) for row in rows]
        except (SupabaseError, httpx.HTTPError, ValidationError) as exc:
            error = DataFetchError(f"Failed to fetch children: {describe_error(exc)}")
            logger.error(error.message)
            self.publish(is_loading=False, error_message=error.message)
            return

        changes = {"children": children, "is_loading": False}
        if children and not any(child.id == self.selected_child_id for child in children):
            changes["selected_child_id"] = children[0].id
        self.publish(**changes)

    async def create_child(self, name: str, age: int) -> None:
        supabase = self._supabase
        if supabase is None:
            logger.warning("create_child called before configure")
            return
        user = supabase.auth.current_user
        if user is None:
            logger.warning("create_child called without an authenticated user")
            self.publish(error_message="User not authenticated")
            return

        logger.info("Creating child", extra={"user_id": str(user.id), "first_name": name})
        self.publish(error_message=None)
        payload = NewChild(user_id=user.id, first_name=name, age=age)
        try:
            rows = await supabase.insert(
                "children",
                payload.model_dump(mode="json"),
                params={"select": CHILD_COLUMNS},
            )
        except (SupabaseError, httpx.HTTPError) as exc:
            error = DataWriteError(f"Failed to create child: {describe_error(exc)}")
            logger.error(error.message, extra={"user_id": str(user.id)})
            self.publish(error_message=error.message)
            return

        if rows:
            logger.info("Child created", extra={"child_id": rows[0].get("id")})
        await self.fetch_children()
