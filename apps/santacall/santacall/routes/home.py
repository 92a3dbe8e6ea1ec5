from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..child_manager import ChildManager
from ..schemas import Child, Screen
from ..state import AppState, get_state, require_signed_in

router = APIRouter(prefix="/api/v1/home", tags=["home"])


class ChildChip(BaseModel):
    id: UUID
    first_name: str
    age: Optional[int] = None
    selected: bool = False


class HomeView(BaseModel):
    header: str
    greeting: str
    subtitle: str
    children: List[ChildChip]
    selected_child: Optional[Child] = None
    error_message: Optional[str] = None
    screen: Screen = Screen.HOME


class AddChildPayload(BaseModel):
    name: str
    age: int


class AddChildResult(BaseModel):
    sheet_open: bool
    error_message: Optional[str] = None
    home: HomeView


class SignOutResult(BaseModel):
    screen: Screen


def render_home(children: ChildManager, screen: Screen = Screen.HOME) -> HomeView:
    selected = children.selected_child
    if selected is not None:
        header = f"Selected: {selected.first_name}"
        greeting = f"Hello, {selected.first_name}!"
        subtitle = "Ready for Christmas?"
    else:
        header = "Select a child"
        greeting = "Welcome!"
        subtitle = "Select a child to continue"
    chips = [
        ChildChip(
            id=child.id,
            first_name=child.first_name,
            age=child.age,
            selected=selected is not None and child.id == selected.id,
        )
        for child in children.children
    ]
    return HomeView(
        header=header,
        greeting=greeting,
        subtitle=subtitle,
        children=chips,
        selected_child=selected,
        error_message=children.error_message,
        screen=screen,
    )


@router.get("", response_model=HomeView)
async def get_home(state: AppState = Depends(require_signed_in)) -> HomeView:
    """Render the home screen, loading the roster the way the screen does when it appears."""
    await state.children.fetch_children()
    return render_home(state.children)


@router.post("/children", response_model=AddChildResult)
async def add_child(payload: AddChildPayload, state: AppState = Depends(require_signed_in)) -> AddChildResult:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    await state.children.create_child(name, payload.age)
    error = state.children.error_message
    return AddChildResult(
        sheet_open=error is not None,
        error_message=error,
        home=render_home(state.children),
    )


@router.post("/children/{child_id}/select", response_model=HomeView)
async def select_child(child_id: UUID, state: AppState = Depends(require_signed_in)) -> HomeView:
    try:
        state.children.select_child(child_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Child not found") from exc
    return render_home(state.children)


@router.post("/sign-out", response_model=SignOutResult)
async def sign_out(state: AppState = Depends(get_state)) -> SignOutResult:
    await state.auth.sign_out()
    await state.controller.settle()
    return SignOutResult(screen=state.controller.screen)
