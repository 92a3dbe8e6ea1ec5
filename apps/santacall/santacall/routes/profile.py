from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..schemas import Screen
from ..state import AppState, require_signed_in

router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


class ProfileSetupView(BaseModel):
    title: str = "Welcome to SantaCall!"
    prompt: str = "Please tell us your name to get started."
    first_name: str = ""
    last_name: str = ""
    error_message: Optional[str] = None
    is_loading: bool = False
    can_submit: bool = True
    screen: Screen = Screen.PROFILE_SETUP


class UpdateProfilePayload(BaseModel):
    first_name: str
    last_name: str = ""


async def build_profile_setup_view(state: AppState) -> ProfileSetupView:
    await state.controller.settle()
    profiles = state.profiles
    profile = profiles.profile
    return ProfileSetupView(
        first_name=(profile.first_name or "") if profile else "",
        last_name=(profile.last_name or "") if profile else "",
        error_message=profiles.error_message,
        is_loading=profiles.is_loading,
        can_submit=not profiles.is_loading,
        screen=state.controller.screen,
    )


@router.get("", response_model=ProfileSetupView)
async def get_profile_setup(state: AppState = Depends(require_signed_in)) -> ProfileSetupView:
    return await build_profile_setup_view(state)


@router.post("", response_model=ProfileSetupView)
async def submit_profile(
    payload: UpdateProfilePayload, state: AppState = Depends(require_signed_in)
) -> ProfileSetupView:
    first_name = payload.first_name.strip()
    if not first_name:
        raise HTTPException(status_code=400, detail="first_name is required")
    await state.controller.settle()
    if state.profiles.is_loading:
        raise HTTPException(status_code=409, detail="Profile update already in progress")
    await state.profiles.update_profile(first_name, payload.last_name.strip())
    return await build_profile_setup_view(state)
