import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..errors import AuthenticationError
from ..schemas import EmailPasswordPayload, Screen
from ..state import AppState, get_state

router = APIRouter(prefix="/api/v1/login", tags=["login"])
logger = logging.getLogger(__name__)

APP_TITLE = "SantaCall"
APP_TAGLINE = "Talk to Santa anytime!"
CONFIRMATION_NOTICE = "Check your email to confirm your account, then sign in."


class LoginView(BaseModel):
    title: str = APP_TITLE
    tagline: str = APP_TAGLINE
    error_message: Optional[str] = None
    notice: Optional[str] = None
    screen: Screen = Screen.LOGIN


class AppleSignInPayload(BaseModel):
    id_token: str
    nonce: str


class GoogleSignInPayload(BaseModel):
    id_token: str
    access_token: str


async def _render(state: AppState, **fields) -> LoginView:
    await state.controller.settle()
    return LoginView(screen=state.controller.screen, **fields)


@router.post("/sign-in", response_model=LoginView)
async def sign_in(payload: EmailPasswordPayload, state: AppState = Depends(get_state)) -> LoginView:
    try:
        await state.auth.sign_in(payload.email, payload.password)
    except AuthenticationError as exc:
        logger.info("Login screen sign in failed", extra={"error": exc.message})
        return await _render(state, error_message=f"Sign In Failed: {exc.message}")
    return await _render(state)


@router.post("/sign-up", response_model=LoginView)
async def sign_up(payload: EmailPasswordPayload, state: AppState = Depends(get_state)) -> LoginView:
    try:
        confirmation_pending = await state.auth.sign_up(payload.email, payload.password)
    except AuthenticationError as exc:
        logger.info("Login screen sign up failed", extra={"error": exc.message})
        return await _render(state, error_message=f"Sign Up Failed: {exc.message}")
    return await _render(state, notice=CONFIRMATION_NOTICE if confirmation_pending else None)


@router.post("/apple", response_model=LoginView)
async def sign_in_with_apple(
    payload: AppleSignInPayload, state: AppState = Depends(get_state)
) -> LoginView:
    try:
        await state.auth.sign_in_with_apple(payload.id_token, payload.nonce)
    except AuthenticationError as exc:
        return await _render(state, error_message=f"Sign In Failed: {exc.message}")
    return await _render(state)


@router.post("/google", response_model=LoginView)
async def sign_in_with_google(
    payload: GoogleSignInPayload, state: AppState = Depends(get_state)
) -> LoginView:
    try:
        await state.auth.sign_in_with_google(payload.id_token, payload.access_token)
    except AuthenticationError as exc:
        return await _render(state, error_message=f"Sign In Failed: {exc.message}")
    return await _render(state)
