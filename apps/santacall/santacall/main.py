from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from .config import load_config
from .routes import home as home_routes
from .routes import login as login_routes
from .routes import profile as profile_routes
from .routes.home import HomeView, render_home
from .routes.login import LoginView
from .routes.profile import ProfileSetupView, build_profile_setup_view
from .schemas import Screen
from .state import AppState, get_state
from .supabase import SupabaseClient, create_client

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], SupabaseClient]


class ScreenResponse(BaseModel):
    screen: Screen
    login: Optional[LoginView] = None
    profile_setup: Optional[ProfileSetupView] = None
    home: Optional[HomeView] = None


def _default_client() -> SupabaseClient:
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    return create_client(config)


def create_app(client_factory: Optional[ClientFactory] = None) -> FastAPI:
    factory = client_factory or _default_client

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state = AppState.build(factory())
        await state.start()
        app.state.santacall = state
        logger.info("SantaCall ready", extra={"authenticated": state.auth.is_authenticated})
        try:
            yield
        finally:
            await state.stop()

    app = FastAPI(
        title="SantaCall",
        version="0.1.0",
        description="Sign in, set up a profile and pick a child to talk to Santa",
        lifespan=lifespan,
    )
    app.include_router(login_routes.router)
    app.include_router(profile_routes.router)
    app.include_router(home_routes.router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/v1/screen", response_model=ScreenResponse)
    async def current_screen(state: AppState = Depends(get_state)) -> ScreenResponse:
        await state.controller.settle()
        screen = state.controller.screen
        if screen == Screen.LOGIN:
            return ScreenResponse(screen=screen, login=LoginView())
        if screen == Screen.PROFILE_SETUP:
            return ScreenResponse(screen=screen, profile_setup=await build_profile_setup_view(state))
        await state.children.fetch_children()
        return ScreenResponse(screen=screen, home=render_home(state.children))

    return app


app = create_app()
