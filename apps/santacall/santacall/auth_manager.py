"""Session state holder: mirrors the backend's auth state for the screens."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .errors import AuthenticationError, describe_error
from .observable import MainDispatcher, ObservableStore
from .schemas import AuthChangeEvent, AuthState, OAuthProvider, Session
from .supabase import AuthStateSubscription, SupabaseClient, SupabaseError

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (SupabaseError, httpx.HTTPError)


class AuthManager(ObservableStore):
    def __init__(self, dispatcher: Optional[MainDispatcher] = None) -> None:
        super().__init__(dispatcher)
        self.session: Optional[Session] = None
        self.is_authenticated: bool = False
        self.supabase: Optional[SupabaseClient] = None
        self._subscription: Optional[AuthStateSubscription] = None
        self._listener: Optional[asyncio.Task] = None

    async def configure(self, supabase: SupabaseClient) -> None:
        """Restore any persisted session, then listen for auth changes for the process lifetime."""
        self.supabase = supabase
        try:
            session = await supabase.auth.get_session()
        except _BACKEND_ERRORS as exc:
            logger.warning("Could not restore session", extra={"error": describe_error(exc)})
            session = None
        self.publish(session=session, is_authenticated=session is not None)

        self._subscription = supabase.auth.on_auth_state_change()
        self._listener = asyncio.create_task(self._listen(self._subscription))

    async def _listen(self, subscription: AuthStateSubscription) -> None:
        async for state in subscription:
            self._handle_state(state)

    def _handle_state(self, state: AuthState) -> None:
        if state.event in (AuthChangeEvent.SIGNED_IN, AuthChangeEvent.TOKEN_REFRESHED):
            self.publish(session=state.session, is_authenticated=True)
        elif state.event == AuthChangeEvent.SIGNED_OUT:
            self.publish(session=None, is_authenticated=False)

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def sign_in(self, email: str, password: str) -> None:
        if self.supabase is None:
            logger.warning("sign_in called before configure")
            return
        logger.info("Attempting to sign in", extra={"email": email})
        try:
            await self.supabase.auth.sign_in_with_password(email, password)
        except _BACKEND_ERRORS as exc:
            logger.info("Sign in error", extra={"email": email, "error": describe_error(exc)})
            raise AuthenticationError(describe_error(exc)) from exc
        logger.info("Sign in successful", extra={"email": email})

    async def sign_up(self, email: str, password: str) -> bool:
        """Create an account. Returns True when email confirmation is still pending."""
        if self.supabase is None:
            logger.warning("sign_up called before configure")
            return False
        logger.info("Attempting to sign up", extra={"email": email})
        try:
            response = await self.supabase.auth.sign_up(email, password)
        except _BACKEND_ERRORS as exc:
            logger.info("Sign up error", extra={"email": email, "error": describe_error(exc)})
            raise AuthenticationError(describe_error(exc)) from exc
        logger.info("Sign up successful", extra={"user_id": str(response.user.id)})
        if response.session is None:
            logger.warning(
                "Session is missing after sign up; email confirmation might be required",
                extra={"user_id": str(response.user.id)},
            )
            return True
        return False

    async def sign_in_with_apple(self, id_token: str, nonce: str) -> None:
        await self._sign_in_with_id_token(OAuthProvider.APPLE, id_token, nonce=nonce)

    async def sign_in_with_google(self, id_token: str, access_token: str) -> None:
        await self._sign_in_with_id_token(OAuthProvider.GOOGLE, id_token, access_token=access_token)

    async def _sign_in_with_id_token(
        self,
        provider: OAuthProvider,
        id_token: str,
        *,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> None:
        if self.supabase is None:
            logger.warning("federated sign in called before configure", extra={"provider": provider.value})
            return
        try:
            await self.supabase.auth.sign_in_with_id_token(
                provider,
                id_token,
                nonce=nonce,
                access_token=access_token,
            )
        except _BACKEND_ERRORS as exc:
            logger.info(
                "Federated sign in error",
                extra={"provider": provider.value, "error": describe_error(exc)},
            )
            raise AuthenticationError(describe_error(exc)) from exc
        # Session update arrives through the auth-state listener.

    async def sign_out(self) -> None:
        try:
            if self.supabase is not None:
                await self.supabase.auth.sign_out()
        except _BACKEND_ERRORS as exc:
            logger.warning("Sign out failed on the backend", extra={"error": describe_error(exc)})
        finally:
            self.publish(session=None, is_authenticated=False)
