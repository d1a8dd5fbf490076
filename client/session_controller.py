"""
Client-side session controller.

Keeps the identity of the signed-in user for a long-running client (a BFF,
a CLI, a test harness) talking to the auth API over an HttpClient whose
cookie jar carries the http-only session cookies.

While an identity is known, a background task calls /refresh every
``refresh_interval`` seconds (well under the access-token lifetime). A failed
refresh drops the identity and stops the task. Refresh calls are serialized
by a lock, so the cookie pair left in the jar is always the one from the
latest successful refresh.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

import httpx

from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

API_PREFIX = "/api/auth"
DEFAULT_REFRESH_INTERVAL = 600.0


class SessionRequestError(Exception):
    """An auth endpoint answered with an error status."""

    def __init__(self, status_code: int, code: Optional[str], message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    @classmethod
    def from_response(cls, response: httpx.Response) -> "SessionRequestError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        return cls(
            response.status_code,
            body.get("code"),
            body.get("error") or response.reason_phrase,
        )


def _user_from(response: httpx.Response) -> Optional[dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    user = body.get("user") if isinstance(body, dict) else None
    return user if isinstance(user, dict) else None

class SessionController:
    def __init__(
        self,
        http_client: HttpClient,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        on_unauthenticated: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._http = http_client
        self._refresh_interval = refresh_interval
        self._on_unauthenticated = on_unauthenticated
        self._identity: Optional[dict[str, Any]] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def identity(self) -> Optional[dict[str, Any]]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def refresh_running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # ── Public API ───────────────────────────────────────────────────────────

    async def load(self) -> Optional[dict[str, Any]]:
        """Ask the server who the ambient cookie belongs to."""
        try:
            response = await self._http.get(f"{API_PREFIX}/me")
        except httpx.HTTPError as e:
            log.warning("session_load_failed", error=str(e))
            await self._clear()
            return None

        if response.status_code != 200:
            await self._clear()
            return None

        user = _user_from(response)
        if user is None:
            log.warning("session_load_failed", error="malformed /me response")
            await self._clear()
            return None

        self._set_identity(user)
        return self._identity

    async def login(
        self, email: str, password: str, *, remember_me: bool = False
    ) -> dict[str, Any]:
        """Sign in; returns the login body (user, tokens, redirectTo).

        Raises SessionRequestError; ``code == "email_not_verified"`` means the
        caller should route to the verification step.
        """
        response = await self._http.post(
            f"{API_PREFIX}/login",
            json={"email": email, "password": password, "rememberMe": remember_me},
        )
        if response.status_code != 200:
            raise SessionRequestError.from_response(response)

        body = response.json()
        self._set_identity(body["user"])
        log.info("client_login", user_id=body["user"].get("id"))
        return body

    async def register(
        self,
        *,
        email: str,
        password: str,
        role: str,
        first_name: str,
        last_name: str,
    ) -> dict[str, Any]:
        """Create an account. The account is unverified, so no session starts."""
        response = await self._http.post(
            f"{API_PREFIX}/register",
            json={
                "email": email,
                "password": password,
                "role": role,
                "firstName": first_name,
                "lastName": last_name,
            },
        )
        if response.status_code != 201:
            raise SessionRequestError.from_response(response)
        return response.json()

    async def logout(self) -> None:
        """Sign out; local state is cleared even if the request fails."""
        try:
            await self._http.post(f"{API_PREFIX}/logout")
        except httpx.HTTPError as e:
            log.warning("client_logout_request_failed", error=str(e))
        finally:
            self._http.cookies.clear()
            await self._clear(notify=False)

    async def refresh(self) -> bool:
        """Rotate the cookie pair. On failure the session is dropped."""
        async with self._refresh_lock:
            try:
                response = await self._http.post(f"{API_PREFIX}/refresh")
                ok = response.status_code == 200
            except httpx.HTTPError as e:
                log.warning("client_refresh_request_failed", error=str(e))
                ok = False

        if not ok:
            log.info("client_session_expired")
            await self._clear()
        return ok

    async def close(self) -> None:
        await self._stop_refresh()

    # ── Internals ────────────────────────────────────────────────────────────

    def _set_identity(self, user: dict[str, Any]) -> None:
        self._identity = user
        if not self.refresh_running:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            if not await self.refresh():
                return

    async def _stop_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _clear(self, notify: bool = True) -> None:
        was_authenticated = self._identity is not None
        self._identity = None
        await self._stop_refresh()
        if notify and was_authenticated and self._on_unauthenticated is not None:
            result = self._on_unauthenticated()
            if inspect.isawaitable(result):
                await result
