"""ASGI integration for the auth gate."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

from starlette.datastructures import MutableHeaders
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from .exceptions import InvalidReturnUrlError
from .gate import OAuthGate
from .log import get_logger
from .types import AppUser


if TYPE_CHECKING:
    from fastapi import FastAPI

    from .config import GateSettings
    from .token_store import TokenStore
    from .users import UserService


logger = logging.getLogger("oauthgate.gate")


class OAuthGateMiddleware:
    """ASGI middleware running every HTTP request through an ``OAuthGate``.

    Must sit inside Starlette's ``SessionMiddleware`` so ``scope["session"]``
    is populated. The resolved user is exposed as ``request.state.user``
    and ``request.user``.
    """

    def __init__(self, app: Any, gate: OAuthGate) -> None:
        """Initialize the middleware.

        Parameters
        ----------
        app : ASGI application
            The wrapped application.
        gate : OAuthGate
            The configured gate.
        """
        self.app = app
        self.gate = gate

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Any,
        send: Any,
    ) -> None:
        """Handle ASGI request."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        try:
            decision = await self.gate.process(request, scope.get("session"))
        except InvalidReturnUrlError as exc:
            logger.warning("Rejected login start: %s", exc)
            response = JSONResponse(
                status_code=400,
                content={
                    "error": "invalid_return_url",
                    "error_description": "The return parameter is not an allowed redirect target",
                },
            )
            await response(scope, receive, send)
            return

        if decision.response is not None:
            await decision.response(scope, receive, send)
            return

        if decision.user is not None:
            scope.setdefault("state", {})["user"] = decision.user
            scope["user"] = decision.user

        if not decision.headers:
            await self.app(scope, receive, send)
            return

        extra_headers = decision.headers

        async def send_with_headers(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in extra_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


def get_current_user(request: Request) -> AppUser:
    """FastAPI dependency returning the user attached by the gate.

    Requests on ignored routes carry no user and get a guest.
    """
    user = getattr(request.state, "user", None)
    return user if isinstance(user, AppUser) else AppUser()


def install_oauth_gate(
    app: FastAPI,
    settings: GateSettings,
    user_service: UserService,
    session_secret: str,
    token_store: TokenStore | None = None,
    https_only: bool = False,
) -> OAuthGate:
    """Add session and gate middleware to *app* in the right order.

    Parameters
    ----------
    app : FastAPI
        The application to protect.
    settings : GateSettings
        Gate configuration.
    user_service : UserService
        User resolver.
    session_secret : str
        Signing key for the session cookie.
    token_store : TokenStore, optional
        Overrides the backend named in the settings.
    https_only : bool
        Mark the session cookie ``Secure``.

    Returns
    -------
    OAuthGate
        The installed gate.
    """
    get_logger()
    logger.debug("Installing auth gate: %s", settings.redacted())
    gate = OAuthGate.from_settings(settings, user_service, token_store=token_store)
    # add_middleware wraps outermost-last: the session layer must run first.
    app.add_middleware(OAuthGateMiddleware, gate=gate)
    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie=f"{settings.session_bucket}_session",
        same_site="lax",
        https_only=https_only,
    )
    return gate
