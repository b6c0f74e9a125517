"""Demo: GitHub login in front of a FastAPI app.

Demonstrates:

- ``install_oauth_gate`` wiring sessions and the gate from ``GateSettings``
- ``get_current_user`` as a route dependency
- the two ways a client authenticates after login: the session cookie,
  or the ``Authorization`` header returned by the callback

Setup
-----
1. Create a GitHub OAuth app at https://github.com/settings/developers
2. Set its callback URL to ``http://localhost:8000/auth/github/callback``.
3. Export the credentials::

       # PowerShell
       $env:OAUTHGATE__PROVIDERS__GITHUB__CLIENT_ID = "your-client-id"
       $env:OAUTHGATE__PROVIDERS__GITHUB__CLIENT_SECRET = "your-client-secret"

       # Bash
       export OAUTHGATE__PROVIDERS__GITHUB__CLIENT_ID="your-client-id"
       export OAUTHGATE__PROVIDERS__GITHUB__CLIENT_SECRET="your-client-secret"

4. Run::

       python examples/oauthgate_demo_github.py

5. Open http://localhost:8000/ and follow the login link.
"""

from __future__ import annotations

import html
import os
import secrets
import sys

from fastapi import Depends, FastAPI
from fastapi.responses import HTMLResponse

from oauthgate import (
    AppUser,
    MemoryUserService,
    enable_debug,
    get_current_user,
    get_settings,
    install_oauth_gate,
)


# Browsers get a redirect after the callback instead of an empty 200.
settings = get_settings().model_copy(update={"callback_status": 302, "return_route": "/me"})
if "github" not in settings.providers:
    print(
        "Set OAUTHGATE__PROVIDERS__GITHUB__CLIENT_ID and "
        "OAUTHGATE__PROVIDERS__GITHUB__CLIENT_SECRET first.",
        file=sys.stderr,
    )
    sys.exit(1)

if os.environ.get("OAUTHGATE_DEBUG"):
    enable_debug()

app = FastAPI(title="oauthgate demo")

install_oauth_gate(
    app,
    settings,
    MemoryUserService(),
    session_secret=os.environ.get("DEMO_SESSION_SECRET", secrets.token_hex(32)),
)


@app.get("/", response_class=HTMLResponse)
def index() -> str:
    """Public landing page."""
    return """
    <h1>oauthgate demo</h1>
    <p><a href="/auth/github?return=/me">Sign in with GitHub</a></p>
    <p><a href="/me">Who am I?</a></p>
    """


@app.get("/me", response_class=HTMLResponse)
def me(user: AppUser = Depends(get_current_user)) -> str:
    """Show the user the gate attached to this request."""
    if user.is_guest:
        return '<p>Not signed in. <a href="/auth/github?return=/me">Sign in</a></p>'
    login = html.escape(str(user.profile.get("login", user.id)))
    return f"""
    <h1>Hello, {login}</h1>
    <p>User ID: <code>{html.escape(str(user.id))}</code></p>
    <p>API token: <code>{html.escape(user.token or "")}</code></p>
    <p>Try: <code>curl -H "Authorization: token {html.escape(user.token or "")}"
       http://localhost:8000/api/me</code></p>
    """


@app.get("/api/me")
def api_me(user: AppUser = Depends(get_current_user)) -> dict[str, object]:
    """JSON view of the current user."""
    return {"id": user.id, "role": user.role, "provider": user.provider}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="localhost", port=8000)
