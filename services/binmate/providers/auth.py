"""Credential handling for provider HTTP clients."""

from collections.abc import Generator, Mapping

import httpx

from binmate.errors import MissingCredential


def token_from_env(env_var: str, env: Mapping[str, str]) -> str:
    """Read a provider token, failing when it is missing or blank."""
    token = env.get(env_var, "").strip()
    if not token:
        raise MissingCredential(env_var)
    return token


class BearerTokenAuth(httpx.Auth):
    """Sends ``Authorization: Bearer <token>`` on every request of a client.

    The outgoing request is a copy, so a request object handed in by the
    caller is never modified. httpx drops the header itself when a redirect
    leaves the original origin.
    """

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        authed = httpx.Request(
            request.method,
            request.url,
            headers=request.headers,
            stream=request.stream,
            extensions=request.extensions,
        )
        authed.headers["Authorization"] = f"Bearer {self._token}"
        yield authed

    def __repr__(self) -> str:
        return "BearerTokenAuth(token=***)"
