"""ASGI middleware that guards webhook routes with :class:`WebhookValidator`."""

from __future__ import annotations

from collections.abc import AsyncIterator

from starlette.requests import ClientDisconnect, HTTPConnection
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from signed_webhooks.webhook.validator import WebhookHeader, WebhookValidator, fold_headers

STATE_KEY = "webhook_header"


def get_webhook_header(connection: HTTPConnection) -> WebhookHeader | None:
    """Return the validated header attached to *connection*, if any.

    Only requests that went through :class:`WebhookValidationMiddleware`
    and were accepted carry one.
    """
    header = connection.scope.get("state", {}).get(STATE_KEY)
    return header if isinstance(header, WebhookHeader) else None


def normalize_prefix(path_prefix: str) -> str:
    """Strip trailing slashes; raise :class:`ValueError` unless a rooted segment remains."""
    prefix = path_prefix.rstrip("/")
    if not prefix.startswith("/"):
        raise ValueError(f"webhook path prefix must look like '/webhooks', got {path_prefix!r}")
    return prefix


def _utf8_headers(scope: Scope) -> dict[str, str]:
    """Decode header values as UTF-8, unlike Starlette's latin-1 view.

    Bytes that are not UTF-8 survive as surrogates, so an id carrying them
    can never produce a matching tag.
    """
    return fold_headers(
        (name.decode("latin-1"), value.decode("utf-8", errors="surrogateescape"))
        for name, value in scope.get("headers", [])
    )


def _content_length(connection: HTTPConnection) -> int | None:
    raw = connection.headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


class WebhookValidationMiddleware:
    """Validate every HTTP request under *path_prefix* before routing it.

    Accepted requests get a :class:`WebhookHeader` on ``request.state``
    and their body is replayed unchanged to the wrapped app.  Rejected
    requests are answered here with 401, 413 or 499 and never reach it.

    Parameters
    ----------
    app:
        The wrapped ASGI application.
    validator:
        Shared validator instance.
    path_prefix:
        Only paths equal to the prefix or below ``prefix/`` are checked.
        It must name at least one path segment; ``"/"`` is refused so the
        unprotected routes stay reachable.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        validator: WebhookValidator,
        path_prefix: str = "/webhooks",
    ) -> None:
        self.app = app
        self._validator = validator
        self._prefix = normalize_prefix(path_prefix)

    def _protects(self, path: str) -> bool:
        return path == self._prefix or path.startswith(self._prefix + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self._protects(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)

        async def chunks() -> AsyncIterator[bytes]:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    raise ClientDisconnect()
                chunk = message.get("body", b"")
                if chunk:
                    yield chunk
                if not message.get("more_body", False):
                    return

        result = await self._validator.validate(
            _utf8_headers(scope),
            chunks(),
            content_length=_content_length(connection),
            context=connection,
        )

        if not result.accepted:
            response = JSONResponse(
                {"detail": result.reason.value},
                status_code=result.status_code,
            )
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})[STATE_KEY] = result.header

        body = result.body
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)
