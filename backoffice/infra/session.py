from __future__ import annotations

from contextvars import ContextVar

from backoffice.infra import config

session_token_ctx: ContextVar[str | None] = ContextVar("session_token", default=None)
session_user_id_ctx: ContextVar[str | None] = ContextVar("session_user_id", default=None)


def set_session_context(token: str | None, user_id: str | None) -> None:
    session_token_ctx.set(token)
    session_user_id_ctx.set(user_id)


def get_session_token() -> str | None:
    return session_token_ctx.get() or config.AUTHZ_SERVICE_TOKEN


def get_session_user_id() -> str | None:
    return session_user_id_ctx.get()
