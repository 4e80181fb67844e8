from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from backoffice.adapters.base import RemoteAuthority
from backoffice.adapters.http_adapter import HttpRemoteAuthority
from backoffice.api.routers import authz
from backoffice.domain.errors import AuthzError
from backoffice.infra.log import get_logger
from backoffice.services.authz_store import AuthorizationStore

logger = get_logger(__name__)


def create_app(
    *,
    remote: RemoteAuthority | None = None,
    load_on_startup: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        authority = remote if remote is not None else HttpRemoteAuthority()
        store = AuthorizationStore(authority)
        app.state.authz_store = store
        if load_on_startup:
            try:
                await store.refresh_all()
            except AuthzError as exc:
                logger.warning("Initial authorization load failed: %s", exc)
        try:
            yield
        finally:
            store.close()
            await authority.aclose()
            app.state.authz_store = None

    app = FastAPI(
        title="loan-backoffice-authz",
        description="Role and permission resolution for the loan back-office console.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(authz.router, prefix="/api/authz", tags=["authz"])

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz() -> dict[str, object]:
        store = getattr(app.state, "authz_store", None)
        loaded = store is not None and store.loaded
        checks = {"authz_store": "ok" if loaded else "fail"}
        if not loaded:
            raise HTTPException(
                status_code=503,
                detail={"status": "not_ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()
