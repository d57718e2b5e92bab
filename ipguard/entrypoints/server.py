"""Standalone guarded API server.

Run with ``python -m ipguard.entrypoints.server`` or the ``ipguard-server``
console script. Settings come from the environment, ``.env`` and an
optional ``ipguard.yaml``.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import bittensor as bt
from dotenv import load_dotenv
from fastapi import FastAPI

from ipguard.api.admin import build_admin_router
from ipguard.config.core import Settings, last_yaml_path, load_settings, sanitize_dict
from ipguard.database.store import GuardStore
from ipguard.guard.limiter import TierLookup
from ipguard.guard.notifications import NotificationChannel
from ipguard.guard.service import GuardService
from ipguard.utils.logging_config import configure_guard_logging


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[GuardStore] = None,
    channel: Optional[NotificationChannel] = None,
    tier_lookup: Optional[TierLookup] = None,
    admin_dependencies: Sequence[Any] = (),
) -> FastAPI:
    """FastAPI app with the guard installed and the admin router mounted.

    The guard service is started and stopped by the app lifespan and is
    reachable as ``app.state.guard``.
    """
    settings = settings or load_settings()
    service = GuardService.from_settings(settings, store=store, channel=channel)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="ipguard", lifespan=lifespan)
    app.state.guard = service

    service.install(app, tier_lookup)

    if not admin_dependencies:
        bt.logging.warning({"admin_router": "no auth dependencies configured"})
    app.include_router(build_admin_router(service.registry, dependencies=admin_dependencies))

    @app.get("/health")
    async def health():
        return {"status": "ok", "guard": service.registry.get_stats()}

    return app


def main() -> None:
    bt.logging.setLevel("INFO")
    configure_guard_logging()

    if os.path.exists(".env"):
        bt.logging.info({"env_file_loaded": load_dotenv(".env", override=False)})

    settings = load_settings()
    bt.logging.info({
        "settings": sanitize_dict(settings.model_dump(mode="json")),
        "yaml_path": last_yaml_path(),
    })

    import uvicorn

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
