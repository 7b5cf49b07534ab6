from fastapi import FastAPI


def register_lifecycle_routes(app: FastAPI, *, app_name: str, version: str) -> None:
    """Reachability and liveness endpoints; neither touches Azure."""

    @app.get("/", tags=["Lifecycle"])
    async def root() -> dict[str, str]:
        return {"status": "ok", "app": app_name, "version": version}

    @app.get("/health/live", tags=["Lifecycle"])
    async def liveness_check() -> dict[str, str]:
        return {"status": "healthy"}


def register_api_routers(app: FastAPI) -> None:
    from azure_monitor_probe.modules.probe.api.v1.probe import router as probe_router

    # Mounted at the root, where Prometheus scrape configs expect /probe.
    app.include_router(probe_router)
