from typing import Optional
from fastapi import FastAPI
from app.settings import settings
from app.logging import configure_logging
from app.error_handlers import attach_error_handlers
from app.container import Container, build_container
from api.router import api_router


def create_app(container: Optional[Container] = None) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)

    @app.on_event("startup")
    async def _on_startup():
        app.state.container = container or build_container(settings)
        await app.state.container.start()

    @app.on_event("shutdown")
    async def _on_shutdown():
        await app.state.container.aclose()

    attach_error_handlers(app)
    app.include_router(api_router)
    return app


configure_logging()
app = create_app()
