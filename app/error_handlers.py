from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging
from domain.errors import NotFoundError, TerminalError

logger = logging.getLogger(__name__)

def attach_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc) or "Not Found"})

    @app.exception_handler(TerminalError)
    async def _terminal(request: Request, exc: TerminalError):
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=422, content={"detail": str(exc), "error": type(exc).__name__})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
