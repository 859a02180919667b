import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hive.api.v1.api import api_router
from hive.config import Settings, get_settings
from hive.database import engine as default_engine, SessionLocal
from hive.errors import HiveError, ValidationError
from hive.logging_config import setup_logging
from hive.services.error_service import log_error
from hive.services.health_service import Reaper
from hive.services.migration_service import init_db

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None, session_factory=None, db_engine=None) -> FastAPI:
    """
    Build the relay app.

    Tests pass their own engine/session factory; production uses the
    module-level ones from ``hive.database``.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hive Relay",
        description="Relays selections and value edits between two polling clients",
        version="1.0.0"
    )
    app.state.settings = settings
    app.state.engine = db_engine or default_engine
    app.state.session_factory = session_factory or SessionLocal
    app.state.reaper = Reaper(app.state.session_factory, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup():
        """Migrate the store and start the reaper."""
        version = init_db(app.state.engine)
        logger.info("Database ready at schema version %d", version)
        app.state.reaper.start()

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.reaper.stop()

    @app.exception_handler(HiveError)
    async def hive_error_handler(request: Request, exc: HiveError):
        log_error(
            request.app.state.session_factory,
            exc,
            metadata={"path": request.url.path, "method": request.method}
        )
        if exc.http_status >= 500:
            logger.error("%s on %s %s: %s", exc.error_type, request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "error": exc.message, "errorType": exc.error_type}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in errors
        ) or "Invalid request"
        log_error(
            request.app.state.session_factory,
            ValidationError(message),
            metadata={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": message, "errorType": "ValidationError"}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        log_error(
            request.app.state.session_factory,
            exc,
            metadata={"path": request.url.path, "method": request.method}
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Something went wrong!"}
        )

    app.include_router(api_router)

    @app.get("/")
    def health_check():
        return {"status": "ok"}

    return app


settings = get_settings()
setup_logging(settings.log_level, settings.log_file)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=3000)
