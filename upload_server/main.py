import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from upload_server.app.middleware import BodySizeLimitMiddleware
from upload_server.app.routes.upload_routes import router
from upload_server.app.services.storage_manager import StorageManager
from upload_server.config import Settings
from upload_server.logger_config import setup_logger

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await app.state.storage_manager.initialize()
    logger.info(f"Maximum file size: {app.state.settings.describe_limit()}")
    yield


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report missing or malformed form fields as 400 instead of 422."""
    logger.info(f"Bad request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": "Error retrieving form field"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the FastAPI app for the given settings (read from the environment if omitted)."""
    if settings is None:
        settings = Settings.from_env()

    app = FastAPI(title="Upload Server", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage_manager = StorageManager(settings.upload_dir, settings.temp_dir)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    if settings.max_file_size > 0:
        app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_file_size)

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=app.state.storage_manager.upload_dir, check_dir=False), name="uploads")
    app.mount("/static", StaticFiles(directory=settings.templates_dir, check_dir=False), name="static")

    return app


def main():
    try:
        settings = Settings.from_env()
    except ValueError as e:
        logger.critical(str(e))
        sys.exit(1)

    app = create_app(settings)

    try:
        app.state.storage_manager.ensure_directories()
        settings.templates_dir.mkdir(exist_ok=True, parents=True)
    except OSError as e:
        logger.critical(f"Failed to create required directories: {str(e)}")
        sys.exit(1)

    logger.info("Starting Upload Server...")
    logger.info(f"Upload directory: {settings.upload_dir}")
    logger.info(f"Temporary directory: {settings.temp_dir}")
    logger.info(f"Templates directory: {settings.templates_dir}")
    logger.info(f"Server starting on port {settings.port}...")

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
