import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from apps.attachments.routers import router as attachments_router
from apps.blog.routers import router as blog_router
from apps.storage.services import StorageInterface, pick_storage, storage_config_from_settings
from config.db import close_db, init_db
from config.logging import setup_logging
from config.middleware import RequestLoggingMiddleware
from config.settings import APP_ENV, LOG_LEVEL

logger = logging.getLogger(__name__)


def create_app(db_url: Optional[str] = None, storage: Optional[StorageInterface] = None) -> FastAPI:
    """Build the API. ``db_url`` and ``storage`` default to the environment's settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(LOG_LEVEL)
        await init_db(db_url)
        app.state.storage = storage or pick_storage(storage_config_from_settings())
        logger.info('Blog service started (env=%s, storage=%s)', APP_ENV, app.state.storage.service_name)
        try:
            yield
        finally:
            await close_db()

    app = FastAPI(title='Blog Service', lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(blog_router)
    app.include_router(attachments_router)

    @app.get('/health')
    async def health():
        return {'status': 'ok'}

    return app


app = create_app()
