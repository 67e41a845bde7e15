from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from stepwise.api.fastapi import FastAPIApp
from stepwise.core.config import settings
from stepwise.core.database import Base, engine
from stepwise.utils.exception import add_exception_handlers
from stepwise.utils.logging import Logger
from stepwise.utils.logging.otel_logger import logger

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting up {settings.app_name} ({settings.env})")
    if settings.AUTO_CREATE_TABLES:
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise e

    yield

    logger.info(f"Shutting down {settings.app_name}")
    engine.dispose()


def create_app() -> FastAPI:
    app_instance = FastAPIApp(lifespan=lifespan)
    application = app_instance.get_app()
    add_exception_handlers(application, Logger("exceptions"))
    return application


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
