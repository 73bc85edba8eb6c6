import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# Load env from the project root .env (not under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from family_helper.api import health, support, wiki
from family_helper.core.config import settings, validate_config
from family_helper.core.database import create_all_tables, get_database_url
from family_helper.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from family_helper.core.logging import LOGGER_NAME, configure_logging
from family_helper.core.middleware.request_id import RequestIdMiddleware

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting Family Helper API...")
    if get_database_url():
        try:
            create_all_tables()
        except Exception as e:
            logger.error(f"Table creation failed: {e}")
            raise
    try:
        yield
    finally:
        logger.info("Stopping Family Helper API...")


app = FastAPI(title="Family Helper API", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(support.router)
app.include_router(wiki.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("family_helper.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
