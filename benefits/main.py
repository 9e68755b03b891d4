import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from benefits.core.config import settings, validate_config
from benefits.core.database import create_all_tables, get_database_url
from benefits.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    store_unavailable_handler,
    unhandled_exception_handler,
)
from benefits.core.logging import configure_logging
from benefits.core.middleware.request_id import RequestIdMiddleware
from benefits.api import checkout, claims, health, webhook

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("benefits")
    logger.info("Starting benefits service...")
    if settings.AUTO_CREATE_TABLES and get_database_url():
        create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping benefits service...")


app = FastAPI(title="Benefits Ledger", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(OperationalError, store_unavailable_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(checkout.router)
app.include_router(claims.router)
app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("benefits.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
