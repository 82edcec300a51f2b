import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from guidechat.core.config import settings, validate_config
from guidechat.core.logging import configure_logging
from guidechat.core.middleware.request_id import RequestIdMiddleware
from guidechat.core.validation import validate_env
from guidechat.core.database import create_all_tables
from guidechat.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from guidechat.api import chat, guides, health, usage

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("guidechat")
    logger.info("Starting GuideChat backend...")
    app.state.startup_time = time.time()
    if settings.ENV != "production":
        create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping GuideChat backend...")


app = FastAPI(title="GuideChat - Model Access & Usage", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id", "Retry-After"],
)

app.include_router(guides.router)
app.include_router(chat.router)
app.include_router(usage.router)
app.include_router(health.root_router)
