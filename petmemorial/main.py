import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# Load env from the working directory's .env (tests configure env themselves)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from petmemorial.core.config import settings, validate_config
from petmemorial.core.logging import configure_logging
from petmemorial.core.middleware.request_id import RequestIdMiddleware
from petmemorial.core.validation import validate_env
from petmemorial.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from petmemorial.core.database import create_all_tables
from petmemorial.api import gifts, health, map as map_api, pets, users, wallet

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("petmemorial")
    logger.info("Starting pet memorial API...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("petmemorial").info("Stopping pet memorial API...")


app = FastAPI(title="Pet Memorial API", version="0.1.0", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(gifts.router, tags=["gifts"])
app.include_router(pets.router, tags=["pets"])
app.include_router(map_api.router, tags=["map"])
app.include_router(wallet.router, tags=["wallet"])
app.include_router(users.router, tags=["users"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("petmemorial.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
