import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from nextstep/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from nextstep.core.config import settings, validate_config, cors_origins  # noqa: E402
from nextstep.core.logging import configure_logging  # noqa: E402
from nextstep.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from nextstep.core.validation import validate_env  # noqa: E402
from nextstep.core.database import create_all_tables, dispose_engine  # noqa: E402
from nextstep.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from nextstep.features.billing.service import get_provider  # noqa: E402
from nextstep.features.recommendations.llm import build_chat_client  # noqa: E402
from nextstep.api import actions, billing, goals, health, users  # noqa: E402

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("nextstep")
    logger.info("Starting NextStep API...")
    app.state.startup_time = time.time()
    create_all_tables()
    app.state.chat_client = build_chat_client()
    app.state.billing_provider = get_provider()
    try:
        yield
    finally:
        logger.info("Stopping NextStep API...")
        if app.state.chat_client is not None:
            await app.state.chat_client.close()
        dispose_engine()


app = FastAPI(title="NextStep API", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
# Starlette's base class so router 404/405 share the envelope
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(users.router)
app.include_router(actions.router)
app.include_router(goals.router)
app.include_router(billing.router)
