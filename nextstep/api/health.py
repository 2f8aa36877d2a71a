"""
Liveness and readiness probes.

/health never touches the database; /readyz answers 503 until the database
is reachable and the schema has been created.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from nextstep.core.database import check_connection, get_engine

logger = logging.getLogger("nextstep")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = (
    "app_users",
    "goals",
    "entitlements",
    "recommendations",
    "feedback",
    "billing_events",
)


def _not_ready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
def readyz():
    if not check_connection():
        return _not_ready("database unreachable")
    try:
        inspector = inspect(get_engine())
        missing = [name for name in REQUIRED_TABLES if not inspector.has_table(name)]
    except SQLAlchemyError as exc:
        logger.error("readyz.inspect_failed", extra={"error_message": str(exc)})
        return _not_ready("database unreachable")

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning("readyz.schema_incomplete", extra={"missing_tables": missing})
        return _not_ready(detail)
    return {"status": "ok"}
