"""Health check endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from duet.api.deps import get_db
from duet.responses import success_response
from duet.services.health import check_store

router = APIRouter()


@router.get("/health")
def health_check(db: Annotated[Session, Depends(get_db)]) -> dict:
    """Readiness check endpoint.

    Returns 200 when the store answers a trivial query, 503 otherwise.
    """
    check_store(db)
    return success_response({"status": "ok"})
