from __future__ import annotations

import time
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.workers.celery_app import celery_app

router = APIRouter(tags=["health"])


def _check_db(db: Session) -> bool:
    db.execute(text("SELECT 1"))
    return True


def _check_celery() -> bool:
    try:
        insp = celery_app.control.inspect(timeout=1)
        active = insp.active() if insp else None
        return bool(active)
    except Exception:  # noqa: BLE001
        return False


@router.get("/healthz")
def healthz(db: Annotated[Session, Depends(get_db)]) -> dict[str, str]:
    """Basic liveness probe (cheap)."""
    try:
        _check_db(db)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=503, detail="Database connectivity check failed") from exc
    return {"status": "ok"}


@router.get("/ready")
def ready(db: Annotated[Session, Depends(get_db)]) -> dict[str, object]:
    """Readiness probe: database plus a worker for the expiry and reconciliation schedule."""
    start = time.time()
    try:
        db_ok = _check_db(db)
    except Exception:  # noqa: BLE001
        db_ok = False
    celery_ok = _check_celery()
    duration_ms = int((time.time() - start) * 1000)
    if not db_ok:
        raise HTTPException(status_code=503, detail={"db": db_ok, "celery": celery_ok, "latency_ms": duration_ms})
    # Payments still settle through query-status without workers
    return {"status": "ready", "db": db_ok, "celery": celery_ok, "latency_ms": duration_ms}
