"""Internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from holdingspace.domain.reconcile import HANDLERS

router = APIRouter()


@router.get("/internal/health")
def internal_health() -> dict:
    """Internal health check listing the reconciled event variants."""
    return {
        "status": "ok",
        "subsystem": "reconciliation",
        "handlers": sorted(cls.__name__ for cls in HANDLERS),
    }
