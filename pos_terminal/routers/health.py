from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from pos_terminal.core.config import settings
from pos_terminal.core.errors import BackendError
from pos_terminal.deps import get_backend

router = APIRouter(tags=["health"])


@router.get("/health", operation_id="health_v1")
def health():
    return {
        "status": "ok",
        "app": settings.app_name,
        "version": settings.app_version,
        "env": settings.app_env,
        "time": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/backend", operation_id="health_backend_v1")
def backend_health(backend=Depends(get_backend)):
    try:
        backend.health()
    except BackendError as e:
        return {"status": "down", "error": e.message, "time": datetime.now(timezone.utc).isoformat()}
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}
