r"""backend\app\api\v1\health.py

Health check endpoints.

Orchestrators and load balancers use `/api/v1/health` to verify that the
API process is up.  It does not call the prediction model or the database;
use `/api/v1/predictions/status` for the model.
"""

from fastapi import APIRouter

router = APIRouter()

SERVICE_NAME = "branch-reconciliation"


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Return a basic liveness indicator."""
    return {"status": "ok", "service": SERVICE_NAME}
