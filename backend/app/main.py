r"""backend\app\main.py

Main entrypoint for the FastAPI application.

The API forwards prediction requests to the external model, stores the
results, and compares each branch's predicted quantities with the model's
recommended order quantities.  A health endpoint is also provided for
readiness/liveness checks.  Configuration is read from environment variables
and from `configs/settings.yaml`.
"""


import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from .api.v1 import (
    configs,
    feedback,
    health,
    history,
    predictions,
    reconciliation,
    stock,
)
from .core.config import get_settings
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint

# Load .env from repo root
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")


logging.getLogger(__name__).info(
    "Prediction API: %s", get_settings().prediction_api_url
)

app = FastAPI(title="Branch Reconciliation API", version="0.1.0")

# Allow cross-origin requests from the Streamlit UI (and others).
origins_env = os.getenv("CORS_ORIGINS", "")
origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # In production specify your UI domain(s)
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(predictions.router, prefix="/api/v1")
app.include_router(reconciliation.router, prefix="/api/v1")
app.include_router(history.router, prefix="/api/v1")
app.include_router(feedback.router, prefix="/api/v1")
app.include_router(stock.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()
