"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api import audit_logs, auth, controls, periods, risks, treatments
from app.core.config import settings
from app.core.errors import RiskEngineError, risk_engine_error_handler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Continuous Risk State Engine", version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RiskEngineError, risk_engine_error_handler)

# Routes
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(controls.router, prefix="/controls", tags=["controls"])
app.include_router(risks.router, prefix="/risks", tags=["risks"])
# Treatment alerts and the treatment log
app.include_router(treatments.router, tags=["treatments"])
# Periods, commits and snapshots
app.include_router(periods.router, prefix="/periods", tags=["periods"])
app.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit-logs"])


@app.get("/")
def read_root():
    return {"message": "Continuous Risk State Engine API"}
