"""
Consent Server — sits between Hydra (authorization server) and Kratos (identity server).
GET /consent maps identity traits to token claims; GET /audit lists consent decisions.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from consent_server.audit import router as audit_router
from consent_server.consent import router as consent_router
from consent_server.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the audit tables on startup."""
    init_db()
    yield


app = FastAPI(title="Consent Server", version="0.1.0", lifespan=lifespan)
app.include_router(consent_router, tags=["consent"])
app.include_router(audit_router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "consent_server"}
