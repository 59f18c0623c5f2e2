"""API module exports."""

from src.api.audit import router as audit_router
from src.api.calculations import router as calculations_router
from src.api.deps import get_audit_emitter, get_current_user_id, get_db
from src.api.filings import router as filings_router
from src.api.health import router as health_router
from src.api.rules import router as rules_router
from src.api.submissions import router as submissions_router

__all__ = [
    "audit_router",
    "calculations_router",
    "filings_router",
    "get_audit_emitter",
    "get_current_user_id",
    "get_db",
    "health_router",
    "rules_router",
    "submissions_router",
]
