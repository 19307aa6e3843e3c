"""
Audit logging of consent decisions. No challenges, tokens or trait values are recorded.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from consent_server.database import get_db
from consent_server.models import AuditLog

EVENT_CONSENT_ACCEPT = "consent_accept"
EVENT_CONSENT_REJECT = "consent_reject"
EVENT_CONSENT_ERROR = "consent_error"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    subject: str | None = None,
    granted_scope: list[str] | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record."""
    db.add(
        AuditLog(
            event_type=event_type,
            client_id=client_id,
            subject=subject,
            granted_scope=" ".join(granted_scope) if granted_scope is not None else None,
            outcome=outcome,
        )
    )
    db.commit()


router = APIRouter(tags=["audit"])


def _query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
):
    """Query audit logs with optional filters. Most recent first."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    if client_id:
        q = q.filter(AuditLog.client_id == client_id)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "client_id": r.client_id,
            "subject": r.subject,
            "granted_scope": r.granted_scope,
            "outcome": r.outcome,
        }
        for r in rows
    ]


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    db: Session = Depends(get_db),
):
    """List recent consent events. Most recent first."""
    return _query_audit_logs(
        db, limit=limit, event_type=event_type, outcome=outcome, client_id=client_id
    )
