"""
Consent endpoint (GET /consent). Hydra redirects here with ?consent_challenge=...

Consent is always skipped: every requested scope and audience is granted, and the session
claims are computed from the identity's traits through the identity schema's scope mapping.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from consent_server import hydra, kratos
from consent_server.audit import (
    EVENT_CONSENT_ACCEPT,
    EVENT_CONSENT_ERROR,
    EVENT_CONSENT_REJECT,
    OUTCOME_FAIL,
    OUTCOME_SUCCESS,
    log_audit,
)
from consent_server.claims import Claims
from consent_server.config import DIRECT_MAPPING, SCHEMA_KEYWORD, SCHEMA_MAX_AGE_SECONDS
from consent_server.database import get_db
from consent_server.engine import SchemaCache
from consent_server.errors import KratosError, UpstreamError

logger = logging.getLogger(__name__)
router = APIRouter()

# Process-wide cache of compiled identity schemas
_schema_cache: SchemaCache | None = None


def get_schema_cache() -> SchemaCache:
    global _schema_cache
    if _schema_cache is None:
        _schema_cache = SchemaCache(
            keyword=SCHEMA_KEYWORD, direct_mapping=DIRECT_MAPPING, max_age=SCHEMA_MAX_AGE_SECONDS
        )
    return _schema_cache


def _resolve_claims(identity: dict, requested_scope: list[str]) -> Claims:
    traits = identity.get("traits")
    if traits is None:
        return Claims()
    schema_id = identity.get("schema_id")
    if not schema_id:
        raise KratosError("identity has no schema_id")
    compiled = get_schema_cache().get_or_compile(schema_id, kratos.get_identity_schema)
    return compiled.resolve(traits, requested_scope)


@router.get("/consent")
def consent(
    consent_challenge: str | None = None,
    db: Session = Depends(get_db),
):
    """Accept the consent request with claims mapped from the identity; redirect back to Hydra."""
    if not consent_challenge:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_request", "error_description": "consent_challenge is required"},
        )

    client_id = None
    subject = None
    try:
        consent_request = hydra.get_consent_request(consent_challenge)
        client_id = (consent_request.get("client") or {}).get("client_id")
        subject = consent_request.get("subject")
        requested_scope = list(consent_request.get("requested_scope") or [])
        audience = list(consent_request.get("requested_access_token_audience") or [])

        if not subject:
            redirect_to = hydra.reject_consent_request(
                consent_challenge, "invalid_request", "consent request does not contain a subject"
            )
            log_audit(db, EVENT_CONSENT_REJECT, client_id=client_id, outcome=OUTCOME_FAIL)
            return RedirectResponse(url=redirect_to, status_code=status.HTTP_303_SEE_OTHER)

        identity = kratos.get_identity(subject)
        claims = _resolve_claims(identity, requested_scope)

        redirect_to = hydra.accept_consent_request(
            consent_challenge,
            grant_scope=requested_scope,
            grant_audience=audience,
            id_token=claims.id_token,
            access_token=claims.access_token,
        )
    except UpstreamError as e:
        logger.warning("Consent failed (%s): %s", e.service, e)
        log_audit(db, EVENT_CONSENT_ERROR, client_id=client_id, subject=subject, outcome=OUTCOME_FAIL)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "upstream_error", "error_description": f"{e.service} request failed"},
        )

    log_audit(
        db,
        EVENT_CONSENT_ACCEPT,
        client_id=client_id,
        subject=subject,
        granted_scope=requested_scope,
        outcome=OUTCOME_SUCCESS,
    )
    return RedirectResponse(url=redirect_to, status_code=status.HTTP_303_SEE_OTHER)
