"""
Minimal Hydra admin client for the consent flow (OAuth2 v2 admin API).
"""
import logging

import httpx

from consent_server.config import HTTP_TIMEOUT_SECONDS, HYDRA_ADMIN_URL
from consent_server.errors import HydraError

logger = logging.getLogger(__name__)

CONSENT_PATH = "/admin/oauth2/auth/requests/consent"


def _check(r: httpx.Response, what: str) -> dict:
    if r.status_code != 200:
        raise HydraError(f"Hydra returned {r.status_code} for {what}", status_code=r.status_code)
    try:
        body = r.json()
    except ValueError as e:
        raise HydraError(f"Hydra returned invalid JSON for {what}") from e
    if not isinstance(body, dict):
        raise HydraError(f"Hydra returned a non-object for {what}")
    return body


def get_consent_request(challenge: str) -> dict:
    """Consent request: subject, requested_scope, requested_access_token_audience, client, skip, ..."""
    try:
        r = httpx.get(
            f"{HYDRA_ADMIN_URL}{CONSENT_PATH}",
            params={"consent_challenge": challenge},
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.warning("Hydra request failed: %s", e)
        raise HydraError(f"request to Hydra failed: {e}") from e
    return _check(r, "consent request")


def _put(action: str, challenge: str, body: dict) -> str:
    try:
        r = httpx.put(
            f"{HYDRA_ADMIN_URL}{CONSENT_PATH}/{action}",
            params={"consent_challenge": challenge},
            json=body,
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.warning("Hydra %s failed: %s", action, e)
        raise HydraError(f"request to Hydra failed: {e}") from e
    redirect_to = _check(r, f"consent {action}").get("redirect_to")
    if not redirect_to:
        raise HydraError(f"Hydra consent {action} response has no redirect_to")
    return redirect_to


def accept_consent_request(
    challenge: str,
    *,
    grant_scope: list[str],
    grant_audience: list[str],
    id_token: dict,
    access_token: dict,
) -> str:
    """Accept consent with the given session claims. Returns the URL to redirect the user agent to."""
    return _put(
        "accept",
        challenge,
        {
            "grant_scope": grant_scope,
            "grant_access_token_audience": grant_audience,
            # Consent is never remembered; claims are recomputed on each request
            "remember": False,
            "session": {"id_token": id_token, "access_token": access_token},
        },
    )


def reject_consent_request(challenge: str, error: str, error_description: str) -> str:
    return _put("reject", challenge, {"error": error, "error_description": error_description})
