"""
Minimal Kratos client: identities (admin API) and identity schemas (public API).
"""
import logging
from urllib.parse import quote

import httpx

from consent_server.config import HTTP_TIMEOUT_SECONDS, KRATOS_ADMIN_URL, KRATOS_PUBLIC_URL
from consent_server.errors import KratosError

logger = logging.getLogger(__name__)


def _get_json(url: str):
    try:
        r = httpx.get(url, headers={"Accept": "application/json"}, timeout=HTTP_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        logger.warning("Kratos request failed: %s", e)
        raise KratosError(f"request to Kratos failed: {e}") from e
    if r.status_code != 200:
        raise KratosError(f"Kratos returned {r.status_code} for {url}", status_code=r.status_code)
    try:
        return r.json()
    except ValueError as e:
        raise KratosError(f"Kratos returned invalid JSON for {url}") from e


def get_identity(identity_id: str) -> dict:
    """Identity document ({"id", "schema_id", "traits", ...}). Only read, never written."""
    identity = _get_json(f"{KRATOS_ADMIN_URL}/admin/identities/{quote(identity_id, safe='')}")
    if not isinstance(identity, dict):
        raise KratosError("identity is not a JSON object")
    return identity


def get_identity_schema(schema_id: str) -> dict:
    schema = _get_json(f"{KRATOS_PUBLIC_URL}/schemas/{quote(schema_id, safe='')}")
    if not isinstance(schema, dict):
        raise KratosError(f"identity schema {schema_id!r} is not a JSON object")
    return schema


def list_identity_schemas() -> list[dict]:
    """All identity schemas as [{"id": ..., "schema": {...}}]."""
    schemas = _get_json(f"{KRATOS_PUBLIC_URL}/schemas")
    if not isinstance(schemas, list):
        raise KratosError("schema list is not a JSON array")
    return schemas
