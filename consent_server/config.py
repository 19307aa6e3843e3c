"""
Consent server configuration. Admin/public URLs of Hydra and Kratos, schema keyword, audit DB.
No secrets in this file; the admin APIs are expected to be reachable on a private network.
"""
import os

# Hydra admin API (consent requests are fetched and accepted here)
HYDRA_ADMIN_URL = os.environ.get("HYDRA_ADMIN_URL", "http://127.0.0.1:4445").rstrip("/")

# Kratos admin API (identities) and public API (identity schemas)
KRATOS_ADMIN_URL = os.environ.get("KRATOS_ADMIN_URL", "http://127.0.0.1:4434").rstrip("/")
KRATOS_PUBLIC_URL = os.environ.get("KRATOS_PUBLIC_URL", "http://127.0.0.1:4433").rstrip("/")

# Keyword used both on trait properties ({"scopes": [...]}) and at the schema root ({"scopes": {...}})
SCHEMA_KEYWORD = os.environ.get("CONSENT_SCHEMA_KEYWORD", "consent")

# Direct mapping: every top-level trait without an annotation becomes a scope of the same name
DIRECT_MAPPING = os.environ.get("CONSENT_DIRECT_MAPPING", "false").strip().lower() in ("1", "true", "yes", "on")

# SQLite audit log for consent decisions
DATABASE_URL = os.environ.get("CONSENT_DATABASE_URL", "sqlite:///./consent_server.db")

# Timeout for calls to Hydra and Kratos (seconds)
HTTP_TIMEOUT_SECONDS = float(os.environ.get("CONSENT_HTTP_TIMEOUT_SECONDS", "10"))

# Default bind address for `consent-server serve`
HOST = os.environ.get("CONSENT_HOST", "127.0.0.1")
PORT = int(os.environ.get("CONSENT_PORT", "3000"))

# Compiled identity schemas older than this are re-fetched from Kratos (recompiled only if changed)
SCHEMA_MAX_AGE_SECONDS = float(os.environ.get("CONSENT_SCHEMA_MAX_AGE_SECONDS", "300"))
