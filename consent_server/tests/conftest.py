"""
Pytest configuration for consent_server. Use in-memory SQLite so tests don't touch the filesystem.
"""
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["CONSENT_DATABASE_URL"] = "sqlite:///:memory:"
# Tests pass keyword and direct mapping explicitly; keep the process defaults predictable
os.environ.pop("CONSENT_SCHEMA_KEYWORD", None)
os.environ.pop("CONSENT_DIRECT_MAPPING", None)
